import argparse
import asyncio
import logging
import os
import sys

from playwright.async_api import async_playwright

from .checkout import attempt_purchase
from .config import Config, load_config
from .logging_utils import setup_logging
from .models import AutoPurchaseConfig, CheckoutResult, FilmRule, PurchaseSettings
from .page_adapter import PlaywrightPageAdapter
from .scraper import establish_session, load_schedule
from .session import CookieLoadError, load_cookies

INSPECT_SECONDS = 20


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip())
    except ValueError:
        return default


def build_trial_config(title: str, screening_time: str | None = None) -> AutoPurchaseConfig:
    settings = PurchaseSettings().with_overrides(
        ticket_quantity=max(1, _env_int("TICKET_QTY", 1)),
        debug_screenshots=True,
        keep_checkout_open=True,
        max_steps=max(1, _env_int("MAX_STEPS", 12)),
        step_wait_ms=max(0, _env_int("STEP_WAIT_MS", 1800)),
    )
    return AutoPurchaseConfig(
        enabled=True,
        films=(FilmRule(title=title, screening_time=screening_time or None, auto_purchase=True),),
        settings=settings,
    )


async def run_trial(cfg: Config, title: str, screening_time: str, logger: logging.Logger) -> CheckoutResult:
    cookies = load_cookies(cfg.cookies_path)
    config = build_trial_config(title, screening_time)
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=False)
        try:
            context = await browser.new_context()
            await context.add_cookies(cookies)
            page = await context.new_page()
            await establish_session(page, cfg.home_url, cfg.navigation_timeout_ms, cfg.settle_ms)
            await load_schedule(page, cfg.schedule_url, cfg.navigation_timeout_ms, cfg.schedule_wait_ms, cfg.settle_ms)

            result = await attempt_purchase(
                PlaywrightPageAdapter(page),
                title,
                screening_time,
                config,
                None,
                screenshot_dir=cfg.out_dir,
            )
            logger.info("trial_result success=%s reason=%r url=%s", result.success, result.reason, result.url)
            logger.info("trial_inspect seconds=%s", INSPECT_SECONDS)
            await page.wait_for_timeout(INSPECT_SECONDS * 1000)
            return result
        finally:
            await browser.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one checkout attempt in a visible browser.")
    parser.add_argument("title", nargs="*", help="film title (defaults to FILM_TITLE)")
    parser.add_argument("--screening-time", default=os.getenv("SCREENING_TIME", ""))
    args = parser.parse_args()

    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)

    title = " ".join(args.title).strip() or os.getenv("FILM_TITLE", "").strip()
    if not title:
        parser.error('missing film title: festival-watch-try-checkout "Your Film" or FILM_TITLE="Your Film"')

    cfg = load_config()
    try:
        result = asyncio.run(run_trial(cfg, title, args.screening_time.strip(), logger))
    except CookieLoadError as exc:
        logger.error("cookies_load_failed error=%s", exc)
        sys.exit(1)
    sys.exit(0 if result.success else 2)


if __name__ == "__main__":
    main()
