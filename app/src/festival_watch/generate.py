import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from time import perf_counter

from playwright.async_api import async_playwright

from .config import Config, load_config
from .logging_utils import setup_logging
from .purchase_config import build_rules_payload
from .scraper import (
    SCHEDULE_ROW_SELECTOR,
    establish_session,
    extract_schedule,
    load_schedule,
    screenings_for_rules,
    scroll_schedule,
)
from .session import CookieLoadError, load_cookies
from .state import atomic_write_text


async def collect_screenings(cfg: Config, logger: logging.Logger) -> list[tuple[str, str]]:
    cookies = load_cookies(cfg.cookies_path)
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True)
        try:
            context = await browser.new_context()
            await context.add_cookies(cookies)
            page = await context.new_page()
            await establish_session(page, cfg.home_url, cfg.navigation_timeout_ms, cfg.settle_ms)

            start_ts = perf_counter()
            await load_schedule(page, cfg.schedule_url, cfg.navigation_timeout_ms, cfg.schedule_wait_ms, 0)
            if await page.locator(SCHEDULE_ROW_SELECTOR).count() == 0:
                shot = cfg.out_dir / "generate-missing-schedule.png"
                try:
                    await page.screenshot(path=str(shot), full_page=True)
                    logger.warning("schedule_rows_missing screenshot=%s", shot)
                except Exception:
                    logger.warning("schedule_rows_missing screenshot_failed=true", exc_info=True)
            scrolls = await scroll_schedule(page)
            snapshot = await extract_schedule(page)
            logger.info(
                "generate_scrape_done duration_ms=%s scrolls=%s screenings=%s",
                int((perf_counter() - start_ts) * 1000),
                scrolls,
                len(snapshot),
            )
            return screenings_for_rules(snapshot)
        finally:
            await browser.close()


def write_rules(path: Path, screenings: list[tuple[str, str]]) -> dict:
    payload = build_rules_payload(screenings)
    atomic_write_text(path, json.dumps(payload, ensure_ascii=False, indent=2))
    return payload


def main() -> None:
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)
    cfg = load_config()

    if cfg.auto_purchase_path.exists():
        logger.info(
            "generate_skipped path=%s reason=exists hint=delete_or_rename_to_regenerate",
            cfg.auto_purchase_path,
        )
        return

    try:
        screenings = asyncio.run(collect_screenings(cfg, logger))
    except CookieLoadError as exc:
        logger.error("cookies_load_failed error=%s", exc)
        sys.exit(1)
    except Exception:
        logger.exception("generate_failed")
        sys.exit(1)

    if not screenings:
        logger.error("generate_no_screenings hint=add_films_to_your_schedule_first")
        sys.exit(1)

    write_rules(cfg.auto_purchase_path, screenings)
    logger.info(
        "generate_written path=%s screenings=%s hint=set_autoPurchase_true_for_screenings_to_buy",
        cfg.auto_purchase_path,
        len(screenings),
    )


if __name__ == "__main__":
    main()
