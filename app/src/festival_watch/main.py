import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from time import perf_counter
from typing import Optional

from playwright.async_api import async_playwright

from .checkout import attempt_purchase
from .config import Config, load_config
from .logging_utils import new_run_id, set_run_id, setup_logging
from .matcher import should_auto_purchase
from .models import PURCHASE_TRIGGERS
from .notify import Notifier
from .page_adapter import PageAdapter, PlaywrightPageAdapter
from .purchase_config import load_auto_purchase_config
from .scraper import establish_session, extract_schedule, load_schedule
from .session import CookieLoadError, load_cookies
from .state import Snapshot, atomic_write_text, compute_diff, load_state, save_state
from .time_utils import format_duration


class ScheduleView:
    """The monitoring loop's page, pointed at the user's schedule."""

    def __init__(self, cfg: Config, page) -> None:
        self._cfg = cfg
        self._page = page

    async def open(self) -> None:
        await load_schedule(
            self._page,
            self._cfg.schedule_url,
            self._cfg.navigation_timeout_ms,
            self._cfg.schedule_wait_ms,
            self._cfg.settle_ms,
        )

    async def snapshot(self) -> Snapshot:
        await self.open()
        return await extract_schedule(self._page)

    def adapter(self) -> PageAdapter:
        return PlaywrightPageAdapter(self._page)


def _write_status(cfg: Config, payload: dict, logger: logging.Logger) -> None:
    try:
        atomic_write_text(
            cfg.out_dir / "status.json",
            json.dumps(payload, ensure_ascii=False, indent=2),
        )
    except Exception:
        logger.exception("status_write_failed")


async def run_cycle(
    cfg: Config,
    view,
    previous: Snapshot,
    notifier,
    logger: logging.Logger,
    purchase=attempt_purchase,
) -> tuple[Snapshot, dict]:
    current = await view.snapshot()
    changes = compute_diff(previous, current)
    logger.info(
        "diff screenings=%s changes=%s snapshot_size_before=%s",
        len(current),
        len(changes),
        len(previous),
    )
    purchases: list[dict] = []
    if not changes:
        return current, {"screenings": len(current), "changes": 0, "purchases": purchases}

    await notifier(changes)

    config = load_auto_purchase_config(cfg.auto_purchase_path)
    if config is None:
        return current, {"screenings": len(current), "changes": len(changes), "purchases": purchases}

    # One attempt at a time: the checkout flow owns the shared page.
    for change in changes:
        if change.type not in PURCHASE_TRIGGERS:
            continue
        if not should_auto_purchase(change.title, change.screening_time, config):
            continue
        logger.info(
            "auto_purchase_triggered title=%r screening_time=%r",
            change.title,
            change.screening_time,
        )
        result = await purchase(
            view.adapter(),
            change.title,
            change.screening_time,
            config,
            notifier,
            screenshot_dir=cfg.out_dir,
        )
        purchases.append(
            {
                "title": change.title,
                "screening_time": change.screening_time,
                "success": result.success,
                "reason": result.reason,
                "url": result.url,
            }
        )
        # The attempt already ran; a reload failure must not discard this cycle.
        try:
            await view.open()
        except Exception:
            logger.exception("schedule_reload_failed title=%r", change.title)

    return current, {"screenings": len(current), "changes": len(changes), "purchases": purchases}


async def monitor(cfg: Config, logger: logging.Logger, max_cycles: Optional[int] = None) -> None:
    cookies = load_cookies(cfg.cookies_path)
    previous = load_state(cfg.state_path)
    notifier = Notifier.from_config(cfg)

    logger.info(
        "monitor_start schedule_url=%s interval_seconds=%s state_path=%s email_enabled=%s",
        cfg.schedule_url,
        cfg.check_interval_seconds,
        cfg.state_path,
        notifier.email_enabled,
    )

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=cfg.headless)
        try:
            context = await browser.new_context()
            await context.add_cookies(cookies)
            page = await context.new_page()
            try:
                await establish_session(page, cfg.home_url, cfg.navigation_timeout_ms, cfg.settle_ms)
            except Exception:
                logger.exception("session_establish_failed url=%s", cfg.home_url)

            view = ScheduleView(cfg, page)
            check_count = 0
            while max_cycles is None or check_count < max_cycles:
                check_count += 1
                run_id = new_run_id()
                set_run_id(run_id)
                started_at = datetime.now(timezone.utc)
                start_ts = perf_counter()
                logger.info("monitor_check_start check=%s", check_count)

                status_payload: dict = {
                    "run_id": run_id,
                    "check": check_count,
                    "started_at": started_at.isoformat(),
                    "status": "ok",
                }
                try:
                    current, summary = await run_cycle(cfg, view, previous, notifier, logger)
                    previous = current
                    status_payload.update(summary)
                    save_state(cfg.state_path, current)
                except Exception as exc:
                    status_payload["status"] = "error"
                    status_payload["error"] = {"message": str(exc)}
                    logger.exception("monitor_check_failed check=%s", check_count)

                duration_seconds = perf_counter() - start_ts
                status_payload["finished_at"] = datetime.now(timezone.utc).isoformat()
                status_payload["duration_seconds"] = duration_seconds
                status_payload["duration_human"] = format_duration(duration_seconds)
                _write_status(cfg, status_payload, logger)
                logger.info(
                    "monitor_check_end check=%s status=%s duration_human=%s",
                    check_count,
                    status_payload["status"],
                    status_payload["duration_human"],
                )

                if max_cycles is not None and check_count >= max_cycles:
                    break
                logger.info("monitor_sleep seconds=%s", cfg.check_interval_seconds)
                await asyncio.sleep(cfg.check_interval_seconds)
        finally:
            await browser.close()


def main() -> None:
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)

    cfg = load_config()
    try:
        asyncio.run(monitor(cfg, logger))
    except CookieLoadError as exc:
        logger.error("cookies_load_failed error=%s", exc)
        raise SystemExit(1)
    except KeyboardInterrupt:
        logger.info("monitor_stopped")


if __name__ == "__main__":
    main()
