"""Checkout automation engine.

An attempt moves through ``AWAITING_ENTRY -> AWAITING_ADDITIONAL_PROMPT ->
CHECKOUT_STEPPING`` and ends ``CONFIRMED`` or ``FAILED``. The purchase UI is
not scripted: every step re-checks the hazards and re-runs the ordered
actions from ``actions.default_actions`` until the page confirms, a hazard
stops the attempt, or ``max_steps`` is spent.
"""
import logging
import re
import time
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

from .actions import Action, CheckoutContext, default_actions
from .matcher import resolve_rule
from .models import AutoPurchaseConfig, ChangeEvent, CheckoutResult, PaymentDetails, PurchaseSettings
from .page_adapter import PageAdapter
from .purchase_config import resolve_payment

logger = logging.getLogger(__name__)

Notifier = Callable[[List[ChangeEvent]], Awaitable[None]]

POPUP_TIMEOUT_MS = 8000
ENTRY_SETTLE_MS = 1500
PROMPT_RENDER_WAIT_MS = 1500
NO_ACTION_RETRY_MS = 1500

REASON_ENTRY_NOT_FOUND = "entry control not found"
REASON_QUEUE = "queue/waiting room encountered"
REASON_LOGIN = "login required during checkout"
REASON_CONFIRMED = "purchase confirmed"
REASON_MODAL_ERROR = "checkout error in modal"
REASON_INCOMPLETE = "checkout flow incomplete"
REASON_NOT_LISTED = "screening not in auto-purchase list"
REASON_NOT_ARMED = "auto-purchase disabled for this screening"


class CheckoutState(Enum):
    AWAITING_ENTRY = "awaiting_entry"
    AWAITING_ADDITIONAL_PROMPT = "awaiting_additional_prompt"
    CHECKOUT_STEPPING = "checkout_stepping"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (title or "").lower().strip()).strip("-")
    return slug[:48]


class CheckoutEngine:
    def __init__(
        self,
        page: PageAdapter,
        settings: PurchaseSettings,
        payment: Optional[PaymentDetails] = None,
        actions: Optional[Sequence[Action]] = None,
        screenshot_dir: Optional[Path] = None,
        label: str = "film",
        popup_timeout_ms: int = POPUP_TIMEOUT_MS,
    ) -> None:
        self.origin = page
        # Whichever page the flow currently runs in: the origin or its popup.
        self.active = page
        self.settings = settings
        self.payment = payment or PaymentDetails()
        self.actions = list(actions) if actions is not None else default_actions()
        self.screenshot_dir = screenshot_dir
        self.label = label
        self.popup_timeout_ms = popup_timeout_ms
        self.run_id = int(time.time() * 1000)
        self.state = CheckoutState.AWAITING_ENTRY
        self.steps = 0

    def _finish(self, success: bool, reason: str) -> CheckoutResult:
        self.state = CheckoutState.CONFIRMED if success else CheckoutState.FAILED
        return CheckoutResult(success=success, reason=reason, url=self.active.url)

    async def capture(self, label: str) -> None:
        if not self.settings.debug_screenshots or self.screenshot_dir is None:
            return
        path = self.screenshot_dir / f"auto-purchase-{self.label}-{self.run_id}-{label}.png"
        await self.active.screenshot(path)

    async def enter(self, title: str, screening_time: str) -> Optional[CheckoutResult]:
        target = await self.origin.open_entry(title, screening_time, self.popup_timeout_ms)
        if target is None:
            logger.warning("checkout_entry_not_found title=%r screening_time=%r", title, screening_time)
            return self._finish(False, REASON_ENTRY_NOT_FOUND)
        self.active = target
        await self.active.settle(ENTRY_SETTLE_MS)
        await self.capture("after-order")
        self.state = CheckoutState.AWAITING_ADDITIONAL_PROMPT
        return None

    async def open_additional_prompt(self) -> bool:
        await self.active.pause(PROMPT_RENDER_WAIT_MS)
        clicked = await self.active.click_additional_tickets(self.settings.wait_for_additional_ms)
        if clicked:
            await self.active.settle(self.settings.step_wait_ms)
            logger.info("checkout_additional_prompt_opened")
        else:
            logger.info("checkout_additional_prompt_missing assuming_in_checkout=true")
        self.state = CheckoutState.CHECKOUT_STEPPING
        return clicked

    async def check_hazards(self) -> Optional[CheckoutResult]:
        page = self.active
        if await page.detect_queue():
            return self._finish(False, REASON_QUEUE)
        if await page.detect_login():
            return self._finish(False, REASON_LOGIN)
        if await page.detect_confirmation():
            return self._finish(True, REASON_CONFIRMED)
        if await page.detect_modal_error():
            return self._finish(False, REASON_MODAL_ERROR)
        return None

    async def step_through(self) -> CheckoutResult:
        ctx = CheckoutContext(page=self.active, settings=self.settings, payment=self.payment)
        max_steps = self.settings.max_steps
        for step in range(1, max_steps + 1):
            self.steps = step
            logger.info("checkout_step step=%s max_steps=%s url=%s", step, max_steps, self.active.url)

            hazard = await self.check_hazards()
            if hazard is not None:
                return hazard

            acted_by = None
            for action in self.actions:
                if await action.try_apply(ctx):
                    acted_by = action.name
                    break

            if ctx.outcome is not None:
                return self._finish(ctx.outcome.success, ctx.outcome.reason)

            if acted_by is None:
                if self.settings.debug_screenshots or self.settings.debug_button_dump:
                    buttons = await self.active.visible_buttons()
                    logger.info("checkout_no_action step=%s buttons=%s", step, " | ".join(buttons))
                await self.active.pause(NO_ACTION_RETRY_MS)
                continue

            logger.debug("checkout_step_acted step=%s action=%s", step, acted_by)
            await self.active.settle(self.settings.step_wait_ms)
            await self.capture(f"step-{step}")

        return self._finish(False, REASON_INCOMPLETE)

    async def run(self, title: str, screening_time: str = "") -> CheckoutResult:
        failed = await self.enter(title, screening_time)
        if failed is not None:
            return failed
        await self.open_additional_prompt()
        return await self.step_through()

    async def release(self) -> None:
        if self.active is not self.origin and not self.settings.keep_checkout_open:
            await self.active.close()
        self.active = self.origin


async def _notify_result(
    notifier: Optional[Notifier],
    settings: PurchaseSettings,
    title: str,
    screening_time: str,
    result: CheckoutResult,
) -> None:
    if notifier is None or not settings.notify_on_purchase_updates:
        return
    change = ChangeEvent(
        type="PURCHASE_SUCCESS" if result.success else "PURCHASE_FAILED",
        title=title,
        screening_time=screening_time,
        status="AVAILABLE",
        button_text=result.reason,
        url=result.url,
    )
    try:
        await notifier([change])
    except Exception:
        logger.warning("purchase_notify_failed title=%r", title, exc_info=True)


async def attempt_purchase(
    page: PageAdapter,
    title: str,
    screening_time: str,
    config: AutoPurchaseConfig,
    notifier: Optional[Notifier] = None,
    screenshot_dir: Optional[Path] = None,
    actions: Optional[Sequence[Action]] = None,
) -> CheckoutResult:
    """Run one purchase attempt; never raises, always returns one result."""
    logger.info("purchase_attempt_start title=%r screening_time=%r", title, screening_time)

    rule = resolve_rule(title, screening_time, config)
    if rule is None:
        return CheckoutResult(success=False, reason=REASON_NOT_LISTED)
    if rule.auto_purchase is not True:
        return CheckoutResult(success=False, reason=REASON_NOT_ARMED)

    settings = config.settings
    engine = CheckoutEngine(
        page,
        settings,
        payment=resolve_payment(settings),
        actions=actions,
        screenshot_dir=screenshot_dir,
        label=slugify(title) or "film",
    )
    started = time.perf_counter()
    try:
        result = await engine.run(title, screening_time)
    except Exception as exc:
        logger.exception("purchase_attempt_error title=%r state=%s", title, engine.state.value)
        if screenshot_dir is not None:
            await engine.active.screenshot(screenshot_dir / f"auto-purchase-error-{engine.run_id}.png")
        engine.state = CheckoutState.FAILED
        result = CheckoutResult(success=False, reason=str(exc) or type(exc).__name__, url=engine.active.url)
    finally:
        await engine.release()

    logger.info(
        "purchase_attempt_end title=%r success=%s reason=%r steps=%s duration_ms=%s url=%s",
        title,
        result.success,
        result.reason,
        engine.steps,
        int((time.perf_counter() - started) * 1000),
        result.url,
    )
    await _notify_result(notifier, settings, title, screening_time, result)
    return result
