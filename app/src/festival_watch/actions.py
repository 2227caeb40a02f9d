"""Checkout actions, tried in priority order on every step.

Each action is idempotent: it reports an effect only when it changed the
page (checked an unchecked box, set a value the control did not hold,
clicked something). Re-running the whole list every step lets the engine
follow flows that present these controls in any order or not at all.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import CheckoutResult, PaymentDetails, PurchaseSettings, QuantityResult
from .page_adapter import PageAdapter, QuantityControl

logger = logging.getLogger(__name__)

FINAL_PURCHASE_EXTRA_SETTLE_MS = 1000


def pick_quantity(desired: int, offered: Iterable[int]) -> QuantityResult:
    """The desired quantity if offered, else the highest offered quantity below it."""
    available = {q for q in offered if q >= 1}
    for qty in range(desired, 0, -1):
        if qty in available:
            return QuantityResult(success=True, quantity=qty)
    return QuantityResult(success=False)


def _option_quantity(value: str, label: str) -> Optional[int]:
    for raw in (value, label):
        try:
            return int(raw.strip())
        except (ValueError, AttributeError):
            continue
    return None


def _offered_quantities(control: QuantityControl) -> List[int]:
    offered = []
    for value, label in control.options:
        qty = _option_quantity(value, label)
        if qty is not None:
            offered.append(qty)
    return offered


def current_quantity(control: QuantityControl) -> Optional[int]:
    """The quantity the control holds now.

    A select reports its option value, which may be an opaque id; the
    quantity is read from that option the same way offered quantities are.
    """
    if control.kind == "select":
        for value, label in control.options:
            if value == control.current:
                return _option_quantity(value, label)
        return None
    try:
        return int(control.current.strip())
    except ValueError:
        return None


def quantity_for_control(desired: int, control: QuantityControl) -> QuantityResult:
    if control.kind == "select":
        return pick_quantity(desired, _offered_quantities(control))
    target = desired if control.maximum is None else min(desired, control.maximum)
    if target < 1:
        return QuantityResult(success=False)
    return QuantityResult(success=True, quantity=target)


@dataclass
class CheckoutContext:
    """Mutable per-attempt state shared by the actions."""
    page: PageAdapter
    settings: PurchaseSettings
    payment: PaymentDetails
    outcome: Optional[CheckoutResult] = None
    quantity: Optional[QuantityResult] = None


class Action:
    name = "action"

    async def try_apply(self, ctx: CheckoutContext) -> bool:
        raise NotImplementedError


class AgreementAction(Action):
    name = "agreement"

    async def try_apply(self, ctx: CheckoutContext) -> bool:
        return await ctx.page.check_agreements()


class FinalPurchaseAction(Action):
    name = "final_purchase"

    async def try_apply(self, ctx: CheckoutContext) -> bool:
        if not await ctx.page.click_final_purchase():
            return False
        await ctx.page.settle(ctx.settings.step_wait_ms + FINAL_PURCHASE_EXTRA_SETTLE_MS)
        if await ctx.page.detect_confirmation():
            ctx.outcome = CheckoutResult(success=True, reason="purchase confirmed", url=ctx.page.url)
        return True


class QuantityAction(Action):
    name = "quantity"

    async def try_apply(self, ctx: CheckoutContext) -> bool:
        control = await ctx.page.find_quantity_control()
        if control is None:
            return False
        desired = ctx.settings.ticket_quantity
        result = quantity_for_control(desired, control)
        if not result.success:
            logger.info("checkout_quantity_unavailable desired=%s", desired)
            return False
        if current_quantity(control) == result.quantity:
            return False
        if not await ctx.page.apply_quantity(result.quantity):
            return False
        ctx.quantity = result
        if result.quantity < desired:
            logger.warning(
                "checkout_quantity_degraded desired=%s quantity=%s",
                desired,
                result.quantity,
            )
        else:
            logger.info("checkout_quantity_set quantity=%s", result.quantity)
        return True


class SavedPaymentAction(Action):
    name = "saved_payment"

    async def try_apply(self, ctx: CheckoutContext) -> bool:
        return await ctx.page.select_saved_payment()


class PaymentFieldsAction(Action):
    name = "payment_fields"

    async def try_apply(self, ctx: CheckoutContext) -> bool:
        if ctx.payment.is_empty():
            return False
        return await ctx.page.fill_payment(ctx.payment)


class ContinueAction(Action):
    name = "continue"

    async def try_apply(self, ctx: CheckoutContext) -> bool:
        return await ctx.page.click_continue()


def default_actions() -> List[Action]:
    return [
        AgreementAction(),
        FinalPurchaseAction(),
        QuantityAction(),
        SavedPaymentAction(),
        PaymentFieldsAction(),
        ContinueAction(),
    ]
