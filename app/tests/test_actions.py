import unittest

from fake_page import FakePage

from festival_watch.actions import (
    CheckoutContext,
    PaymentFieldsAction,
    QuantityAction,
    current_quantity,
    pick_quantity,
    quantity_for_control,
)
from festival_watch.models import PaymentDetails, PurchaseSettings, QuantityResult
from festival_watch.page_adapter import QuantityControl


def _select(*values: int, current: str = "0") -> QuantityControl:
    return QuantityControl(
        kind="select",
        options=tuple((str(v), str(v)) for v in values),
        current=current,
    )


class PickQuantityTests(unittest.TestCase):
    def test_exact_quantity_offered(self) -> None:
        self.assertEqual(pick_quantity(2, [1, 2, 3]), QuantityResult(True, 2))

    def test_degrades_to_highest_offered(self) -> None:
        self.assertEqual(pick_quantity(4, [1, 2, 3]), QuantityResult(True, 3))

    def test_skips_gaps(self) -> None:
        self.assertEqual(pick_quantity(5, [0, 1, 4, 6]), QuantityResult(True, 4))

    def test_nothing_usable(self) -> None:
        self.assertFalse(pick_quantity(2, [0]).success)
        self.assertFalse(pick_quantity(2, [3, 4]).success)
        self.assertFalse(pick_quantity(2, []).success)


class QuantityForControlTests(unittest.TestCase):
    def test_select_reads_numeric_labels(self) -> None:
        control = QuantityControl(kind="select", options=(("", "Select"), ("a", "1"), ("b", "2")))
        self.assertEqual(quantity_for_control(3, control), QuantityResult(True, 2))

    def test_input_capped_by_maximum(self) -> None:
        control = QuantityControl(kind="input", maximum=2)
        self.assertEqual(quantity_for_control(4, control), QuantityResult(True, 2))

    def test_input_without_maximum(self) -> None:
        control = QuantityControl(kind="input")
        self.assertEqual(quantity_for_control(4, control), QuantityResult(True, 4))

    def test_input_with_zero_maximum(self) -> None:
        control = QuantityControl(kind="input", maximum=0)
        self.assertFalse(quantity_for_control(1, control).success)

    def test_current_quantity_reads_selected_option_label(self) -> None:
        control = QuantityControl(kind="select", options=(("", "Select"), ("qty-2", "2")), current="qty-2")
        self.assertEqual(current_quantity(control), 2)
        self.assertIsNone(current_quantity(QuantityControl(kind="select", options=control.options, current="")))
        self.assertEqual(current_quantity(QuantityControl(kind="input", current=" 3 ")), 3)
        self.assertIsNone(current_quantity(QuantityControl(kind="input", current="")))


class QuantityActionTests(unittest.IsolatedAsyncioTestCase):
    async def test_sets_degraded_quantity_once(self) -> None:
        page = FakePage(quantity=_select(0, 1, 2, 3))
        ctx = CheckoutContext(page=page, settings=PurchaseSettings(ticket_quantity=4), payment=PaymentDetails())
        action = QuantityAction()

        self.assertTrue(await action.try_apply(ctx))
        self.assertEqual(ctx.quantity, QuantityResult(True, 3))
        self.assertEqual(page.quantity.current, "3")
        self.assertFalse(await action.try_apply(ctx))
        self.assertEqual(page.count("apply_quantity"), 1)

    async def test_no_control_no_effect(self) -> None:
        page = FakePage()
        ctx = CheckoutContext(page=page, settings=PurchaseSettings(), payment=PaymentDetails())
        self.assertFalse(await QuantityAction().try_apply(ctx))
        self.assertIsNone(ctx.quantity)

    async def test_unavailable_quantity_no_effect(self) -> None:
        page = FakePage(quantity=_select(0))
        ctx = CheckoutContext(page=page, settings=PurchaseSettings(ticket_quantity=2), payment=PaymentDetails())
        self.assertFalse(await QuantityAction().try_apply(ctx))
        self.assertEqual(page.count("apply_quantity"), 0)

    async def test_opaque_option_values_set_once(self) -> None:
        control = QuantityControl(kind="select", options=(("a", "1"), ("b", "2")), current="a")
        page = FakePage(quantity=control)
        ctx = CheckoutContext(page=page, settings=PurchaseSettings(ticket_quantity=2), payment=PaymentDetails())

        self.assertTrue(await QuantityAction().try_apply(ctx))
        self.assertEqual(page.quantity.current, "b")
        self.assertFalse(await QuantityAction().try_apply(ctx))


class PaymentFieldsActionTests(unittest.IsolatedAsyncioTestCase):
    async def test_empty_payment_skipped(self) -> None:
        page = FakePage()
        ctx = CheckoutContext(page=page, settings=PurchaseSettings(), payment=PaymentDetails())
        self.assertFalse(await PaymentFieldsAction().try_apply(ctx))
        self.assertEqual(page.count("fill_payment"), 0)

    async def test_fills_only_once(self) -> None:
        page = FakePage()
        payment = PaymentDetails(card_number="4242424242424242", exp="12/30", cvc="123")
        ctx = CheckoutContext(page=page, settings=PurchaseSettings(), payment=payment)
        self.assertTrue(await PaymentFieldsAction().try_apply(ctx))
        self.assertFalse(await PaymentFieldsAction().try_apply(ctx))


if __name__ == "__main__":
    unittest.main()
