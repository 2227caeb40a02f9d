from pathlib import Path
from typing import List, Optional

from festival_watch.models import PaymentDetails
from festival_watch.page_adapter import PageAdapter, QuantityControl


class FakePage(PageAdapter):
    """In-memory checkout page.

    Agreement boxes gate the final-purchase button; clicking it confirms the
    order when ``final_confirms`` is set.
    """

    def __init__(
        self,
        url: str = "https://tickets.example.org/checkout",
        entry: bool = True,
        popup: Optional["FakePage"] = None,
        queue: bool = False,
        login: bool = False,
        confirmed: bool = False,
        modal_error: bool = False,
        unchecked_agreements: int = 0,
        final_button: bool = False,
        final_confirms: bool = True,
        additional_prompt: bool = False,
        quantity: Optional[QuantityControl] = None,
        saved_payment: bool = False,
        continue_clicks: int = 0,
    ) -> None:
        self._url = url
        self.entry = entry
        self.popup = popup
        self.queue = queue
        self.login = login
        self.confirmed = confirmed
        self.modal_error = modal_error
        self.unchecked_agreements = unchecked_agreements
        self.final_button = final_button
        self.final_confirms = final_confirms
        self.additional_prompt = additional_prompt
        self.quantity = quantity
        self.saved_payment = saved_payment
        self.continue_clicks = continue_clicks
        self.filled: dict = {}
        self.calls: List[str] = []
        self.waits: List[int] = []
        self.screenshots: List[Path] = []
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def open_entry(self, title: str, screening_time: str, popup_timeout_ms: int) -> Optional[PageAdapter]:
        self.calls.append("open_entry")
        if not self.entry:
            return None
        return self.popup or self

    async def click_additional_tickets(self, wait_ms: int) -> bool:
        self.calls.append("click_additional_tickets")
        return self.additional_prompt

    async def detect_queue(self) -> bool:
        self.calls.append("detect_queue")
        return self.queue

    async def detect_login(self) -> bool:
        self.calls.append("detect_login")
        return self.login

    async def detect_confirmation(self) -> bool:
        self.calls.append("detect_confirmation")
        return self.confirmed

    async def detect_modal_error(self) -> bool:
        self.calls.append("detect_modal_error")
        return self.modal_error

    async def check_agreements(self) -> bool:
        self.calls.append("check_agreements")
        if self.unchecked_agreements:
            self.unchecked_agreements = 0
            return True
        return False

    async def click_final_purchase(self) -> bool:
        self.calls.append("click_final_purchase")
        if not self.final_button or self.unchecked_agreements:
            return False
        if self.final_confirms:
            self.confirmed = True
        return True

    async def find_quantity_control(self) -> Optional[QuantityControl]:
        self.calls.append("find_quantity_control")
        return self.quantity

    async def apply_quantity(self, quantity: int) -> bool:
        self.calls.append("apply_quantity")
        if self.quantity is None:
            return False
        wanted = str(quantity)
        current = wanted
        if self.quantity.kind == "select":
            # a select holds the matched option's value, not its label
            matches = [v for v, label in self.quantity.options if v == wanted or label.strip() == wanted]
            if not matches:
                return False
            current = matches[0]
        self.quantity = QuantityControl(
            kind=self.quantity.kind,
            options=self.quantity.options,
            current=current,
            maximum=self.quantity.maximum,
        )
        return True

    async def select_saved_payment(self) -> bool:
        self.calls.append("select_saved_payment")
        if self.saved_payment:
            self.saved_payment = False
            return True
        return False

    async def fill_payment(self, payment: PaymentDetails) -> bool:
        self.calls.append("fill_payment")
        wanted = {k: v for k, v in vars(payment).items() if v}
        if wanted == self.filled:
            return False
        self.filled = wanted
        return True

    async def click_continue(self) -> bool:
        self.calls.append("click_continue")
        if self.continue_clicks:
            self.continue_clicks -= 1
            return True
        return False

    async def visible_buttons(self) -> List[str]:
        return ["Back"]

    async def settle(self, wait_ms: int) -> None:
        self.calls.append("settle")
        self.waits.append(wait_ms)

    async def pause(self, wait_ms: int) -> None:
        self.calls.append("pause")
        self.waits.append(wait_ms)

    async def screenshot(self, path: Path) -> None:
        self.screenshots.append(path)

    async def close(self) -> None:
        self.closed = True
