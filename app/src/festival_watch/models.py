from dataclasses import dataclass, field, replace
from typing import Literal, Optional

Status = Literal["UNKNOWN", "AVAILABLE", "SOLD_OUT", "WAITLIST"]
STATUSES: tuple[str, ...] = ("UNKNOWN", "AVAILABLE", "SOLD_OUT", "WAITLIST")

ChangeType = Literal["NEW_AVAILABLE", "NOW_AVAILABLE", "PURCHASE_SUCCESS", "PURCHASE_FAILED"]
PURCHASE_TRIGGERS: tuple[str, ...] = ("NEW_AVAILABLE", "NOW_AVAILABLE")


@dataclass(frozen=True)
class ScreeningRecord:
    title: str
    screening_time: str
    status: Status = "UNKNOWN"
    button_text: str = ""
    url: str = ""

    def to_json(self) -> dict:
        return {
            "title": self.title,
            "screeningTime": self.screening_time,
            "status": self.status,
            "buttonText": self.button_text,
            "url": self.url,
        }


@dataclass(frozen=True)
class ChangeEvent:
    type: ChangeType
    title: str
    screening_time: str
    status: Status = "UNKNOWN"
    button_text: str = ""   # result reason for PURCHASE_* events
    url: str = ""

    @classmethod
    def from_record(cls, type_: ChangeType, record: ScreeningRecord) -> "ChangeEvent":
        return cls(
            type=type_,
            title=record.title,
            screening_time=record.screening_time,
            status=record.status,
            button_text=record.button_text,
            url=record.url,
        )


@dataclass(frozen=True)
class FilmRule:
    title: str
    screening_time: Optional[str] = None
    auto_purchase: bool = False


@dataclass(frozen=True)
class PaymentDetails:
    card_number: str | None = None
    exp: str | None = None
    cvc: str | None = None
    name: str | None = None
    zip: str | None = None

    def has_card(self) -> bool:
        return bool(self.card_number or self.exp or self.cvc)

    def is_empty(self) -> bool:
        return not (self.has_card() or self.name or self.zip)


@dataclass(frozen=True)
class PurchaseSettings:
    ticket_quantity: int = 1
    notify_on_purchase_updates: bool = True
    debug_screenshots: bool = False
    max_steps: int = 12
    step_wait_ms: int = 1800
    wait_for_additional_ms: int = 15000
    keep_checkout_open: bool = False
    debug_button_dump: bool = False
    payment: PaymentDetails | None = None

    def with_overrides(self, **changes) -> "PurchaseSettings":
        return replace(self, **changes)


@dataclass(frozen=True)
class AutoPurchaseConfig:
    enabled: bool
    films: tuple[FilmRule, ...] = ()
    settings: PurchaseSettings = field(default_factory=PurchaseSettings)


@dataclass(frozen=True)
class CheckoutResult:
    success: bool
    reason: str
    url: str = ""


@dataclass(frozen=True)
class QuantityResult:
    success: bool
    quantity: int = 0
