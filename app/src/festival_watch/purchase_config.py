import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Optional

from .models import AutoPurchaseConfig, FilmRule, PaymentDetails, PurchaseSettings

logger = logging.getLogger(__name__)

PAYMENT_ENV = {
    "card_number": ("FESTIVAL_CARD_NUMBER",),
    "exp": ("FESTIVAL_CARD_EXP",),
    "cvc": ("FESTIVAL_CARD_CVC",),
    "name": ("FESTIVAL_CARD_NAME",),
    "zip": ("FESTIVAL_BILLING_ZIP", "FESTIVAL_BILLING_POSTAL"),
}


def _setting_int(raw: dict, key: str, default: int, minimum: int = 1) -> int:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        value = None
    try:
        parsed = int(value) if value is not None else None
    except (TypeError, ValueError):
        parsed = None
    if parsed is None or parsed < minimum:
        logger.warning("invalid setting %s=%r, using default=%s", key, value, default)
        return default
    return parsed


def _setting_bool(raw: dict, key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    logger.warning("invalid setting %s=%r, using default=%s", key, value, default)
    return default


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_payment(raw: Any) -> PaymentDetails | None:
    if not isinstance(raw, dict):
        return None
    return PaymentDetails(
        card_number=_text(raw.get("cardNumber")),
        exp=_text(raw.get("exp")),
        cvc=_text(raw.get("cvc")),
        name=_text(raw.get("name")),
        zip=_text(raw.get("zip")),
    )


def _parse_settings(raw: Any) -> PurchaseSettings:
    if not isinstance(raw, dict):
        raw = {}
    defaults = PurchaseSettings()
    return PurchaseSettings(
        ticket_quantity=_setting_int(raw, "ticketQuantity", defaults.ticket_quantity),
        notify_on_purchase_updates=_setting_bool(
            raw, "notifyOnPurchaseUpdates", defaults.notify_on_purchase_updates
        ),
        debug_screenshots=_setting_bool(raw, "debugScreenshots", defaults.debug_screenshots),
        max_steps=_setting_int(raw, "maxSteps", defaults.max_steps),
        step_wait_ms=_setting_int(raw, "stepWaitMs", defaults.step_wait_ms, minimum=0),
        wait_for_additional_ms=_setting_int(
            raw, "waitForBuyAdditionalMs", defaults.wait_for_additional_ms, minimum=0
        ),
        keep_checkout_open=_setting_bool(raw, "keepCheckoutOpen", defaults.keep_checkout_open),
        debug_button_dump=_setting_bool(raw, "debugButtonDump", defaults.debug_button_dump),
        payment=_parse_payment(raw.get("payment")),
    )


def _parse_films(raw: Any) -> tuple[FilmRule, ...]:
    if not isinstance(raw, list):
        return ()
    rules = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        title = _text(item.get("title"))
        if not title:
            logger.warning("auto_purchase_rule_skipped reason=missing_title rule=%r", item)
            continue
        rules.append(
            FilmRule(
                title=title,
                screening_time=_text(item.get("screeningTime")),
                auto_purchase=item.get("autoPurchase") is True,
            )
        )
    return tuple(rules)


def parse_auto_purchase_config(data: Any) -> AutoPurchaseConfig:
    if not isinstance(data, dict):
        raise ValueError("auto-purchase config must be a JSON object")
    return AutoPurchaseConfig(
        enabled=data.get("enabled") is True,
        films=_parse_films(data.get("films")),
        settings=_parse_settings(data.get("settings")),
    )


def load_auto_purchase_config(path: Path) -> Optional[AutoPurchaseConfig]:
    """Read the purchase rules; ``None`` means purchasing is off."""
    if not path.exists():
        return None
    try:
        config = parse_auto_purchase_config(json.loads(path.read_text("utf-8")))
    except Exception:
        logger.exception("auto_purchase_config_load_failed path=%s", path)
        return None
    if not config.enabled:
        logger.info("auto_purchase_disabled path=%s", path)
        return None
    logger.info(
        "auto_purchase_config_loaded path=%s rules=%s armed=%s",
        path,
        len(config.films),
        sum(1 for f in config.films if f.auto_purchase),
    )
    return config


def resolve_payment(settings: PurchaseSettings) -> PaymentDetails:
    """Payment values from the config file, falling back to the environment."""
    configured = settings.payment or PaymentDetails()
    values = {}
    for attr, env_names in PAYMENT_ENV.items():
        value = getattr(configured, attr)
        if not value:
            for env_name in env_names:
                value = _text(os.getenv(env_name))
                if value:
                    break
        values[attr] = value
    return PaymentDetails(**values)


def build_rules_payload(screenings: Iterable[tuple[str, str]]) -> dict:
    # One rule per screening; the user flips autoPurchase on by hand.
    films = [
        {"title": title, "screeningTime": screening_time, "autoPurchase": False}
        for title, screening_time in screenings
    ]
    return {
        "enabled": True,
        "films": films,
        "settings": {
            "ticketQuantity": 1,
            "notifyOnPurchaseUpdates": True,
            "debugScreenshots": False,
        },
    }
