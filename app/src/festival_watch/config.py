from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv
import logging
import os

load_dotenv()

@dataclass(frozen=True)
class Config:
    home_url: str
    schedule_url: str
    check_interval_seconds: int
    headless: bool

    out_dir: Path
    state_path: Path
    cookies_path: Path
    auto_purchase_path: Path

    navigation_timeout_ms: int
    schedule_wait_ms: int
    settle_ms: int

    resend_api_key: str | None
    resend_from_email: str | None
    resend_to_email: str | None
    desktop_notifications: bool


def _int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        value = None
    if value is None or value < minimum:
        logging.getLogger(__name__).warning(
            "invalid %s=%s, using default=%s",
            name,
            raw,
            default,
        )
        return default
    return value


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    val = raw.strip().lower()
    if val in ("1", "true", "yes", "on"):
        return True
    if val in ("0", "false", "no", "off"):
        return False
    logging.getLogger(__name__).warning(
        "invalid %s=%s, using default=%s",
        name,
        raw,
        default,
    )
    return default


def _optional(name: str) -> str | None:
    return os.getenv(name, "").strip() or None


def load_config() -> Config:
    out_dir = Path(os.getenv("OUT_DIR", "./out"))
    out_dir.mkdir(parents=True, exist_ok=True)

    state_path = Path(os.getenv("STATE_PATH", "").strip() or out_dir / "ticket-state.json")

    return Config(
        home_url=os.getenv("HOME_URL", "https://festival.sundance.org/").strip(),
        schedule_url=os.getenv(
            "SCHEDULE_URL",
            "https://festival.sundance.org/my-festival/my-schedule",
        ).strip(),
        check_interval_seconds=_int("CHECK_INTERVAL_SECONDS", 60),
        headless=_bool("HEADLESS", True),

        out_dir=out_dir,
        state_path=state_path,
        cookies_path=Path(os.getenv("COOKIES_PATH", "./cookies.json")),
        auto_purchase_path=Path(os.getenv("AUTO_PURCHASE_PATH", "./auto-purchase.json")),

        navigation_timeout_ms=_int("NAVIGATION_TIMEOUT_MS", 60000),
        schedule_wait_ms=_int("SCHEDULE_WAIT_MS", 30000),
        settle_ms=_int("SETTLE_MS", 3000, minimum=0),

        resend_api_key=_optional("RESEND_API_KEY"),
        resend_from_email=_optional("RESEND_FROM_EMAIL"),
        resend_to_email=_optional("RESEND_TO_EMAIL"),
        desktop_notifications=_bool("DESKTOP_NOTIFICATIONS", True),
    )
