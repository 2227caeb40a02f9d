import asyncio
import logging
import shutil
import sys
from html import escape
from typing import List, Tuple

import requests

from .models import ChangeEvent

RESEND_API_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 10
DESKTOP_TIMEOUT_SECONDS = 5

TYPE_LABELS = {
    "NOW_AVAILABLE": "🎟️ NOW AVAILABLE (was sold out)",
    "NEW_AVAILABLE": "✨ NEW TICKETS FOUND",
    "PURCHASE_SUCCESS": "✅ PURCHASE COMPLETED",
    "PURCHASE_FAILED": "❌ PURCHASE FAILED",
}
DEFAULT_LABEL = "🎬 UPDATE"


def _label(change: ChangeEvent) -> str:
    return TYPE_LABELS.get(change.type, DEFAULT_LABEL)


def build_email(changes: List[ChangeEvent]) -> Tuple[str, str, str]:
    """Subject, HTML body and plain-text body for one batch of changes."""
    names = ", ".join(c.title for c in changes)
    if len(changes) == 1:
        subject = f"🎬 Festival: {names} - {_label(changes[0])}"
    else:
        subject = f"🎬 Festival: {len(changes)} updates ({names})"

    text_parts = []
    blocks = []
    for c in changes:
        text_parts.append(f"{_label(c)}\n{c.title}\n{c.screening_time}\n{c.button_text}\n{c.url}\n")
        link = f'<p style="margin: 5px 0;"><a href="{escape(c.url)}">→ Open</a></p>' if c.url else ""
        blocks.append(
            '<div style="margin: 20px 0; padding: 15px; border-left: 4px solid #ff6b35; background: #f9f9f9;">'
            f'<div style="font-weight: 600; margin-bottom: 6px;">{escape(_label(c))}</div>'
            f'<h3 style="margin: 0 0 10px 0;">{escape(c.title)}</h3>'
            f'<p style="margin: 5px 0;"><strong>Time:</strong> {escape(c.screening_time or "—")}</p>'
            f'<p style="margin: 5px 0;"><strong>Details:</strong> {escape(c.button_text or "—")}</p>'
            f"{link}"
            "</div>"
        )
    plural = "updates" if len(changes) != 1 else "update"
    html = "\n".join(
        [
            "<h2>🎬 Festival Ticket Alert</h2>",
            f"<p><strong>{len(changes)} {plural}:</strong></p>",
            *blocks,
            '<p style="margin-top: 20px; color: #666; font-size: 12px;">Sent by festival-watch</p>',
        ]
    )
    return subject, html, "\n".join(text_parts)


def send_resend_email(api_key: str, sender: str, recipient: str, subject: str, html: str, text: str) -> str:
    response = requests.post(
        RESEND_API_URL,
        headers={"Authorization": f"Bearer {api_key}"},
        json={"from": sender, "to": [recipient], "subject": subject, "html": html, "text": text},
        timeout=RESEND_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    try:
        return str(response.json().get("id") or "")
    except ValueError:
        return ""


class Notifier:
    """Fans a batch of changes out to the log, the desktop and e-mail.

    Delivery failures are logged and never raised to the caller.
    """

    def __init__(
        self,
        resend_api_key: str | None = None,
        from_email: str | None = None,
        to_email: str | None = None,
        desktop: bool = True,
    ) -> None:
        self._resend_api_key = resend_api_key
        self._from_email = from_email
        self._to_email = to_email
        self._desktop = desktop and sys.platform == "darwin" and shutil.which("osascript") is not None
        self._logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, cfg) -> "Notifier":
        return cls(
            resend_api_key=cfg.resend_api_key,
            from_email=cfg.resend_from_email,
            to_email=cfg.resend_to_email,
            desktop=cfg.desktop_notifications,
        )

    @property
    def email_enabled(self) -> bool:
        return bool(self._resend_api_key and self._from_email and self._to_email)

    async def __call__(self, changes: List[ChangeEvent]) -> None:
        if not changes:
            return
        self.log_changes(changes)
        if self._desktop:
            await self.notify_desktop(changes)
        if self.email_enabled:
            await self.notify_email(changes)

    def log_changes(self, changes: List[ChangeEvent]) -> None:
        self._logger.warning("ticket_alert changes=%s", len(changes))
        for c in changes:
            self._logger.warning(
                "ticket_alert_item type=%s title=%r screening_time=%r details=%r url=%s",
                c.type,
                c.title,
                c.screening_time,
                c.button_text,
                c.url,
            )

    async def notify_desktop(self, changes: List[ChangeEvent]) -> None:
        titles = ", ".join(c.title for c in changes)
        message = f"{len(changes)} ticket update(s): {titles}".replace("\\", "\\\\").replace('"', '\\"')
        script = f'display notification "{message}" with title "Festival tickets"'
        try:
            proc = await asyncio.create_subprocess_exec(
                "osascript",
                "-e",
                script,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(proc.wait(), timeout=DESKTOP_TIMEOUT_SECONDS)
        except Exception:
            self._logger.debug("desktop_notify_failed", exc_info=True)

    async def notify_email(self, changes: List[ChangeEvent]) -> None:
        subject, html, text = build_email(changes)
        try:
            email_id = await asyncio.to_thread(
                send_resend_email,
                self._resend_api_key,
                self._from_email,
                self._to_email,
                subject,
                html,
                text,
            )
        except Exception:
            self._logger.warning("email_notify_failed changes=%s", len(changes), exc_info=True)
            return
        self._logger.info("email_notify_sent changes=%s id=%s", len(changes), email_id)
