import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Pattern, Sequence

from .models import PaymentDetails

logger = logging.getLogger(__name__)

BUTTON_SELECTOR = 'button, [role="button"], a, input[type="button"], input[type="submit"]'
MAX_CANDIDATES_PER_PATTERN = 6
CLICK_TIMEOUT_MS = 5000
LOAD_STATE_TIMEOUT_MS = 15000
POLL_INTERVAL_MS = 500

ADDITIONAL_TICKETS_TEXT = "buy additional tickets"
ADDITIONAL_TICKETS_PATTERNS = [
    re.compile(r"buy\s+additional\s+tickets", re.I),
    re.compile(r"buy\s+additional", re.I),
    re.compile(r"add\s+tickets?", re.I),
    re.compile(r"add\s+another", re.I),
]
CONTINUE_PATTERNS = [
    re.compile(r"add\s+to\s+cart", re.I),
    re.compile(r"continue", re.I),
    re.compile(r"next", re.I),
    re.compile(r"checkout", re.I),
    re.compile(r"proceed", re.I),
    re.compile(r"review", re.I),
]
FINAL_PURCHASE_PATTERNS = [
    re.compile(r"complete\s+purchase", re.I),
    re.compile(r"place\s+order", re.I),
    re.compile(r"confirm\s+purchase", re.I),
    re.compile(r"pay\s+now", re.I),
    re.compile(r"submit\s+order", re.I),
    re.compile(r"buy\s+now", re.I),
    re.compile(r"finish", re.I),
]
SOLD_OUT_LABEL = re.compile(r"sold\s*out", re.I)
_FIELD_FORMATTING = re.compile(r"[\s\-/.]+")

QUEUE_URL = re.compile(r"queue|waiting-room", re.I)
QUEUE_TEXT = "text=/waiting room|queue/i"
LOGIN_URL = re.compile(r"login|sign-in|signin|auth", re.I)
LOGIN_TEXT = "text=/sign in|log in/i"
CONFIRMATION_URL = re.compile(r"confirmation|receipt|thank-you|order-complete|purchase-complete", re.I)
CONFIRMATION_TEXT = "text=/thank you|order confirmed|purchase complete|confirmation number|receipt/i"

CARD_NUMBER_FIELDS = [
    'input[name="cardnumber"]',
    'input[autocomplete="cc-number"]',
    'input[aria-label*="Card number"]',
    'input[placeholder*="Card number"]',
    'input[placeholder*="Card Number"]',
]
CARD_EXP_FIELDS = [
    'input[name="exp-date"]',
    'input[autocomplete="cc-exp"]',
    'input[aria-label*="Expiry"]',
    'input[aria-label*="Expiration"]',
    'input[placeholder*="MM"]',
    'input[placeholder*="MM/YY"]',
]
CARD_CVC_FIELDS = [
    'input[name="cvc"]',
    'input[name="cvv"]',
    'input[autocomplete="cc-csc"]',
    'input[aria-label*="CVC"]',
    'input[aria-label*="CVV"]',
    'input[placeholder*="CVC"]',
]
CARD_NAME_FIELDS = [
    'input[name*="name"]',
    'input[autocomplete="cc-name"]',
    'input[aria-label*="Name on card"]',
    'input[placeholder*="Name"]',
]
POSTAL_FIELDS = [
    'input[name*="zip"]',
    'input[name*="postal"]',
    'input[autocomplete="postal-code"]',
    'input[aria-label*="ZIP"]',
    'input[placeholder*="ZIP"]',
    'input[placeholder*="Postal"]',
]

_MARK_ENTRY_JS = """(args) => {
    const norm = (s) => (s || '').replace(/\\s+/g, ' ').trim().toLowerCase();
    for (const el of document.querySelectorAll('[data-auto-purchase-target]')) {
      el.removeAttribute('data-auto-purchase-target');
    }
    const wantedTitle = norm(args.title);
    const wantedTime = norm(args.time);
    const descs = Array.from(document.querySelectorAll('.sd_schedule_film_desc'));
    for (const desc of descs) {
      const titleEl = desc.querySelector('h3');
      if (!titleEl || !norm(titleEl.textContent).includes(wantedTitle)) continue;
      if (wantedTime) {
        const dateEl = desc.querySelector('.sd_start_end_date');
        if (!dateEl || norm(dateEl.textContent) !== wantedTime) continue;
      }
      const row = desc.closest('.rdt_TableRow, [class*="TableRow"]');
      if (!row) continue;
      const buttons = row.querySelectorAll('button, [role="button"], a, input[type="button"], input[type="submit"]');
      for (const btn of buttons) {
        const text = (btn.textContent || '').trim().toUpperCase();
        if (text.includes('ORDER') || text.includes('GET') || (text.includes('BUY') && text.includes('TICKET'))) {
          btn.setAttribute('data-auto-purchase-target', 'true');
          return text;
        }
      }
    }
    return null;
}"""

# Matches containers too: the prompt is often a plain div, not a button.
_CLICK_BY_TEXT_JS = """(search) => {
    const wanted = search.toLowerCase();
    for (const el of document.querySelectorAll('*')) {
      const text = (el.innerText || el.textContent || '').toLowerCase();
      const direct = Array.from(el.childNodes)
        .filter(n => n.nodeType === Node.TEXT_NODE)
        .map(n => n.textContent)
        .join('')
        .toLowerCase();
      if (direct.includes(wanted) || (text.includes(wanted) && el.children.length === 0)) {
        const clickable = el.closest('a, button, [role="button"], [onclick]') || el;
        if (clickable.offsetParent !== null) {
          clickable.click();
          return (clickable.innerText || '').trim().substring(0, 50);
        }
      }
    }
    return null;
}"""

_CHECK_AGREEMENTS_JS = """() => {
    const patterns = [/agree/i, /terms/i, /conditions/i, /policy/i, /purchasing/i];
    let checked = 0;
    for (const box of document.querySelectorAll('input[type="checkbox"]')) {
      if (box.disabled || box.checked) continue;
      const label = box.closest('label') || (box.id ? document.querySelector(`label[for="${box.id}"]`) : null);
      const parent = box.parentElement;
      const text = [label?.innerText, box.getAttribute('aria-label'), parent?.innerText, parent?.textContent]
        .filter(Boolean).join(' ');
      if (patterns.some(p => p.test(text))) {
        box.click();
        if (box.checked) checked += 1;
      }
    }
    return checked;
}"""

_SELECT_SAVED_PAYMENT_JS = """() => {
    const patterns = ['VISA', 'MASTERCARD', 'AMEX', 'AMERICAN EXPRESS', 'DISCOVER', 'ENDING', '****', 'CARD'];
    for (const radio of document.querySelectorAll('input[type="radio"]')) {
      if (radio.disabled) continue;
      const label = radio.closest('label') || (radio.id ? document.querySelector(`label[for="${radio.id}"]`) : null);
      const text = (label?.innerText || radio.getAttribute('aria-label') || '').toUpperCase();
      if (!patterns.some(p => text.includes(p))) continue;
      if (radio.checked) return null;
      radio.click();
      return radio.checked ? text.trim().substring(0, 50) : null;
    }
    return null;
}"""

_MODAL_ERROR_JS = """() => {
    const modal = document.querySelector('[role="dialog"], .modal, [class*="modal"], [class*="checkout"], [class*="Checkout"]');
    if (!modal) return false;
    const text = (modal.innerText || '').toLowerCase();
    const patterns = ['no longer available', 'payment failed', 'declined', 'try again', 'error'];
    return patterns.some(p => text.includes(p));
}"""

_FIND_QUANTITY_JS = """() => {
    const mark = (el) => {
      for (const old of document.querySelectorAll('[data-auto-purchase-quantity]')) {
        old.removeAttribute('data-auto-purchase-quantity');
      }
      el.setAttribute('data-auto-purchase-quantity', 'true');
    };
    for (const select of document.querySelectorAll('select')) {
      const id = (select.id || '').toLowerCase();
      const name = (select.name || '').toLowerCase();
      const cls = String(select.className || '').toLowerCase();
      if (!(id.includes('quantity') || name.includes('quantity') || cls.includes('quantity'))) continue;
      if (select.disabled) continue;
      mark(select);
      return {
        kind: 'select',
        options: Array.from(select.options).map(o => [o.value, (o.textContent || '').trim()]),
        current: select.value,
        max: null,
      };
    }
    const inputs = Array.from(document.querySelectorAll('input[type="number"]'));
    for (const input of inputs) {
      const id = (input.id || '').toLowerCase();
      const name = (input.name || '').toLowerCase();
      if (!(id.includes('quantity') || name.includes('quantity') || inputs.length === 1)) continue;
      if (input.disabled) continue;
      mark(input);
      const max = parseInt(input.max, 10);
      return { kind: 'input', options: [], current: input.value, max: Number.isNaN(max) ? null : max };
    }
    return null;
}"""

_APPLY_QUANTITY_JS = """(qty) => {
    const el = document.querySelector('[data-auto-purchase-quantity]');
    if (!el) return false;
    const wanted = String(qty);
    if (el.tagName === 'SELECT') {
      const option = Array.from(el.options).find(o => o.value === wanted || (o.textContent || '').trim() === wanted);
      if (!option) return false;
      el.value = option.value;
    } else {
      el.value = wanted;
      el.dispatchEvent(new Event('input', { bubbles: true }));
    }
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}"""

_VISIBLE_BUTTONS_JS = """() => Array.from(document.querySelectorAll('button, [role="button"], a, input[type="button"], input[type="submit"]'))
    .map(btn => (btn.innerText || btn.value || '').trim())
    .filter(Boolean)
    .slice(0, 20)"""


def field_value_key(value: str | None) -> str:
    # Gateway widgets regroup what was typed ("4242 4242 ...", "12 / 30").
    return _FIELD_FORMATTING.sub("", value or "").lower()


@dataclass(frozen=True)
class QuantityControl:
    kind: str                           # "select" | "input"
    options: tuple[tuple[str, str], ...] = ()   # (value, label) for selects
    current: str = ""
    maximum: int | None = None


class PageAdapter:
    """Everything the checkout engine may ask of a page.

    Implementations swallow transient failures (missing or hidden elements)
    and report them as "nothing done".
    """

    @property
    def url(self) -> str:
        raise NotImplementedError

    async def open_entry(self, title: str, screening_time: str, popup_timeout_ms: int) -> Optional["PageAdapter"]:
        raise NotImplementedError

    async def click_additional_tickets(self, wait_ms: int) -> bool:
        raise NotImplementedError

    async def detect_queue(self) -> bool:
        raise NotImplementedError

    async def detect_login(self) -> bool:
        raise NotImplementedError

    async def detect_confirmation(self) -> bool:
        raise NotImplementedError

    async def detect_modal_error(self) -> bool:
        raise NotImplementedError

    async def check_agreements(self) -> bool:
        raise NotImplementedError

    async def click_final_purchase(self) -> bool:
        raise NotImplementedError

    async def find_quantity_control(self) -> Optional[QuantityControl]:
        raise NotImplementedError

    async def apply_quantity(self, quantity: int) -> bool:
        raise NotImplementedError

    async def select_saved_payment(self) -> bool:
        raise NotImplementedError

    async def fill_payment(self, payment: PaymentDetails) -> bool:
        raise NotImplementedError

    async def click_continue(self) -> bool:
        raise NotImplementedError

    async def visible_buttons(self) -> List[str]:
        return []

    async def settle(self, wait_ms: int) -> None:
        raise NotImplementedError

    async def pause(self, wait_ms: int) -> None:
        raise NotImplementedError

    async def screenshot(self, path: Path) -> None:
        return None

    async def close(self) -> None:
        return None


class PlaywrightPageAdapter(PageAdapter):
    def __init__(self, page) -> None:
        self._page = page

    @property
    def page(self):
        return self._page

    @property
    def url(self) -> str:
        return self._page.url

    async def _visible(self, selector: str) -> bool:
        try:
            return await self._page.locator(selector).first.is_visible()
        except Exception:
            return False

    async def _evaluate(self, script: str, arg=None, default=None):
        try:
            if arg is None:
                return await self._page.evaluate(script)
            return await self._page.evaluate(script, arg)
        except Exception:
            logger.debug("checkout_evaluate_failed url=%s", self._page.url, exc_info=True)
            return default

    async def _click_first_matching(self, context, patterns: Sequence[Pattern], label: str) -> bool:
        for pattern in patterns:
            locator = context.locator(BUTTON_SELECTOR, has_text=pattern)
            try:
                count = await locator.count()
            except Exception:
                count = 0
            for i in range(min(count, MAX_CANDIDATES_PER_PATTERN)):
                target = locator.nth(i)
                try:
                    if not await target.is_visible():
                        continue
                    if await target.is_disabled():
                        continue
                    text = (await target.inner_text()).strip()
                    if text and SOLD_OUT_LABEL.search(text):
                        continue
                    await target.click(timeout=CLICK_TIMEOUT_MS)
                except Exception:
                    logger.debug("checkout_click_skipped label=%s pattern=%s", label, pattern.pattern, exc_info=True)
                    continue
                logger.info("checkout_click label=%s text=%r", label, text[:60])
                return True
        return False

    async def _click_any_context(self, patterns: Sequence[Pattern], label: str, wait_ms: int = 0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_ms / 1000
        while True:
            main = self._page.main_frame
            contexts = [self._page] + [f for f in self._page.frames if f is not main]
            for context in contexts:
                if await self._click_first_matching(context, patterns, label):
                    return True
            if loop.time() >= deadline:
                return False
            await self._page.wait_for_timeout(POLL_INTERVAL_MS)

    async def open_entry(self, title: str, screening_time: str, popup_timeout_ms: int) -> Optional[PageAdapter]:
        marked = await self._evaluate(_MARK_ENTRY_JS, {"title": title, "time": screening_time or ""})
        if not marked:
            return None
        logger.info("checkout_entry_found title=%r label=%r", title, marked)

        popup_wait = asyncio.ensure_future(
            self._page.context.wait_for_event("page", timeout=popup_timeout_ms)
        )
        try:
            await self._page.click('[data-auto-purchase-target="true"]', timeout=CLICK_TIMEOUT_MS)
        except Exception:
            popup_wait.cancel()
            raise
        try:
            popup = await popup_wait
        except Exception:
            popup = None

        if popup is None:
            return self
        logger.info("checkout_popup_opened url=%s", popup.url)
        try:
            await popup.wait_for_load_state("domcontentloaded", timeout=LOAD_STATE_TIMEOUT_MS)
        except Exception:
            logger.debug("checkout_popup_load_timeout", exc_info=True)
        return PlaywrightPageAdapter(popup)

    async def click_additional_tickets(self, wait_ms: int) -> bool:
        text = await self._evaluate(_CLICK_BY_TEXT_JS, ADDITIONAL_TICKETS_TEXT)
        if text is not None:
            logger.info("checkout_click label=buy_additional text=%r", text)
            return True
        return await self._click_any_context(ADDITIONAL_TICKETS_PATTERNS, "buy_additional", wait_ms=wait_ms)

    async def detect_queue(self) -> bool:
        if QUEUE_URL.search(self._page.url):
            return True
        return await self._visible(QUEUE_TEXT)

    async def detect_login(self) -> bool:
        if LOGIN_URL.search(self._page.url):
            return True
        if await self._visible('input[type="password"]'):
            return True
        return await self._visible(LOGIN_TEXT)

    async def detect_confirmation(self) -> bool:
        if CONFIRMATION_URL.search(self._page.url):
            return True
        return await self._visible(CONFIRMATION_TEXT)

    async def detect_modal_error(self) -> bool:
        return bool(await self._evaluate(_MODAL_ERROR_JS, default=False))

    async def check_agreements(self) -> bool:
        checked = await self._evaluate(_CHECK_AGREEMENTS_JS, default=0)
        if checked:
            logger.info("checkout_agreements_checked count=%s", checked)
        return bool(checked)

    async def click_final_purchase(self) -> bool:
        return await self._click_any_context(FINAL_PURCHASE_PATTERNS, "final_purchase")

    async def find_quantity_control(self) -> Optional[QuantityControl]:
        raw = await self._evaluate(_FIND_QUANTITY_JS)
        if not raw:
            return None
        return QuantityControl(
            kind=raw.get("kind") or "input",
            options=tuple((str(v), str(t)) for v, t in raw.get("options") or []),
            current=str(raw.get("current") or ""),
            maximum=raw.get("max"),
        )

    async def apply_quantity(self, quantity: int) -> bool:
        return bool(await self._evaluate(_APPLY_QUANTITY_JS, quantity, default=False))

    async def select_saved_payment(self) -> bool:
        label = await self._evaluate(_SELECT_SAVED_PAYMENT_JS)
        if label:
            logger.info("checkout_saved_payment_selected label=%r", label)
        return bool(label)

    async def _fill_first(self, context, selectors: Sequence[str], value: str) -> bool:
        for selector in selectors:
            try:
                locator = context.locator(selector)
                if await locator.count() == 0:
                    continue
                field = locator.first
                if not await field.is_visible():
                    continue
                if field_value_key(await field.input_value()) == field_value_key(value):
                    return False
                await field.fill(value, timeout=CLICK_TIMEOUT_MS)
                return True
            except Exception:
                logger.debug("checkout_fill_skipped selector=%s", selector, exc_info=True)
                continue
        return False

    async def fill_payment(self, payment: PaymentDetails) -> bool:
        filled: list[str] = []
        if payment.has_card():
            # Card widgets are usually embedded in gateway iframes.
            for frame in self._page.frames:
                for name, selectors, value in (
                    ("card_number", CARD_NUMBER_FIELDS, payment.card_number),
                    ("exp", CARD_EXP_FIELDS, payment.exp),
                    ("cvc", CARD_CVC_FIELDS, payment.cvc),
                ):
                    if value and await self._fill_first(frame, selectors, value):
                        filled.append(name)
        for name, selectors, value in (
            ("name", CARD_NAME_FIELDS, payment.name),
            ("zip", POSTAL_FIELDS, payment.zip),
        ):
            if value and await self._fill_first(self._page, selectors, value):
                filled.append(name)
        if filled:
            logger.info("checkout_payment_filled fields=%s", ",".join(filled))
        return bool(filled)

    async def click_continue(self) -> bool:
        return await self._click_any_context(CONTINUE_PATTERNS, "continue")

    async def visible_buttons(self) -> List[str]:
        return list(await self._evaluate(_VISIBLE_BUTTONS_JS, default=[]) or [])

    async def settle(self, wait_ms: int) -> None:
        try:
            await self._page.wait_for_load_state("domcontentloaded", timeout=LOAD_STATE_TIMEOUT_MS)
        except Exception:
            logger.debug("checkout_settle_load_timeout url=%s", self._page.url)
        await self._page.wait_for_timeout(wait_ms)

    async def pause(self, wait_ms: int) -> None:
        await self._page.wait_for_timeout(wait_ms)

    async def screenshot(self, path: Path) -> None:
        try:
            await self._page.screenshot(path=str(path), full_page=True)
            logger.info("checkout_screenshot path=%s", path)
        except Exception:
            logger.warning("checkout_screenshot_failed path=%s", path, exc_info=True)

    async def close(self) -> None:
        try:
            await self._page.close()
        except Exception:
            logger.debug("checkout_page_close_failed", exc_info=True)
