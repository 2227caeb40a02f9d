import logging
import re
from time import perf_counter
from typing import Iterable, List, Tuple

from .models import ScreeningRecord, Status
from .state import Snapshot, snapshot_key

SCHEDULE_ROW_SELECTOR = ".sd_schedule_film_desc"

_HAS_LETTERS = re.compile(r"[a-zA-Z]")
_AVAILABLE_WORDS = ("ORDER", "BUY", "GET", "TICKET", "PURCHASE", "AVAILABLE")

# Film descriptions live in one table cell; the action buttons sit in sibling
# cells of the same react-data-table row.
_EXTRACT_ROWS_JS = """() => {
    const rows = [];
    const descs = Array.from(document.querySelectorAll('.sd_schedule_film_desc'));
    descs.forEach((desc, index) => {
      const titleEl = desc.querySelector('h3');
      if (!titleEl) return;
      const title = (titleEl.textContent || '').trim();
      const dateEl = desc.querySelector('.sd_start_end_date');
      const screeningTime = dateEl ? (dateEl.textContent || '').trim().replace(/\\s+/g, ' ') : '';
      const row = desc.closest('.rdt_TableRow, [class*="TableRow"]');
      const buttons = [];
      if (row) {
        const cells = Array.from(row.querySelectorAll('.rdt_TableCell, [class*="TableCell"]'));
        for (const cell of cells) {
          const found = Array.from(cell.querySelectorAll('button, a.button, .btn'))
            .filter(btn => !String(btn.className || '').includes('fav'));
          for (const btn of found) buttons.push((btn.textContent || '').trim());
        }
      }
      rows.push({ index, title, screeningTime, hasRow: !!row, buttons, url: window.location.href });
    });
    return rows;
}"""


def _normalize_space(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


def classify_status(button_texts: Iterable[str]) -> Tuple[Status, str]:
    """Status of a schedule row from its button labels.

    Icon-only buttons are ignored; when several labels match, the last one
    on the row wins.
    """
    status: Status = "UNKNOWN"
    label = ""
    for raw in button_texts:
        text = (raw or "").strip()
        if not text or not _HAS_LETTERS.search(text):
            continue
        upper = text.upper()
        if "SOLD OUT" in upper:
            status, label = "SOLD_OUT", text
        elif "WAITLIST" in upper or "WAIT LIST" in upper:
            status, label = "WAITLIST", text
        elif any(word in upper for word in _AVAILABLE_WORDS):
            status, label = "AVAILABLE", text
    return status, label


def records_from_rows(rows: Iterable[dict]) -> Snapshot:
    snapshot: Snapshot = {}
    for position, row in enumerate(rows):
        title = _normalize_space(str(row.get("title") or ""))
        if len(title) < 2:
            continue
        screening_time = _normalize_space(str(row.get("screeningTime") or ""))
        index = row.get("index", position)
        url = str(row.get("url") or "")
        if not row.get("hasRow"):
            record = ScreeningRecord(
                title=title,
                screening_time=screening_time,
                status="UNKNOWN",
                button_text="No row container found",
                url=url,
            )
            snapshot[snapshot_key(title, "", index)] = record
            continue
        status, label = classify_status(row.get("buttons") or [])
        snapshot[snapshot_key(title, screening_time, index)] = ScreeningRecord(
            title=title,
            screening_time=screening_time,
            status=status,
            button_text=label,
            url=url,
        )
    return snapshot


async def establish_session(page, home_url: str, navigation_timeout_ms: int, settle_ms: int) -> None:
    logger = logging.getLogger(__name__)
    logger.info("session_establish_start url=%s", home_url)
    await page.goto(home_url, wait_until="domcontentloaded", timeout=navigation_timeout_ms)
    await page.wait_for_timeout(settle_ms)


async def load_schedule(
    page,
    schedule_url: str,
    navigation_timeout_ms: int,
    schedule_wait_ms: int,
    settle_ms: int,
) -> None:
    logger = logging.getLogger(__name__)
    await page.goto(schedule_url, wait_until="domcontentloaded", timeout=navigation_timeout_ms)
    # SPA: rows render after the initial document
    try:
        await page.wait_for_selector(SCHEDULE_ROW_SELECTOR, timeout=schedule_wait_ms)
    except Exception:
        logger.warning("schedule_rows_wait_timeout url=%s timeout_ms=%s", schedule_url, schedule_wait_ms)
    await page.wait_for_timeout(settle_ms)


async def scroll_schedule(page, max_scrolls: int = 10, pause_ms: int = 800) -> int:
    """Scroll until the document stops growing so virtualised rows render."""
    last_height = await page.evaluate("() => document.body.scrollHeight")
    scrolls = 0
    for _ in range(max_scrolls):
        await page.evaluate("""() => {
            const el = document.scrollingElement || document.body;
            el.scrollBy(0, window.innerHeight);
        }""")
        scrolls += 1
        await page.wait_for_timeout(pause_ms)
        new_height = await page.evaluate("() => document.body.scrollHeight")
        if new_height == last_height:
            break
        last_height = new_height
    return scrolls


async def extract_schedule(page) -> Snapshot:
    logger = logging.getLogger(__name__)
    start_ts = perf_counter()
    rows = await page.evaluate(_EXTRACT_ROWS_JS)
    snapshot = records_from_rows(rows or [])
    by_status: dict[str, int] = {}
    for record in snapshot.values():
        by_status[record.status] = by_status.get(record.status, 0) + 1
    logger.info(
        "schedule_extract_done duration_ms=%s rows=%s screenings=%s available=%s sold_out=%s waitlist=%s unknown=%s",
        int((perf_counter() - start_ts) * 1000),
        len(rows or []),
        len(snapshot),
        by_status.get("AVAILABLE", 0),
        by_status.get("SOLD_OUT", 0),
        by_status.get("WAITLIST", 0),
        by_status.get("UNKNOWN", 0),
    )
    return snapshot


def screenings_for_rules(snapshot: Snapshot) -> List[Tuple[str, str]]:
    return [(record.title, record.screening_time) for record in snapshot.values()]
