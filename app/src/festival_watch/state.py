import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from .matcher import normalize
from .models import STATUSES, ChangeEvent, ScreeningRecord

Snapshot = Dict[str, ScreeningRecord]


def snapshot_key(title: str, screening_time: str, index: int) -> str:
    # Rows without a screening time fall back to their position on the page.
    return f"{normalize(title)}_{normalize(screening_time) or index}"


def _record_from_json(value: Any) -> ScreeningRecord | None:
    if not isinstance(value, dict):
        return None
    title = str(value.get("title") or "")
    if not title:
        return None
    status = str(value.get("status") or "UNKNOWN")
    if status not in STATUSES:
        status = "UNKNOWN"
    return ScreeningRecord(
        title=title,
        screening_time=str(value.get("screeningTime") or ""),
        status=status,  # type: ignore[arg-type]
        button_text=str(value.get("buttonText") or ""),
        url=str(value.get("url") or ""),
    )


def load_state(path: Path) -> Snapshot:
    logger = logging.getLogger(__name__)
    if not path.exists():
        logger.info("state_load_miss path=%s", path)
        return {}
    try:
        data = json.loads(path.read_text("utf-8"))
    except Exception:
        logger.exception("state_load_failed path=%s", path)
        return {}
    if not isinstance(data, dict):
        logger.warning("state_load_invalid path=%s type=%s", path, type(data).__name__)
        return {}

    snapshot: Snapshot = {}
    skipped = 0
    for key, value in data.items():
        record = _record_from_json(value)
        if record is None:
            skipped += 1
            continue
        snapshot[str(key)] = record
    logger.info(
        "state_load_hit path=%s snapshot_size=%s skipped=%s",
        path,
        len(snapshot),
        skipped,
    )
    return snapshot


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding=encoding)
    tmp.replace(path)


def save_state(path: Path, snapshot: Snapshot) -> None:
    payload = {key: record.to_json() for key, record in snapshot.items()}
    atomic_write_text(path, json.dumps(payload, ensure_ascii=False, indent=2))
    logging.getLogger(__name__).info(
        "state_saved path=%s snapshot_size=%s",
        path,
        len(snapshot),
    )


def compute_diff(previous: Snapshot, current: Snapshot) -> List[ChangeEvent]:
    """Availability changes between two snapshots, in ``current`` order.

    Only two transitions are reported: a screening seen for the first time
    while available, and a screening that went from sold out to available.
    """
    changes: List[ChangeEvent] = []
    for key, record in current.items():
        before = previous.get(key)
        if before is None:
            if record.status == "AVAILABLE":
                changes.append(ChangeEvent.from_record("NEW_AVAILABLE", record))
            continue
        if before.status == "SOLD_OUT" and record.status == "AVAILABLE":
            changes.append(ChangeEvent.from_record("NOW_AVAILABLE", record))
    return changes
