import json
import tempfile
import unittest
from pathlib import Path

from festival_watch.models import ScreeningRecord
from festival_watch.state import compute_diff, load_state, save_state, snapshot_key


def _record(status: str, title: str = "Twinless", time: str = "Jan 24 12:00 PM") -> ScreeningRecord:
    return ScreeningRecord(title=title, screening_time=time, status=status, button_text=status.title())


class DiffTests(unittest.TestCase):
    def test_new_available(self) -> None:
        changes = compute_diff({}, {"a": _record("AVAILABLE")})
        self.assertEqual([c.type for c in changes], ["NEW_AVAILABLE"])
        self.assertEqual(changes[0].title, "Twinless")

    def test_new_but_sold_out_is_silent(self) -> None:
        self.assertEqual(compute_diff({}, {"a": _record("SOLD_OUT")}), [])

    def test_now_available(self) -> None:
        changes = compute_diff({"a": _record("SOLD_OUT")}, {"a": _record("AVAILABLE")})
        self.assertEqual([c.type for c in changes], ["NOW_AVAILABLE"])
        self.assertEqual(changes[0].status, "AVAILABLE")

    def test_other_transitions_are_silent(self) -> None:
        previous = {"a": _record("AVAILABLE"), "b": _record("WAITLIST"), "c": _record("UNKNOWN")}
        current = {"a": _record("SOLD_OUT"), "b": _record("AVAILABLE"), "c": _record("AVAILABLE")}
        self.assertEqual(compute_diff(previous, current), [])

    def test_disappeared_rows_are_silent(self) -> None:
        self.assertEqual(compute_diff({"a": _record("SOLD_OUT")}, {}), [])

    def test_order_follows_current_snapshot(self) -> None:
        current = {
            "z": _record("AVAILABLE", title="Zeta"),
            "a": _record("AVAILABLE", title="Alpha"),
        }
        self.assertEqual([c.title for c in compute_diff({}, current)], ["Zeta", "Alpha"])

    def test_snapshot_key(self) -> None:
        self.assertEqual(snapshot_key("Twinless", "Jan 24 12:00 PM", 3), "twinless_jan 24 12:00 pm")
        self.assertEqual(snapshot_key(" TWINLESS ", "Jan 24  12:00 pm", 0), "twinless_jan 24 12:00 pm")
        self.assertEqual(snapshot_key("Twinless", "", 3), "twinless_3")


class StateFileTests(unittest.TestCase):
    def test_save_and_load(self) -> None:
        snapshot = {"twinless_jan 24 12:00 pm": _record("SOLD_OUT")}
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "state.json"
            save_state(path, snapshot)
            raw = json.loads(path.read_text("utf-8"))
            self.assertEqual(raw["twinless_jan 24 12:00 pm"]["screeningTime"], "Jan 24 12:00 PM")
            self.assertEqual(load_state(path), snapshot)
            self.assertFalse(path.with_suffix(".json.tmp").exists())

    def test_missing_file_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            self.assertEqual(load_state(Path(tmpdir) / "missing.json"), {})

    def test_corrupt_file_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertLogs("festival_watch.state", level="ERROR"):
                self.assertEqual(load_state(path), {})

    def test_invalid_entries_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text(
                json.dumps(
                    {
                        "ok": {"title": "Twinless", "screeningTime": "Jan 24", "status": "BOGUS"},
                        "bad": "nope",
                        "untitled": {"status": "AVAILABLE"},
                    }
                ),
                encoding="utf-8",
            )
            snapshot = load_state(path)
        self.assertEqual(list(snapshot), ["ok"])
        self.assertEqual(snapshot["ok"].status, "UNKNOWN")


if __name__ == "__main__":
    unittest.main()
