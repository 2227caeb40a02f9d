import unittest

from festival_watch.matcher import normalize, resolve_rule, should_auto_purchase
from festival_watch.models import AutoPurchaseConfig, FilmRule


class MatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = AutoPurchaseConfig(
            enabled=True,
            films=(
                FilmRule(title="Twinless", screening_time="Jan 24 12:00 PM", auto_purchase=True),
                FilmRule(title="Twinless", screening_time=None, auto_purchase=False),
                FilmRule(title="Sorry, Baby", screening_time="Jan 25  9:00 AM", auto_purchase=True),
            ),
        )

    def test_normalize(self) -> None:
        self.assertEqual(normalize("  Jan 24\n 12:00  PM "), "jan 24 12:00 pm")
        self.assertEqual(normalize(None), "")

    def test_pinned_rule_wins_over_title_fallback(self) -> None:
        rule = resolve_rule("twinless", "jan 24 12:00 pm", self.config)
        self.assertIsNotNone(rule)
        self.assertTrue(rule.auto_purchase)
        self.assertTrue(should_auto_purchase("Twinless", "Jan 24 12:00 PM", self.config))

    def test_other_time_uses_title_fallback(self) -> None:
        rule = resolve_rule("Twinless", "Jan 26 6:00 PM", self.config)
        self.assertIsNotNone(rule)
        self.assertIsNone(rule.screening_time)
        self.assertFalse(should_auto_purchase("Twinless", "Jan 26 6:00 PM", self.config))

    def test_pinned_rule_does_not_match_other_times(self) -> None:
        self.assertIsNone(resolve_rule("Sorry, Baby", "Jan 26 9:00 AM", self.config))
        self.assertTrue(should_auto_purchase("Sorry, Baby", "Jan 25 9:00 AM", self.config))

    def test_unknown_title(self) -> None:
        self.assertIsNone(resolve_rule("Atropia", "Jan 24 12:00 PM", self.config))

    def test_missing_config(self) -> None:
        self.assertIsNone(resolve_rule("Twinless", "Jan 24 12:00 PM", None))
        self.assertFalse(should_auto_purchase("Twinless", "Jan 24 12:00 PM", None))


if __name__ == "__main__":
    unittest.main()
