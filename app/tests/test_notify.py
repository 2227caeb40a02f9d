import unittest
from unittest import mock

import requests

from festival_watch.models import ChangeEvent
from festival_watch.notify import RESEND_API_URL, Notifier, build_email


def _change(type_: str = "NOW_AVAILABLE", title: str = "Twinless") -> ChangeEvent:
    return ChangeEvent(
        type=type_,
        title=title,
        screening_time="Jan 24 12:00 PM",
        status="AVAILABLE",
        button_text="Order",
        url="https://festival.example.org/my-schedule?a=1&b=2",
    )


class BuildEmailTests(unittest.TestCase):
    def test_single_change(self) -> None:
        subject, html, text = build_email([_change()])
        self.assertIn("Twinless", subject)
        self.assertIn("NOW AVAILABLE", subject)
        self.assertIn("a=1&amp;b=2", html)
        self.assertIn("Jan 24 12:00 PM", text)

    def test_batch_subject_and_escaping(self) -> None:
        subject, html, _ = build_email([_change(), _change("PURCHASE_FAILED", "<Atropia>")])
        self.assertIn("2 updates", subject)
        self.assertIn("&lt;Atropia&gt;", html)
        self.assertIn("PURCHASE FAILED", html)


class NotifierTests(unittest.IsolatedAsyncioTestCase):
    def _notifier(self) -> Notifier:
        return Notifier(resend_api_key="re_key", from_email="a@example.org", to_email="b@example.org", desktop=False)

    async def test_email_sent(self) -> None:
        response = mock.Mock()
        response.json.return_value = {"id": "email-1"}
        with mock.patch("festival_watch.notify.requests.post", return_value=response) as post:
            await self._notifier()([_change()])
        post.assert_called_once()
        args, kwargs = post.call_args
        self.assertEqual(args[0], RESEND_API_URL)
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer re_key")
        self.assertEqual(kwargs["json"]["to"], ["b@example.org"])
        response.raise_for_status.assert_called_once()

    async def test_email_failure_is_logged_not_raised(self) -> None:
        with mock.patch(
            "festival_watch.notify.requests.post",
            side_effect=requests.ConnectionError("down"),
        ):
            with self.assertLogs("festival_watch.notify", level="WARNING") as logs:
                await self._notifier()([_change()])
        self.assertTrue(any("email_notify_failed" in line for line in logs.output))

    async def test_email_disabled_without_credentials(self) -> None:
        notifier = Notifier(desktop=False)
        self.assertFalse(notifier.email_enabled)
        with mock.patch("festival_watch.notify.requests.post") as post:
            await notifier([_change()])
        post.assert_not_called()

    async def test_empty_batch(self) -> None:
        with mock.patch("festival_watch.notify.requests.post") as post:
            await self._notifier()([])
        post.assert_not_called()


if __name__ == "__main__":
    unittest.main()
