# tests/test_notifier.py

"""Tests for the operator notifier."""

import unittest
from unittest.mock import MagicMock

from supplywatch.services.notifier import OperatorNotifier


class TestOperatorNotifier(unittest.IsolatedAsyncioTestCase):
    """Alert recording and webhook delivery."""

    async def test_alert_recorded_without_webhook(self) -> None:
        """Alerts are kept locally when no webhook is configured."""
        notifier = OperatorNotifier(webhook_url="")
        with self.assertLogs("supplywatch.operator", level="WARNING"):
            await notifier.review_required("p-1", "no candidates found")
        self.assertEqual(notifier.recent[-1]["kind"], "review_required")
        self.assertEqual(notifier.recent[-1]["product_id"], "p-1")

    async def test_webhook_receives_payload(self) -> None:
        """With a webhook the alert is POSTed as JSON."""
        client = MagicMock()
        notifier = OperatorNotifier("https://hooks.example/ops", client)
        await notifier.price_variance("p-1", "50.00", "40.00", -20.0, 10.0)
        url, payload = client.post.call_args.args
        self.assertEqual(url, "https://hooks.example/ops")
        self.assertEqual(payload["kind"], "price_variance")
        self.assertEqual(payload["change_pct"], -20.0)

    async def test_webhook_failure_does_not_raise(self) -> None:
        """A failed delivery is logged, not raised."""
        client = MagicMock()
        client.post.return_value = None
        notifier = OperatorNotifier("https://hooks.example/ops", client)
        with self.assertLogs("supplywatch.operator", level="ERROR"):
            await notifier.pipeline_failure("p-1", "boom")

    async def test_heal_success_notice(self) -> None:
        """A successful heal is announced at INFO with both urls."""
        client = MagicMock()
        notifier = OperatorNotifier("https://hooks.example/ops", client)
        with self.assertLogs("supplywatch.operator", level="INFO") as logs:
            await notifier.heal_succeeded(
                "p-1", "https://old.example/a", "https://new.example/b", 0.7213,
            )
        self.assertEqual(logs.records[-1].levelname, "INFO")
        _, payload = client.post.call_args.args
        self.assertEqual(payload["kind"], "heal_succeeded")
        self.assertEqual(payload["new_url"], "https://new.example/b")
        self.assertEqual(payload["confidence"], 0.7213)

    async def test_recent_is_bounded(self) -> None:
        """Only the latest alerts are retained."""
        notifier = OperatorNotifier(webhook_url="")
        for i in range(150):
            await notifier.review_required(f"p-{i}", "x")
        self.assertEqual(len(notifier.recent), 100)
        self.assertEqual(notifier.recent[0]["product_id"], "p-50")


if __name__ == "__main__":
    unittest.main()
