import asyncio
import unittest

from flowstream.daemon.session import BroadcastHub, SessionSnapshot, SessionStatus
from flowstream.daemon.utils.invariants import run_all_checks


class BroadcastHubTests(unittest.TestCase):
    def test_subscribe_delivers_current_full_snapshot(self):
        async def scenario():
            hub = BroadcastHub()
            hub.publish(status=SessionStatus.INITIALIZING, charger_id="c1", session_account_id="s1", merchant_id="m1")
            hub.publish(status=SessionStatus.STREAMING, connected=True, total_usage=7)
            subscription = hub.subscribe()
            return await asyncio.wait_for(subscription.get(), timeout=1.0)

        first = asyncio.run(scenario())
        self.assertEqual(first.charger_id, "c1")
        self.assertEqual(first.total_usage, 7)
        self.assertTrue(first.connected)

    def test_publish_merges_last_write_wins(self):
        hub = BroadcastHub()
        hub.publish(total_usage=1, log_tail="a")
        merged = hub.publish(total_usage=2)
        self.assertEqual(merged.total_usage, 2)
        self.assertEqual(merged.log_tail, "a")

    def test_publish_rejects_unknown_fields(self):
        hub = BroadcastHub()
        with self.assertRaises(ValueError):
            hub.publish(not_a_field=1)

    def test_slow_subscriber_never_blocks_publisher(self):
        async def scenario():
            hub = BroadcastHub(queue_size=2)
            slow = hub.subscribe()
            for i in range(1, 11):
                hub.publish(total_usage=i)
            drained = []
            while not slow.queue.empty():
                drained.append(slow.queue.get_nowait())
            return slow, drained

        slow, drained = asyncio.run(scenario())
        self.assertEqual(len(drained), 2)
        self.assertEqual(drained[-1].total_usage, 10)
        self.assertGreater(slow.dropped, 0)

    def test_unsubscribe_is_idempotent(self):
        hub = BroadcastHub()
        subscription = hub.subscribe()
        self.assertEqual(hub.subscriber_count, 1)
        hub.unsubscribe(subscription)
        subscription.close()
        hub.unsubscribe(subscription)
        self.assertEqual(hub.subscriber_count, 0)
        hub.publish(total_usage=3)
        self.assertEqual(subscription.queue.qsize(), 1)

    def test_payload_carries_display_figures(self):
        snapshot = SessionSnapshot(
            status=SessionStatus.STREAMING,
            total_usage=12_000,
            usage_decimals=3,
            deposit_amount=5_000_000_000,
            accrued_cost=84_000_000,
            currency_decimals=9,
        )
        payload = snapshot.as_payload()
        self.assertEqual(payload["status"], "Streaming")
        self.assertEqual(payload["total_usage_display"], 12.0)
        self.assertEqual(payload["deposit_display"], 5.0)
        self.assertEqual(payload["accrued_cost_display"], 0.084)
        self.assertIsNone(payload["refund_display"])


class InvariantTests(unittest.TestCase):
    def _failed(self, snapshot):
        return {r.name for r in run_all_checks(snapshot) if not r.passed}

    def test_default_snapshot_is_clean(self):
        self.assertEqual(self._failed(SessionSnapshot()), set())

    def test_idle_with_identifiers_flagged(self):
        self.assertIn("identifiers_consistent", self._failed(SessionSnapshot(charger_id="c1")))

    def test_connected_outside_streaming_flagged(self):
        snapshot = SessionSnapshot(
            status=SessionStatus.FINALIZING,
            charger_id="c",
            session_account_id="s",
            merchant_id="m",
            connected=True,
        )
        self.assertIn("identifiers_consistent", self._failed(snapshot))

    def test_settlement_must_balance(self):
        snapshot = SessionSnapshot(deposit_amount=100, accrued_cost=40, refund_amount=50)
        self.assertIn("settlement_balances", self._failed(snapshot))
        balanced = SessionSnapshot(deposit_amount=100, accrued_cost=40, refund_amount=60)
        self.assertEqual(self._failed(balanced), set())

    def test_accrual_above_deposit_flagged(self):
        snapshot = SessionSnapshot(deposit_amount=10, accrued_cost=11)
        self.assertIn("accrued_within_deposit", self._failed(snapshot))


if __name__ == "__main__":
    unittest.main()
