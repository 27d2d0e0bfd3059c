import asyncio
import json
import unittest

import httpx

from flowstream.daemon.errors import LedgerRejected, ReconciliationTimeout
from flowstream.daemon.ledger import (
    HttpLedgerClient,
    LedgerSessionStatus,
    MemoryLedger,
    build_ledger_client,
)
from flowstream.daemon.utils.config_loader import LedgerSettings


class MemoryLedgerTests(unittest.TestCase):
    def _open(self, ledger, session_id="s1", deposit=1_000, rate=10):
        return ledger.open_session(session_id, "charger", 1, 3, deposit, rate, "merchant")

    def test_full_cycle_pays_merchant_and_refunds_payer(self):
        async def scenario():
            ledger = MemoryLedger(payer_id="payer", initial_balance=5_000)
            await self._open(ledger)
            self.assertEqual(await ledger.get_balance("payer"), 4_000)
            await ledger.delegate("s1", "payer")
            for i in range(30):
                await ledger.record_usage("s1", 1, f"tag-{i}")
            tx_ref = await ledger.reconcile_and_undelegate("s1")
            await ledger.await_commitment_proof(tx_ref)
            await ledger.settle("s1")
            return ledger, await ledger.fetch_session("s1")

        ledger, record = asyncio.run(scenario())
        self.assertEqual(record.total_usage, 30)
        self.assertEqual(record.settled_cost, 300)
        self.assertEqual(record.refunded, 700)
        self.assertEqual(record.status, LedgerSessionStatus.CLOSED)
        self.assertEqual(ledger.balances["merchant"], 300)
        self.assertEqual(ledger.balances["payer"], 4_700)

    def test_usage_is_invisible_on_base_tier_until_reconciled(self):
        async def scenario():
            ledger = MemoryLedger(payer_id="payer", initial_balance=5_000)
            await self._open(ledger)
            await ledger.delegate("s1", "payer")
            await ledger.record_usage("s1", 3, "t1")
            return await ledger.fetch_session("s1")

        self.assertEqual(asyncio.run(scenario()).total_usage, 0)

    def test_rejections(self):
        async def scenario():
            ledger = MemoryLedger(payer_id="payer", initial_balance=5_000)
            with self.assertRaises(LedgerRejected):
                await self._open(ledger, deposit=10_000)
            await self._open(ledger)
            with self.assertRaises(LedgerRejected):
                await self._open(ledger)
            with self.assertRaises(LedgerRejected):
                await ledger.record_usage("s1", 1, "t0")
            with self.assertRaises(LedgerRejected):
                await ledger.delegate("s1", "intruder")
            await ledger.delegate("s1", "payer")
            await ledger.record_usage("s1", 1, "t1")
            with self.assertRaises(LedgerRejected) as dup:
                await ledger.record_usage("s1", 1, "t1")
            self.assertEqual(dup.exception.step, "record_usage")
            with self.assertRaises(LedgerRejected):
                await ledger.record_usage("s1", 100, "overspend")
            with self.assertRaises(LedgerRejected):
                await ledger.settle("s1")
            with self.assertRaises(LedgerRejected):
                await ledger.await_commitment_proof("commit-unknown")

        asyncio.run(scenario())

    def test_settle_only_once(self):
        async def scenario():
            ledger = MemoryLedger(payer_id="payer", initial_balance=5_000)
            await self._open(ledger)
            await ledger.delegate("s1", "payer")
            tx_ref = await ledger.reconcile_and_undelegate("s1")
            await ledger.await_commitment_proof(tx_ref)
            await ledger.settle("s1")
            with self.assertRaises(LedgerRejected):
                await ledger.settle("s1")
            return ledger

        ledger = asyncio.run(scenario())
        self.assertEqual(ledger.balances["payer"], 5_000)

    def test_factory_picks_adapter(self):
        self.assertIsInstance(build_ledger_client(LedgerSettings()), MemoryLedger)
        client = build_ledger_client(LedgerSettings(mode="http"))
        self.assertIsInstance(client, HttpLedgerClient)
        asyncio.run(client.aclose())


class HttpLedgerClientTests(unittest.TestCase):
    def _client(self, handler, **kwargs):
        return HttpLedgerClient(
            base_url="http://base.test",
            accelerated_url="http://er.test",
            owner_id="payer",
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    def test_routes_calls_to_the_right_tier(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.host, request.method, request.url.path))
            if request.url.path.endswith("/commit-and-undelegate"):
                return httpx.Response(200, json={"tx_ref": "sig-1"})
            if request.url.path.startswith("/commitments/"):
                return httpx.Response(200, json={"committed": True, "signature": "base-sig"})
            if request.url.path == "/sessions/s1" and request.method == "GET":
                return httpx.Response(
                    200, json={"total_usage": 12, "settled_cost": 84, "refunded": 16, "status": "closed"}
                )
            if request.url.path.endswith("/balance"):
                return httpx.Response(200, json={"balance": 4_916})
            return httpx.Response(200, json={})

        async def scenario():
            client = self._client(handler)
            await client.open_session("s1", "c1", 1, 3, 100, 7, "merchant")
            await client.delegate("s1", "payer")
            await client.record_usage("s1", 1, "tag-1")
            tx_ref = await client.reconcile_and_undelegate("s1")
            await client.await_commitment_proof(tx_ref)
            await client.settle("s1")
            record = await client.fetch_session("s1")
            balance = await client.get_balance("payer")
            await client.aclose()
            return tx_ref, record, balance

        tx_ref, record, balance = asyncio.run(scenario())
        self.assertEqual(tx_ref, "sig-1")
        self.assertEqual(record.total_usage, 12)
        self.assertEqual(record.status, LedgerSessionStatus.CLOSED)
        self.assertEqual(balance, 4_916)
        self.assertIn(("er.test", "POST", "/sessions/s1/usage"), seen)
        self.assertIn(("base.test", "POST", "/sessions/s1/settle"), seen)
        self.assertIn(("base.test", "POST", "/sessions"), seen)

    def test_usage_body_carries_uniqueness_tag(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={})

        async def scenario():
            client = self._client(handler)
            await client.record_usage("s1", 2, "flowstream-s1-7-1700000000000")
            await client.aclose()

        asyncio.run(scenario())
        self.assertEqual(bodies, [{"increment": 2, "tag": "flowstream-s1-7-1700000000000"}])

    def test_error_status_becomes_ledger_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"detail": "usage exceeds deposit"})

        async def scenario():
            client = self._client(handler)
            try:
                with self.assertRaises(LedgerRejected) as ctx:
                    await client.record_usage("s1", 1, "t")
            finally:
                await client.aclose()
            return ctx.exception

        exc = asyncio.run(scenario())
        self.assertEqual(exc.step, "record_usage")
        self.assertEqual(exc.detail, "usage exceeds deposit")

    def test_transport_error_becomes_ledger_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            client = self._client(handler)
            try:
                with self.assertRaises(LedgerRejected) as ctx:
                    await client.settle("s1")
            finally:
                await client.aclose()
            return ctx.exception

        self.assertEqual(asyncio.run(scenario()).step, "settle")

    def test_commitment_proof_times_out(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"committed": False})

        async def scenario():
            client = self._client(handler, proof_timeout=0.05, proof_poll_interval=0.01)
            try:
                with self.assertRaises(ReconciliationTimeout) as ctx:
                    await client.await_commitment_proof("sig-9")
            finally:
                await client.aclose()
            return ctx.exception

        exc = asyncio.run(scenario())
        self.assertEqual(exc.tx_ref, "sig-9")
        self.assertIsInstance(exc, LedgerRejected)

    def test_malformed_session_record_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"total_usage": 1})

        async def scenario():
            client = self._client(handler)
            try:
                with self.assertRaises(LedgerRejected):
                    await client.fetch_session("s1")
            finally:
                await client.aclose()

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
