"""In-process two-tier ledger simulator.

Holds both the durable (base) and accelerated copies of each session
account, enforces the same validation the on-chain program would (deposit
sufficiency, overspend, ownership, closed sessions) and settles by paying
the merchant and refunding the payer out of the escrowed deposit.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field

from ..errors import LedgerRejected
from ..utils.logging_config import StructuredLogger
from .client import LedgerSession, LedgerSessionStatus

logger = StructuredLogger(__name__)


@dataclass
class _SessionAccount:
    owner_id: str
    charger_id: str
    unit: int
    decimals: int
    deposit: int
    rate_per_unit: int
    merchant_id: str
    total_usage: int = 0
    settled_cost: int = 0
    refunded: int = 0
    status: LedgerSessionStatus = LedgerSessionStatus.ACTIVE
    delegated: bool = False
    seen_tags: set[str] = field(default_factory=set)


class MemoryLedger:
    """Ledger client backed by process memory; one signer (the payer)."""

    def __init__(self, *, payer_id: str, initial_balance: int = 0, latency_ms: int = 0):
        self.payer_id = payer_id
        self.latency_ms = latency_ms
        self.balances: dict[str, int] = {payer_id: initial_balance}
        self._base: dict[str, _SessionAccount] = {}
        # accelerated-tier usage for delegated sessions
        self._accelerated: dict[str, int] = {}
        self._pending_commits: dict[str, str] = {}
        self._tx_counter = itertools.count(1)

    async def _tick(self) -> None:
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)
        else:
            await asyncio.sleep(0)

    def _account(self, step: str, session_id: str) -> _SessionAccount:
        account = self._base.get(session_id)
        if account is None:
            raise LedgerRejected(step, f"session account {session_id} does not exist")
        return account

    async def open_session(
        self,
        session_id: str,
        charger_id: str,
        unit: int,
        decimals: int,
        deposit: int,
        rate_per_unit: int,
        merchant_id: str,
    ) -> None:
        await self._tick()
        if session_id in self._base:
            raise LedgerRejected("open_session", f"session account {session_id} already in use")
        if deposit <= 0:
            raise LedgerRejected("open_session", "deposit must be positive")
        if rate_per_unit < 0:
            raise LedgerRejected("open_session", "rate must not be negative")
        balance = self.balances.get(self.payer_id, 0)
        if balance < deposit:
            raise LedgerRejected("open_session", f"insufficient funds: balance {balance} < deposit {deposit}")

        self.balances[self.payer_id] = balance - deposit
        self._base[session_id] = _SessionAccount(
            owner_id=self.payer_id,
            charger_id=charger_id,
            unit=unit,
            decimals=decimals,
            deposit=deposit,
            rate_per_unit=rate_per_unit,
            merchant_id=merchant_id,
        )
        logger.debug("Session account opened", session_id=session_id, deposit=deposit)

    async def delegate(self, session_id: str, owner_id: str) -> None:
        await self._tick()
        account = self._account("delegate", session_id)
        if owner_id != account.owner_id:
            raise LedgerRejected("delegate", "unauthorized: owner mismatch")
        if account.delegated:
            raise LedgerRejected("delegate", "session account already delegated")
        if account.status is LedgerSessionStatus.CLOSED:
            raise LedgerRejected("delegate", "session is closed")
        account.delegated = True
        self._accelerated[session_id] = account.total_usage

    async def record_usage(self, session_id: str, increment: int, uniqueness_tag: str) -> None:
        await self._tick()
        account = self._account("record_usage", session_id)
        if not account.delegated or session_id not in self._accelerated:
            raise LedgerRejected("record_usage", "session account is not delegated")
        if account.status is not LedgerSessionStatus.ACTIVE:
            raise LedgerRejected("record_usage", "session is closed")
        if increment <= 0:
            raise LedgerRejected("record_usage", "increment must be positive")
        if uniqueness_tag in account.seen_tags:
            raise LedgerRejected("record_usage", f"duplicate write {uniqueness_tag}")

        new_total = self._accelerated[session_id] + increment
        if new_total * account.rate_per_unit > account.deposit:
            raise LedgerRejected("record_usage", "usage exceeds deposit")
        account.seen_tags.add(uniqueness_tag)
        self._accelerated[session_id] = new_total

    async def reconcile_and_undelegate(self, session_id: str) -> str:
        await self._tick()
        account = self._account("reconcile", session_id)
        if not account.delegated:
            raise LedgerRejected("reconcile", "session account is not delegated")
        account.total_usage = self._accelerated.pop(session_id)
        account.delegated = False
        tx_ref = f"commit-{next(self._tx_counter)}"
        self._pending_commits[tx_ref] = session_id
        return tx_ref

    async def await_commitment_proof(self, tx_ref: str) -> None:
        await self._tick()
        if self._pending_commits.pop(tx_ref, None) is None:
            raise LedgerRejected("commitment_proof", f"unknown commitment {tx_ref}")

    async def settle(self, session_id: str) -> None:
        await self._tick()
        account = self._account("settle", session_id)
        if account.delegated:
            raise LedgerRejected("settle", "session account is still delegated")
        if account.status is LedgerSessionStatus.CLOSED:
            raise LedgerRejected("settle", "session already settled")

        cost = account.total_usage * account.rate_per_unit
        if cost > account.deposit:
            raise LedgerRejected("settle", "usage exceeds deposit")
        account.settled_cost = cost
        account.refunded = account.deposit - cost
        account.status = LedgerSessionStatus.CLOSED
        self.balances[account.merchant_id] = self.balances.get(account.merchant_id, 0) + cost
        self.balances[account.owner_id] = self.balances.get(account.owner_id, 0) + account.refunded
        logger.debug("Session settled", session_id=session_id, cost=cost, refunded=account.refunded)

    async def fetch_session(self, session_id: str) -> LedgerSession:
        await self._tick()
        account = self._account("fetch_session", session_id)
        return LedgerSession(
            total_usage=account.total_usage,
            settled_cost=account.settled_cost,
            refunded=account.refunded,
            status=account.status,
        )

    async def get_balance(self, account_id: str) -> int:
        await self._tick()
        return self.balances.get(account_id, 0)

    async def aclose(self) -> None:
        return None
