"""Ledger capability used by the session orchestrator.

Adapters implement this protocol and report failure by raising
`LedgerRejected` (or `ReconciliationTimeout` from the proof wait).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable


class LedgerSessionStatus(StrEnum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class LedgerSession:
    """Durable-tier view of a session account."""

    total_usage: int
    settled_cost: int
    refunded: int
    status: LedgerSessionStatus


@runtime_checkable
class LedgerClient(Protocol):
    async def open_session(
        self,
        session_id: str,
        charger_id: str,
        unit: int,
        decimals: int,
        deposit: int,
        rate_per_unit: int,
        merchant_id: str,
    ) -> None: ...

    async def delegate(self, session_id: str, owner_id: str) -> None: ...

    async def record_usage(self, session_id: str, increment: int, uniqueness_tag: str) -> None: ...

    async def reconcile_and_undelegate(self, session_id: str) -> str: ...

    async def await_commitment_proof(self, tx_ref: str) -> None: ...

    async def settle(self, session_id: str) -> None: ...

    async def fetch_session(self, session_id: str) -> LedgerSession: ...

    async def get_balance(self, account_id: str) -> int: ...

    async def aclose(self) -> None: ...
