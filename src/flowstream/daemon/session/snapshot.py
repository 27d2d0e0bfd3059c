"""Session snapshot model and lifecycle transitions."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import StrEnum

from ..billing import to_display


class SessionStatus(StrEnum):
    IDLE = "Idle"
    INITIALIZING = "Initializing"
    STREAMING = "Streaming"
    FINALIZING = "Finalizing"
    ERROR = "Error"


ALLOWED_TRANSITIONS = {
    SessionStatus.IDLE: {SessionStatus.INITIALIZING},
    SessionStatus.INITIALIZING: {SessionStatus.STREAMING, SessionStatus.ERROR},
    SessionStatus.STREAMING: {SessionStatus.FINALIZING, SessionStatus.ERROR},
    SessionStatus.FINALIZING: {SessionStatus.IDLE, SessionStatus.ERROR},
    SessionStatus.ERROR: {SessionStatus.IDLE},
}

IDENTIFIER_FIELDS = ("charger_id", "session_account_id", "merchant_id")


@dataclass(frozen=True)
class SessionSnapshot:
    """Everything a subscriber sees about the current session.

    Currency figures are integers in the ledger's smallest unit.
    """

    status: SessionStatus = SessionStatus.IDLE
    charger_id: str | None = None
    session_account_id: str | None = None
    merchant_id: str | None = None
    total_usage: int = 0
    target_usage: int = 0
    update_count: int = 0
    deposit_amount: int = 0
    accrued_cost: int = 0
    refund_amount: int | None = None
    wallet_balance: int | None = None
    rate_per_unit: int = 0
    unit: int = 0
    usage_decimals: int = 0
    currency_decimals: int = 0
    connected: bool = False
    log_tail: str | None = None

    def has_identifiers(self) -> bool:
        return any(getattr(self, name) is not None for name in IDENTIFIER_FIELDS)

    def as_payload(self) -> dict:
        """JSON-ready dict with display-precision figures alongside raw ones."""
        payload = asdict(self)
        payload["status"] = str(self.status)
        cd = self.currency_decimals
        payload["total_usage_display"] = to_display(self.total_usage, self.usage_decimals)
        payload["target_usage_display"] = to_display(self.target_usage, self.usage_decimals)
        payload["deposit_display"] = to_display(self.deposit_amount, cd)
        payload["accrued_cost_display"] = to_display(self.accrued_cost, cd)
        payload["refund_display"] = None if self.refund_amount is None else to_display(self.refund_amount, cd)
        payload["wallet_balance_display"] = None if self.wallet_balance is None else to_display(self.wallet_balance, cd)
        return payload


SNAPSHOT_FIELDS = frozenset(f.name for f in fields(SessionSnapshot))
