"""Ledger client capability and its adapters."""

from .client import LedgerClient, LedgerSession, LedgerSessionStatus
from .memory import MemoryLedger
from .http import HttpLedgerClient
from ..utils.config_loader import LedgerSettings


def build_ledger_client(settings: LedgerSettings) -> LedgerClient:
    if settings.mode == "http":
        return HttpLedgerClient(
            base_url=settings.base_url,
            accelerated_url=settings.accelerated_url,
            owner_id=settings.owner_id,
            timeout=settings.request_timeout_seconds,
            proof_timeout=settings.proof_timeout_seconds,
            proof_poll_interval=settings.proof_poll_interval_ms / 1000,
        )
    return MemoryLedger(
        payer_id=settings.owner_id,
        initial_balance=settings.initial_balance,
        latency_ms=settings.latency_ms,
    )


__all__ = [
    "LedgerClient",
    "LedgerSession",
    "LedgerSessionStatus",
    "MemoryLedger",
    "HttpLedgerClient",
    "build_ledger_client",
]
