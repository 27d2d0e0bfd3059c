"""Session error taxonomy."""

from __future__ import annotations


class FlowstreamError(Exception):
    """Base class for every error raised by the session layer."""


class InvalidArgument(FlowstreamError):
    """Rejected synchronously; no state was changed."""


class SessionAlreadyOpen(InvalidArgument):
    """connect() while a session (live, finalizing or failed) is still held."""


class LedgerRejected(FlowstreamError):
    """A ledger call returned failure (overspend, bad signature, transport...)."""

    def __init__(self, step: str, detail: str):
        super().__init__(f"{step}: {detail}")
        self.step = step
        self.detail = detail


class ReconciliationTimeout(LedgerRejected):
    """The commitment proof for a reconciliation was never observed."""

    def __init__(self, tx_ref: str, waited_seconds: float):
        super().__init__("commitment_proof", f"no proof for {tx_ref} after {waited_seconds:.1f}s")
        self.tx_ref = tx_ref
        self.waited_seconds = waited_seconds
