"""Metered session orchestration: snapshot, broadcast hub and orchestrator."""

from .snapshot import ALLOWED_TRANSITIONS, SessionSnapshot, SessionStatus
from .hub import BroadcastHub, Subscription
from .orchestrator import SessionOrchestrator

__all__ = [
    "ALLOWED_TRANSITIONS",
    "SessionSnapshot",
    "SessionStatus",
    "BroadcastHub",
    "Subscription",
    "SessionOrchestrator",
]
