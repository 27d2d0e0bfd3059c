"""Process-wide fan-out of the current session snapshot."""

from __future__ import annotations

import asyncio
from dataclasses import replace

from ..utils.logging_config import StructuredLogger
from .snapshot import SNAPSHOT_FIELDS, SessionSnapshot

logger = StructuredLogger(__name__)


class Subscription:
    """One subscriber's channel; iterate it to receive full snapshots."""

    def __init__(self, hub: "BroadcastHub", maxsize: int):
        self._hub = hub
        self.queue: asyncio.Queue[SessionSnapshot] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, snapshot: SessionSnapshot) -> None:
        # Never block the publisher: a lagging subscriber loses its oldest
        # pending snapshot, which the newer full snapshot supersedes anyway.
        if self.queue.full():
            try:
                self.queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(snapshot)

    async def get(self) -> SessionSnapshot:
        return await self.queue.get()

    def close(self) -> None:
        self._hub.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> SessionSnapshot:
        return await self.get()


class BroadcastHub:
    def __init__(self, initial: SessionSnapshot | None = None, *, queue_size: int = 64):
        self._snapshot = initial or SessionSnapshot()
        self._subscribers: set[Subscription] = set()
        self.queue_size = queue_size

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Register a channel; it already holds the current full snapshot."""
        subscription = Subscription(self, self.queue_size)
        subscription.offer(self._snapshot)
        self._subscribers.add(subscription)
        logger.debug("Subscriber added", subscribers=len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.discard(subscription)
            logger.debug("Subscriber removed", subscribers=len(self._subscribers))

    def publish(self, **changes) -> SessionSnapshot:
        """Merge `changes` into the snapshot and push the result to everyone."""
        unknown = set(changes) - SNAPSHOT_FIELDS
        if unknown:
            raise ValueError(f"Unknown snapshot fields: {sorted(unknown)}")
        self._snapshot = replace(self._snapshot, **changes)
        for subscription in list(self._subscribers):
            subscription.offer(self._snapshot)
        return self._snapshot
