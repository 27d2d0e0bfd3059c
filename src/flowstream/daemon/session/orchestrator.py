"""Session orchestrator: lifecycle, usage streaming loop, finalize-once.

One orchestrator owns at most one session. Everything runs on a single
asyncio event loop and every snapshot write goes through
`BroadcastHub.publish`, so the three writers (connect path, loop tick,
finalize path) never interleave a half-applied update.

Lifecycle:
    Idle -> Initializing -> Streaming -> Finalizing -> Idle
    Initializing | Streaming | Finalizing -> Error -> (abandon) -> Idle
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, TypeVar

from ..billing import accrued_cost, can_afford, effective_rate, refund, remaining_deposit, target_usage
from ..errors import FlowstreamError, InvalidArgument, LedgerRejected, SessionAlreadyOpen
from ..ledger.client import LedgerClient
from ..utils.config_loader import SessionSettings
from ..utils.deterministic import session_account_id, short_id, usage_tag
from ..utils.invariants import run_all_checks
from ..utils.logging_config import StructuredLogger
from .hub import BroadcastHub
from .snapshot import ALLOWED_TRANSITIONS, SessionSnapshot, SessionStatus

logger = StructuredLogger(__name__)

T = TypeVar("T")

STOP_REQUESTED = "stop requested"
DURATION_ELAPSED = "duration elapsed"
DEPOSIT_EXHAUSTED = "deposit exhausted"


@dataclass
class _ActiveSession:
    session_id: str
    charger_id: str
    deposit: int
    rate_per_unit: int
    done: asyncio.Future
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    loop_task: asyncio.Task | None = None
    started_at: float | None = None
    sequence: int = 0
    total_usage: int = 0
    finalize_claimed: bool = False
    error: BaseException | None = None

    def claim_finalize(self) -> bool:
        # No await between test and set, so this is atomic on the event loop.
        if self.finalize_claimed:
            return False
        self.finalize_claimed = True
        return True

    def release_finalize(self) -> None:
        self.finalize_claimed = False

    def resolve(self) -> None:
        if not self.done.done():
            self.done.set_result(None)


class SessionOrchestrator:
    def __init__(
        self,
        ledger: LedgerClient,
        hub: BroadcastHub,
        settings: SessionSettings,
        *,
        owner_id: str,
        merchant_id: str,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = ledger
        self.hub = hub
        self.settings = settings
        self.owner_id = owner_id
        self.merchant_id = merchant_id
        self._clock = clock
        self._session: _ActiveSession | None = None

    # ── Observability ────────────────────────────────────────────────────

    @property
    def snapshot(self) -> SessionSnapshot:
        return self.hub.snapshot

    @property
    def status(self) -> SessionStatus:
        return self.hub.snapshot.status

    @property
    def session_id(self) -> str | None:
        return self._session.session_id if self._session else None

    def _log(self, message: str, *, level: str = "info", **context: Any) -> str:
        getattr(logger, level)(message, **context)
        return f"[{datetime.now(UTC).isoformat()}] {message}"

    def _transition(self, to: SessionStatus, **changes: Any) -> SessionSnapshot:
        current = self.hub.snapshot.status
        if to != current and to not in ALLOWED_TRANSITIONS[current]:
            raise RuntimeError(f"Transition not allowed: {current} -> {to}")
        return self.hub.publish(status=to, **changes)

    async def _step(self, step: str, awaitable: Awaitable[T]) -> T:
        """Run one ledger call; any failure comes out as a named LedgerRejected."""
        try:
            return await awaitable
        except FlowstreamError:
            raise
        except Exception as exc:
            raise LedgerRejected(step, str(exc) or type(exc).__name__) from exc

    async def _refresh_balance(self) -> int:
        balance = await self._step("get_balance", self.ledger.get_balance(self.owner_id))
        self.hub.publish(wallet_balance=balance)
        return balance

    def _fail(self, session: _ActiveSession, exc: BaseException, *, phase: str) -> None:
        """Park the session in Error; identifiers stay for the operator."""
        session.error = exc
        step = getattr(exc, "step", phase)
        line = self._log(
            f"Session {phase} failed at {step}: {exc}",
            level="critical",
            session_id=session.session_id,
            phase=phase,
            step=step,
            error=str(exc),
            confirmed_writes=session.sequence,
        )
        self._transition(SessionStatus.ERROR, connected=False, log_tail=line)
        session.resolve()

    # ── Control surface ──────────────────────────────────────────────────

    async def connect(self, deposit: int) -> SessionSnapshot:
        """Open, fund and delegate a session, then start streaming.

        Returns once the usage loop is running; it does not wait for the
        session to end.
        """
        if isinstance(deposit, bool) or not isinstance(deposit, int):
            raise InvalidArgument("Deposit must be an integer amount of base units")
        if deposit <= 0:
            raise InvalidArgument("Deposit must be positive")
        if self._session is not None:
            raise SessionAlreadyOpen(f"A session is already open (status {self.status})")

        s = self.settings
        rate = effective_rate(s.rate, currency_decimals=s.currency_decimals, usage_decimals=s.usage_decimals)
        target = target_usage(s.duration_ms, s.interval_ms, s.increment)

        charger_id = uuid.uuid4().hex
        session = _ActiveSession(
            session_id=session_account_id(self.owner_id, charger_id),
            charger_id=charger_id,
            deposit=deposit,
            rate_per_unit=rate,
            done=asyncio.get_running_loop().create_future(),
        )
        self._session = session

        self._transition(
            SessionStatus.INITIALIZING,
            charger_id=charger_id,
            session_account_id=session.session_id,
            merchant_id=self.merchant_id,
            total_usage=0,
            update_count=0,
            target_usage=target,
            deposit_amount=deposit,
            accrued_cost=0,
            refund_amount=None,
            rate_per_unit=rate,
            unit=s.unit,
            usage_decimals=s.usage_decimals,
            currency_decimals=s.currency_decimals,
            connected=False,
            log_tail=self._log(
                "Initializing session",
                session_id=session.session_id,
                charger=short_id(charger_id),
                deposit=deposit,
                rate_per_unit=rate,
                target_usage=target,
            ),
        )

        try:
            await self._step(
                "open_session",
                self.ledger.open_session(
                    session.session_id,
                    charger_id,
                    s.unit,
                    s.usage_decimals,
                    deposit,
                    rate,
                    self.merchant_id,
                ),
            )
            self.hub.publish(log_tail=self._log("Session opened on base tier", session_id=session.session_id))
            await self._refresh_balance()
            await self._step("delegate", self.ledger.delegate(session.session_id, self.owner_id))
        except (FlowstreamError, asyncio.CancelledError) as exc:
            self._fail(session, exc, phase="connect")
            raise

        snapshot = self._transition(
            SessionStatus.STREAMING,
            connected=True,
            log_tail=self._log(
                "Session delegated to accelerated tier",
                session_id=session.session_id,
                stop_pending=session.stop.is_set(),
            ),
        )
        session.loop_task = asyncio.create_task(
            self._stream(session), name=f"flowstream-usage-{short_id(session.session_id)}"
        )
        return snapshot

    async def disconnect(self) -> SessionSnapshot:
        """Stop the session and wait until it is settled (or has failed).

        A no-op when nothing is open. A stop requested while the session is
        still initializing is applied as soon as delegation succeeds.
        """
        session = self._session
        if session is None or session.done.done():
            return self.snapshot
        if not session.stop.is_set() and self.status is not SessionStatus.FINALIZING:
            session.stop.set()
            self.hub.publish(
                log_tail=self._log("Stop requested", session_id=session.session_id, status=str(self.status))
            )
        await asyncio.shield(session.done)
        return self.snapshot

    def abandon(self) -> SessionSnapshot:
        """Drop a failed session so a new one can be opened.

        Ledger state the failed session left behind is not touched.
        """
        session = self._session
        if session is None:
            return self.snapshot
        if self.status is not SessionStatus.ERROR:
            raise InvalidArgument(f"Only a failed session can be abandoned (status {self.status})")
        self._session = None
        line = self._log(
            "Session abandoned; ledger state may need manual cleanup",
            level="warning",
            session_id=session.session_id,
            error=str(session.error),
        )
        return self._transition(
            SessionStatus.IDLE,
            charger_id=None,
            session_account_id=None,
            merchant_id=None,
            connected=False,
            log_tail=line,
        )

    async def join(self) -> SessionSnapshot:
        """Wait for the current session, if any, to settle or fail."""
        session = self._session
        if session is not None:
            await asyncio.shield(session.done)
        return self.snapshot

    async def shutdown(self) -> None:
        await self.disconnect()

    # ── Streaming loop ───────────────────────────────────────────────────

    def _exit_reason(self, session: _ActiveSession) -> str | None:
        if session.stop.is_set():
            return STOP_REQUESTED
        if (self._clock() - session.started_at) * 1000 >= self.settings.duration_ms:
            return DURATION_ELAPSED
        next_total = session.total_usage + self.settings.increment
        if not can_afford(session.deposit, next_total, session.rate_per_unit):
            return DEPOSIT_EXHAUSTED
        return None

    async def _record_tick(self, session: _ActiveSession) -> None:
        sequence = session.sequence + 1
        tag = usage_tag(session.session_id, sequence, time.time_ns() // 1_000_000)
        await self._step(
            "record_usage",
            self.ledger.record_usage(session.session_id, self.settings.increment, tag),
        )
        session.sequence = sequence
        session.total_usage += self.settings.increment
        self._transition(
            SessionStatus.STREAMING,
            total_usage=session.total_usage,
            update_count=sequence,
            accrued_cost=accrued_cost(session.total_usage, session.rate_per_unit),
        )

    async def _tick_until_exit(self, session: _ActiveSession) -> str:
        interval = self.settings.interval_ms / 1000
        session.started_at = self._clock()
        while True:
            reason = self._exit_reason(session)
            if reason:
                return reason
            await self._record_tick(session)
            # The stop event cuts the wait short; an in-flight write is never aborted.
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(session.stop.wait(), timeout=interval)

    async def _stream(self, session: _ActiveSession) -> None:
        try:
            try:
                reason = await self._tick_until_exit(session)
            except Exception as exc:
                self._fail(session, exc, phase="streaming")
                return

            self.hub.publish(
                log_tail=self._log(
                    f"Streaming ended: {reason}",
                    session_id=session.session_id,
                    writes=session.sequence,
                    total_usage=session.total_usage,
                    remaining=remaining_deposit(session.deposit, session.total_usage, session.rate_per_unit),
                )
            )
            await self._finalize(session)
        finally:
            # Also reached on cancellation, so waiters in disconnect() are released.
            session.resolve()

    # ── Finalization ─────────────────────────────────────────────────────

    async def _finalize(self, session: _ActiveSession) -> None:
        if not session.claim_finalize():
            return

        sid = session.session_id
        self._transition(
            SessionStatus.FINALIZING,
            connected=False,
            log_tail=self._log("Committing accelerated tier state to base tier", session_id=sid),
        )
        try:
            tx_ref = await self._step("reconcile", self.ledger.reconcile_and_undelegate(sid))
            self.hub.publish(log_tail=self._log("Awaiting commitment proof", session_id=sid, tx_ref=tx_ref))
            await self._step("commitment_proof", self.ledger.await_commitment_proof(tx_ref))
            await self._step("settle", self.ledger.settle(sid))
            final = await self._step("fetch_session", self.ledger.fetch_session(sid))
            balance = await self._step("get_balance", self.ledger.get_balance(self.owner_id))
            refund_amount = refund(session.deposit, final.settled_cost)
        except Exception as exc:
            session.release_finalize()
            self._fail(session, exc, phase="finalize")
            return

        if final.refunded != refund_amount:
            logger.critical(
                "Ledger refund disagrees with deposit minus settled cost",
                session_id=sid,
                ledger_refund=final.refunded,
                computed_refund=refund_amount,
            )
        if final.total_usage != session.total_usage:
            logger.warning(
                "Local usage estimate differs from ledger",
                session_id=sid,
                local=session.total_usage,
                ledger=final.total_usage,
            )

        self._session = None
        snapshot = self._transition(
            SessionStatus.IDLE,
            charger_id=None,
            session_account_id=None,
            merchant_id=None,
            connected=False,
            total_usage=final.total_usage,
            accrued_cost=final.settled_cost,
            refund_amount=refund_amount,
            wallet_balance=balance,
            log_tail=self._log(
                "Session settled and closed",
                session_id=sid,
                total_usage=final.total_usage,
                settled_cost=final.settled_cost,
                refund=refund_amount,
            ),
        )
        for result in run_all_checks(snapshot):
            if not result.passed:
                logger.critical("Invariant violated after settlement", invariant=result.name, detail=result.detail)
