"""Liveness and readiness helpers."""

from __future__ import annotations

from datetime import datetime, UTC

from flowstream import __version__
from ..session.snapshot import SessionSnapshot, SessionStatus
from ..utils.config_loader import config_loader
from ..utils.invariants import run_all_checks


def liveness_report() -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "ts": datetime.now(UTC).isoformat(),
    }


def readiness_report(snapshot: SessionSnapshot | None, ledger_mode: str | None = None) -> tuple[bool, dict]:
    checks: dict[str, dict] = {}
    ready = True

    try:
        config = config_loader.get_config()
        checks["config"] = {
            "ok": True,
            "ledger_mode": config.ledger.mode,
            "interval_ms": config.session.interval_ms,
            "duration_ms": config.session.duration_ms,
        }
    except Exception as exc:
        checks["config"] = {"ok": False, "error": str(exc)}
        ready = False

    if snapshot is None:
        checks["orchestrator"] = {"ok": False, "error": "orchestrator not started"}
        ready = False
    else:
        failed = [c for c in run_all_checks(snapshot) if not c.passed]
        checks["invariants"] = {
            "ok": not failed,
            "failed": [{"name": c.name, "detail": c.detail} for c in failed],
        }
        errored = snapshot.status is SessionStatus.ERROR
        checks["orchestrator"] = {
            "ok": not errored,
            "status": str(snapshot.status),
            "ledger_mode": ledger_mode,
        }
        if failed or errored:
            ready = False

    payload = {
        "ready": ready,
        "status": "ready" if ready else "not_ready",
        "version": __version__,
        "ts": datetime.now(UTC).isoformat(),
        "checks": checks,
    }
    return ready, payload
