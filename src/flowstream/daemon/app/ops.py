"""Health endpoints."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..observability import liveness_report, readiness_report
from .lifecycle import current_orchestrator, ledger_mode

router = APIRouter(tags=["ops"])


@router.get("/health")
async def health():
    return liveness_report()


@router.get("/ready")
async def ready():
    orchestrator = current_orchestrator()
    snapshot = orchestrator.snapshot if orchestrator else None
    ok, payload = readiness_report(snapshot, ledger_mode())
    return JSONResponse(content=payload, status_code=200 if ok else 503)
