"""Session control surface: connect, disconnect, abandon, status."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..billing import to_base_units
from ..errors import InvalidArgument, LedgerRejected, SessionAlreadyOpen
from ..utils.logging_config import StructuredLogger
from .lifecycle import get_orchestrator

logger = StructuredLogger(__name__)

router = APIRouter(prefix="/api/session", tags=["session"])


class ConnectRequest(BaseModel):
    deposit: str | int = Field(..., description="Deposit in currency units, e.g. \"5.0\"")


@router.get("")
async def session_status():
    return get_orchestrator().snapshot.as_payload()


@router.post("/connect")
async def connect(body: ConnectRequest):
    orchestrator = get_orchestrator()
    try:
        deposit = to_base_units(body.deposit, orchestrator.settings.currency_decimals)
        snapshot = await orchestrator.connect(deposit)
    except SessionAlreadyOpen as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except InvalidArgument as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except LedgerRejected as exc:
        logger.error("Connect rejected by ledger", step=exc.step, detail=exc.detail)
        raise HTTPException(status_code=502, detail={"step": exc.step, "detail": exc.detail})
    return snapshot.as_payload()


@router.post("/disconnect")
async def disconnect():
    snapshot = await get_orchestrator().disconnect()
    return snapshot.as_payload()


@router.post("/abandon")
async def abandon():
    try:
        snapshot = get_orchestrator().abandon()
    except InvalidArgument as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return snapshot.as_payload()
