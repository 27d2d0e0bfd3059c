"""Flowstream daemon lifecycle: startup, shutdown, shared session objects."""

import os

from ..billing import to_base_units
from ..errors import FlowstreamError
from ..ledger import LedgerClient, build_ledger_client
from ..session import BroadcastHub, SessionOrchestrator
from ..utils.config_loader import FlowstreamConfig, config_loader
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)

# One orchestrator per process
_orchestrator: SessionOrchestrator | None = None
_ledger: LedgerClient | None = None


def get_orchestrator() -> SessionOrchestrator:
    if _orchestrator is None:
        raise RuntimeError("Session orchestrator is not running")
    return _orchestrator


def current_orchestrator() -> SessionOrchestrator | None:
    return _orchestrator


def get_hub() -> BroadcastHub:
    return get_orchestrator().hub


def ledger_mode() -> str | None:
    config = config_loader.config
    return config.ledger.mode if config else None


async def startup_event(app):
    """Called on FastAPI startup."""
    global _orchestrator, _ledger
    strict_startup = (os.getenv("FLOWSTREAM_STARTUP_STRICT", "0").strip() == "1")

    try:
        config = config_loader.load_config()
    except Exception as exc:
        logger.error("Config load failed on startup", error=str(exc), strict=strict_startup)
        if strict_startup:
            os._exit(1)
        config = FlowstreamConfig()

    _ledger = build_ledger_client(config.ledger)
    _orchestrator = SessionOrchestrator(
        _ledger,
        BroadcastHub(),
        config.session,
        owner_id=config.ledger.owner_id,
        merchant_id=config.ledger.merchant_id,
    )
    logger.info(
        "Session orchestrator ready",
        ledger_mode=config.ledger.mode,
        owner_id=config.ledger.owner_id,
        merchant_id=config.ledger.merchant_id,
    )

    autoconnect = (os.getenv("FLOWSTREAM_AUTOCONNECT_DEPOSIT") or "").strip()
    if autoconnect:
        try:
            deposit = to_base_units(autoconnect, config.session.currency_decimals)
            await _orchestrator.connect(deposit)
        except FlowstreamError as exc:
            # Nothing runs in the background yet, so exiting here is safe.
            logger.error("Auto-connect failed", error=str(exc), strict=strict_startup)
            if strict_startup:
                os._exit(1)


async def shutdown_event():
    """Called on FastAPI shutdown."""
    global _orchestrator, _ledger
    if _orchestrator is not None:
        try:
            await _orchestrator.shutdown()
        except Exception as exc:
            logger.error("Session shutdown failed", error=str(exc))
        _orchestrator = None
    if _ledger is not None:
        await _ledger.aclose()
        _ledger = None
