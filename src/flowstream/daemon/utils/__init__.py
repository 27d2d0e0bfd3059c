"""Flowstream daemon utilities: logging, config, invariants, deterministic ids.

Individual modules are imported directly by consumers, e.g.:
    from ..utils.logging_config import StructuredLogger
    from ..utils.config_loader import config_loader
"""

from .logging_config import setup_logging, StructuredLogger, JSONFormatter
from .config_loader import config_loader, ConfigLoader, FlowstreamConfig, SessionSettings, LedgerSettings
from .invariants import run_all_checks, InvariantResult
from .deterministic import session_account_id, usage_tag

__all__ = [
    "setup_logging", "StructuredLogger", "JSONFormatter",
    "config_loader", "ConfigLoader", "FlowstreamConfig", "SessionSettings", "LedgerSettings",
    "run_all_checks", "InvariantResult",
    "session_account_id", "usage_tag",
]
