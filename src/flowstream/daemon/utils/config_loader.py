import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .logging_config import StructuredLogger

logger = StructuredLogger(__name__)

# --- Schema Models ---

class SessionSettings(BaseModel):
    interval_ms: int = Field(10, ge=1)
    duration_ms: int = Field(120_000, ge=1)
    increment: int = Field(1, ge=1)
    unit: int = Field(1, ge=0, le=255)
    usage_decimals: int = Field(3, ge=0, le=18)
    currency_decimals: int = Field(9, ge=0, le=18)
    rate: str = "0.007"

    @field_validator("rate")
    def validate_rate(cls, v):
        try:
            parsed = Decimal(v)
        except (InvalidOperation, TypeError):
            raise ValueError(f"Rate '{v}' is not a decimal number")
        if not parsed.is_finite() or parsed < 0:
            raise ValueError(f"Rate '{v}' must be a finite, non-negative number")
        return v


class LedgerSettings(BaseModel):
    mode: Literal["memory", "http"] = "memory"
    base_url: str = "http://127.0.0.1:8899"
    accelerated_url: str = "http://127.0.0.1:7799"
    owner_id: str = "payer"
    merchant_id: str = "merchant"
    request_timeout_seconds: float = Field(30.0, gt=0)
    proof_timeout_seconds: float = Field(60.0, gt=0)
    proof_poll_interval_ms: int = Field(250, ge=1)
    initial_balance: int = Field(10_000_000_000, ge=0)
    latency_ms: int = Field(0, ge=0)

    @model_validator(mode="after")
    def validate_parties(self):
        if self.owner_id == self.merchant_id:
            raise ValueError("owner_id and merchant_id must differ")
        return self


class FlowstreamConfig(BaseModel):
    version: int = Field(1, ge=1, le=1)
    session: SessionSettings = Field(default_factory=SessionSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)


# Environment knobs applied on top of the file, e.g. FLOWSTREAM_INTERVAL_MS=50
_ENV_OVERRIDES = {
    "FLOWSTREAM_INTERVAL_MS": ("session", "interval_ms"),
    "FLOWSTREAM_DURATION_MS": ("session", "duration_ms"),
    "FLOWSTREAM_INCREMENT": ("session", "increment"),
    "FLOWSTREAM_RATE": ("session", "rate"),
    "FLOWSTREAM_LEDGER_MODE": ("ledger", "mode"),
    "FLOWSTREAM_BASE_URL": ("ledger", "base_url"),
    "FLOWSTREAM_ACCELERATED_URL": ("ledger", "accelerated_url"),
    "FLOWSTREAM_OWNER_ID": ("ledger", "owner_id"),
    "FLOWSTREAM_MERCHANT_ID": ("ledger", "merchant_id"),
}


def _apply_env_overrides(raw: dict) -> dict:
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in raw.items()}
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = (os.getenv(env_name) or "").strip()
        if not value:
            continue
        merged.setdefault(section, {})
        merged[section][key] = value
    return merged

# --- Config Loader (Atomic Reload) ---

class ConfigLoader:
    def __init__(self):
        self.config_dir = Path(os.getenv("FLOWSTREAM_CONFIG_DIR", str(Path.home() / ".flowstream" / "config")))
        self.config_file = self.config_dir / "flowstream.yaml"
        self.config: Optional[FlowstreamConfig] = None

    def load_config(self) -> FlowstreamConfig:
        """
        Loads and validates configuration from flowstream.yaml.
        ATOMIC: On failure, previous config is preserved.
        A missing file falls back to built-in defaults; an invalid file
        raises ValueError.
        """
        try:
            if self.config_file.exists():
                with open(self.config_file, "r") as f:
                    raw_data = yaml.safe_load(f) or {}
                if not isinstance(raw_data, dict):
                    raise ValueError("Top-level YAML document must be a mapping")
                logger.info("Loading configuration", path=str(self.config_file))
            else:
                logger.warning("Config file not found, using defaults", path=str(self.config_file))
                raw_data = {}

            # Validate into temporary, never touch self.config until success
            new_config = FlowstreamConfig(**_apply_env_overrides(raw_data))

            self.config = new_config

            logger.info("Configuration loaded successfully",
                        version=self.config.version,
                        ledger_mode=self.config.ledger.mode,
                        interval_ms=self.config.session.interval_ms,
                        duration_ms=self.config.session.duration_ms)
            return self.config

        except Exception as e:
            logger.error("Configuration validation failed", error=str(e))
            if self.config is not None:
                logger.warning("Keeping previous valid configuration")
                raise ValueError(f"Invalid configuration (previous config retained): {e}")
            else:
                logger.critical("No previous configuration to fall back to")
                raise ValueError(f"Invalid configuration (no fallback): {e}")

    def get_config(self) -> FlowstreamConfig:
        if not self.config:
            self.load_config()
        return self.config

config_loader = ConfigLoader()
