"""
Configuration loader for apimarket.

What it does:
- Reads static settings from `config/config.yaml`.
- Applies environment overrides (`APIMARKET_OWNER`, `APIMARKET_PLATFORM_FEE_BPS`,
  `APIMARKET_STATE_PATH`, `REDIS_URL`, `EVENTS_STREAM`, `EVENTS_DLQ`,
  `PROMETHEUS_PORT`).
- Validates the resulting configuration using Pydantic models.

Where it is used:
- Called by `apimarket.main` to build a `Settings` object for runtime.
"""

import os
import yaml
from typing import Any, Dict, Optional
from pydantic import BaseModel, field_validator

from ..ledger.model import DEFAULT_PLATFORM_FEE_BPS, MAX_PLATFORM_FEE_BPS, is_null_identity


class EventsConfig(BaseModel):
    """Where committed ledger notifications are published."""
    stream: str = "apimarket.events"
    dlq: str = "apimarket.dlq"
    redis_url: str = "redis://localhost:6379/0"


class GatewayConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080


class Settings(BaseModel):
    """Runtime settings assembled from YAML + environment variables."""
    owner: str
    platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS
    state_path: Optional[str] = "data/ledger.sqlite"
    metrics_port: int = 8000
    events: EventsConfig = EventsConfig()
    gateway: GatewayConfig = GatewayConfig()

    @field_validator("owner")
    @classmethod
    def owner_not_null(cls, v):
        if is_null_identity(v):
            raise ValueError("Missing required ledger owner identity")
        return v

    @field_validator("platform_fee_bps")
    @classmethod
    def fee_within_ceiling(cls, v):
        if v < 0 or v > MAX_PLATFORM_FEE_BPS:
            raise ValueError(f"platform_fee_bps must be between 0 and {MAX_PLATFORM_FEE_BPS}")
        return v


def load_settings(path: str = "config/config.yaml") -> Settings:
    """Load YAML config, apply env-var overrides, and return Settings.

    A missing file is treated as an empty config so a deployment can be
    driven entirely from the environment.
    """
    config: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, "r") as f:
            config = yaml.safe_load(f) or {}
    events = dict(config.get("events") or {})
    gateway = dict(config.get("gateway") or {})

    owner = os.getenv("APIMARKET_OWNER", config.get("owner") or "")
    fee = os.getenv("APIMARKET_PLATFORM_FEE_BPS")
    state_path = os.getenv("APIMARKET_STATE_PATH", config.get("state_path", "data/ledger.sqlite"))
    metrics_port = os.getenv("PROMETHEUS_PORT", config.get("metrics_port", 8000))
    for env_key, field in (("REDIS_URL", "redis_url"), ("EVENTS_STREAM", "stream"), ("EVENTS_DLQ", "dlq")):
        if os.getenv(env_key):
            events[field] = os.getenv(env_key)
    if not owner:
        raise ValueError("Missing required ledger owner. Set `owner` in config or APIMARKET_OWNER")
    return Settings(
        owner=owner,
        platform_fee_bps=int(fee) if fee else int(config.get("platform_fee_bps", DEFAULT_PLATFORM_FEE_BPS)),
        state_path=state_path or None,
        metrics_port=int(metrics_port),
        events=EventsConfig(**events),
        gateway=GatewayConfig(**gateway),
    )
