"""
Runtime configuration.

Settings are read from environment variables (optionally from a `.env` file in
the lead-marketplace directory). Every setting has a working default, except the
Supabase credentials which are only needed when MARKETPLACE_STORE=supabase.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)

_STORES = ("memory", "supabase")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class MarketplaceSettings:
    store: str = "memory"
    default_max_claims: int = 5
    lead_expiry_days: int = 7
    direct_lead_response_hours: int = 24
    purchased_credit_validity_days: int = 365
    credits_low_threshold: int = 10
    expiring_lots_window_days: int = 30
    sweep_interval_seconds: int = 600
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.store not in _STORES:
            raise RuntimeError(f"MARKETPLACE_STORE must be one of {_STORES}, got {self.store!r}")
        if self.default_max_claims < 1:
            raise RuntimeError("MARKETPLACE_DEFAULT_MAX_CLAIMS must be >= 1")
        if self.lead_expiry_days < 1:
            raise RuntimeError("MARKETPLACE_LEAD_EXPIRY_DAYS must be >= 1")
        if self.direct_lead_response_hours < 1:
            raise RuntimeError("MARKETPLACE_DIRECT_LEAD_RESPONSE_HOURS must be >= 1")


def load_settings() -> MarketplaceSettings:
    """Read MarketplaceSettings from the environment."""

    return MarketplaceSettings(
        store=os.getenv("MARKETPLACE_STORE", "memory").strip().lower(),
        default_max_claims=_int_env("MARKETPLACE_DEFAULT_MAX_CLAIMS", 5),
        lead_expiry_days=_int_env("MARKETPLACE_LEAD_EXPIRY_DAYS", 7),
        direct_lead_response_hours=_int_env("MARKETPLACE_DIRECT_LEAD_RESPONSE_HOURS", 24),
        purchased_credit_validity_days=_int_env("MARKETPLACE_PURCHASED_CREDIT_VALIDITY_DAYS", 365),
        credits_low_threshold=_int_env("MARKETPLACE_CREDITS_LOW_THRESHOLD", 10),
        expiring_lots_window_days=_int_env("MARKETPLACE_EXPIRING_LOTS_WINDOW_DAYS", 30),
        sweep_interval_seconds=_int_env("MARKETPLACE_SWEEP_INTERVAL_SECONDS", 600),
        log_level=os.getenv("MARKETPLACE_LOG_LEVEL", "INFO").strip().upper(),
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or os.getenv("MARKETPLACE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["MarketplaceSettings", "load_settings", "configure_logging"]
