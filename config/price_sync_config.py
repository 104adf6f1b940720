"""
Settings for the market price sync.

Values are read from the environment every time load_price_sync_settings()
is called, so a rotated PRICE_SYNC_SECRET or JWT secret takes effect on the
next sync without a restart.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_COINGECKO_API_URL = "https://api.coingecko.com/api/v3"
DEFAULT_FOREX_API_URL = "https://open.er-api.com/v6"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class PriceSyncSettings:
    sync_secret: Optional[str]
    jwt_secret: Optional[str]
    jwt_audience: str
    jwt_issuer: Optional[str]
    coingecko_api_url: str
    coingecko_api_key: Optional[str]
    forex_api_url: str
    upstream_timeout_sec: float
    lease_sec: float
    cache_ttl_sec: float
    profit_recompute_function: str


def load_price_sync_settings() -> PriceSyncSettings:
    project_url = os.getenv("SUPABASE_PROJECT_URL", "").rstrip("/")
    return PriceSyncSettings(
        sync_secret=os.getenv("PRICE_SYNC_SECRET") or None,
        jwt_secret=os.getenv("SUPABASE_JWT_SECRET") or None,
        jwt_audience=os.getenv("SUPABASE_JWT_AUD", "authenticated"),
        jwt_issuer=f"{project_url}/auth/v1" if project_url else None,
        coingecko_api_url=os.getenv("COINGECKO_API_URL", DEFAULT_COINGECKO_API_URL).rstrip("/"),
        coingecko_api_key=os.getenv("COINGECKO_API_KEY") or None,
        forex_api_url=os.getenv("FOREX_API_URL", DEFAULT_FOREX_API_URL).rstrip("/"),
        upstream_timeout_sec=_env_float("PRICE_UPSTREAM_TIMEOUT_SEC", 5.0),
        lease_sec=_env_float("PRICE_SYNC_LEASE_SEC", 60.0),
        cache_ttl_sec=_env_float("PRICE_CACHE_TTL_SEC", 30.0),
        profit_recompute_function=os.getenv("PROFIT_RECOMPUTE_FUNCTION", "sync_trading_profits"),
    )
