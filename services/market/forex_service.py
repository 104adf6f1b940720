# services/market/forex_service.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Mapping, Optional

import httpx

from config.price_sync_config import PriceSyncSettings, load_price_sync_settings
from models.tradeable_asset import ASSET_TYPE_FOREX
from services.market.errors import UpstreamFetchError
from services.market.symbol_map import (
    BRIDGE_CURRENCY,
    FOREX_PAIRS,
    PAIR_CROSS,
    PAIR_DIRECT,
    PAIR_RECIPROCAL,
    ForexPairRule,
)
from services.market.types import ProviderQuotes
from utils.common_helpers import safe_json, valid_price

logger = logging.getLogger(__name__)

SOURCE = "exchangerate-api"


def _pair_price(rule: ForexPairRule, rates: Mapping[str, float]) -> Optional[float]:
    if rule.kind == PAIR_DIRECT:
        return rates.get(rule.quote)
    if rule.kind == PAIR_RECIPROCAL:
        r = rates.get(rule.base)
        return 1.0 / r if r else None
    if rule.kind == PAIR_CROSS:
        a, b = rates.get(rule.base), rates.get(rule.quote)
        return b / a if a and b else None
    raise ValueError(f"unknown pair kind {rule.kind!r}")


def derive_forex_pairs(
    rates: Mapping[str, Any],
    pairs: Optional[Mapping[str, ForexPairRule]] = None,
) -> Dict[str, float]:
    """
    Derive pair prices from USD-relative rates (R[ccy] = ccy per 1 USD).

    direct USD/X = R[X], reciprocal X/USD = 1 / R[X], cross A/B = R[B] / R[A].
    Pairs with a missing or unusable leg are left out.
    """
    clean: Dict[str, float] = {}
    for ccy, raw in (rates or {}).items():
        v = valid_price(raw)
        if v is not None and isinstance(ccy, str):
            clean[ccy.upper()] = v
    clean.pop(BRIDGE_CURRENCY, None)

    out: Dict[str, float] = {}
    for symbol, rule in (pairs or FOREX_PAIRS).items():
        price = valid_price(_pair_price(rule, clean))
        if price is not None:
            out[symbol] = price
    return out


class ForexRateService:
    """All USD-relative rates in one GET, turned into the tracked pair set."""

    def __init__(
        self,
        settings: Optional[PriceSyncSettings] = None,
        pairs: Optional[Mapping[str, ForexPairRule]] = None,
    ):
        self.settings = settings or load_price_sync_settings()
        self.pairs = dict(pairs or FOREX_PAIRS)

    @asynccontextmanager
    async def _client(self, client: Optional[httpx.AsyncClient] = None):
        if client is not None:
            yield client
            return
        async with httpx.AsyncClient(timeout=self.settings.upstream_timeout_sec) as c:
            yield c

    async def _get_usd_rates(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        url = f"{self.settings.forex_api_url}/latest/{BRIDGE_CURRENCY}"
        try:
            r = await client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise UpstreamFetchError(SOURCE, f"request failed: {type(e).__name__}") from e

        if r.status_code != 200:
            raise UpstreamFetchError(SOURCE, f"HTTP {r.status_code}", status_code=r.status_code)

        data = safe_json(r) or {}
        rates = data.get("rates")
        if not isinstance(rates, dict) or not rates:
            raise UpstreamFetchError(SOURCE, "rates missing from body")
        return rates

    async def fetch_rates(self, client: Optional[httpx.AsyncClient] = None) -> ProviderQuotes:
        try:
            async with self._client(client) as c:
                rates = await self._get_usd_rates(c)
        except UpstreamFetchError as e:
            logger.warning("forex_rates_fetch_failed source=%s err=%s", SOURCE, e)
            return ProviderQuotes.failed(SOURCE, ASSET_TYPE_FOREX, str(e))

        pairs = derive_forex_pairs(rates, self.pairs)
        logger.info("forex_rates_fetched source=%s pairs=%d of=%d", SOURCE, len(pairs), len(self.pairs))
        return ProviderQuotes(source=SOURCE, asset_type=ASSET_TYPE_FOREX, prices=pairs)
