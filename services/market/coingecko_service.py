# services/market/coingecko_service.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx

from config.price_sync_config import PriceSyncSettings, load_price_sync_settings
from models.tradeable_asset import ASSET_TYPE_CRYPTO
from services.market.errors import UpstreamFetchError
from services.market.symbol_map import CRYPTO_ID_MAP
from services.market.types import ProviderQuotes
from utils.common_helpers import safe_json, valid_price

logger = logging.getLogger(__name__)

SOURCE = "coingecko"


class CoinGeckoService:
    """
    Batched USD spot prices for the tracked coin set.

    One GET per call for every id in CRYPTO_ID_MAP; upstream rate limits are
    tight, so there is no per-coin fallback and no retry inside a pass.
    """

    def __init__(
        self,
        settings: Optional[PriceSyncSettings] = None,
        id_map: Optional[Dict[str, str]] = None,
    ):
        self.settings = settings or load_price_sync_settings()
        self.id_map = dict(id_map or CRYPTO_ID_MAP)

    @asynccontextmanager
    async def _client(self, client: Optional[httpx.AsyncClient] = None):
        if client is not None:
            yield client
            return
        async with httpx.AsyncClient(timeout=self.settings.upstream_timeout_sec) as c:
            yield c

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.coingecko_api_key:
            headers["x-cg-demo-api-key"] = self.settings.coingecko_api_key
        return headers

    async def _get_simple_prices(self, client: httpx.AsyncClient) -> Dict[str, object]:
        url = f"{self.settings.coingecko_api_url}/simple/price"
        params = {
            "ids": ",".join(self.id_map.values()),
            "vs_currencies": "usd",
        }
        try:
            r = await client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise UpstreamFetchError(SOURCE, f"request failed: {type(e).__name__}") from e

        if r.status_code != 200:
            raise UpstreamFetchError(SOURCE, f"HTTP {r.status_code}", status_code=r.status_code)

        data = safe_json(r)
        if data is None:
            raise UpstreamFetchError(SOURCE, "malformed body")
        return data

    async def fetch_prices(self, client: Optional[httpx.AsyncClient] = None) -> ProviderQuotes:
        """
        Returns {internal symbol: usd price}. Coins missing from the response
        are omitted, never defaulted. Failures come back as ok=False.
        """
        try:
            async with self._client(client) as c:
                data = await self._get_simple_prices(c)
        except UpstreamFetchError as e:
            logger.warning("crypto_prices_fetch_failed source=%s err=%s", SOURCE, e)
            return ProviderQuotes.failed(SOURCE, ASSET_TYPE_CRYPTO, str(e))

        prices: Dict[str, float] = {}
        for symbol, coin_id in self.id_map.items():
            entry = data.get(coin_id)
            if not isinstance(entry, dict):
                continue
            price = valid_price(entry.get("usd"))
            if price is not None:
                prices[symbol] = price

        logger.info("crypto_prices_fetched source=%s count=%d of=%d", SOURCE, len(prices), len(self.id_map))
        return ProviderQuotes(source=SOURCE, asset_type=ASSET_TYPE_CRYPTO, prices=prices)
