# services/market/price_sync_service.py
"""
One sync pass: authorize, pull crypto and forex quotes in parallel, write
each asset's new price, then run the stored profit recomputation once.

Availability wins over consistency here. Upstream outages, single-row write
errors and a failing recompute are logged and show up as lower counts in the
SyncResult; only an authorization failure or an unreadable asset list ends
the pass early.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from prometheus_client import Counter, Histogram

from config.price_sync_config import PriceSyncSettings, load_price_sync_settings
from models.tradeable_asset import ASSET_TYPE_CRYPTO, ASSET_TYPE_FOREX
from services.market.asset_store import AssetRow, AssetStore
from services.market.coingecko_service import CoinGeckoService
from services.market.errors import (
    AssetStoreError,
    PersistenceError,
    ProfitRecomputeError,
    SyncAuthorizationError,
)
from services.market.forex_service import ForexRateService
from services.market.price_events import PriceEventBus
from services.market.symbol_map import baseline_price
from services.market.sync_auth import SyncCaller, authorize_sync
from services.market.sync_lease import SyncLease
from services.market.types import (
    PriceSnapshot,
    ProviderQuotes,
    SyncResult,
    UpdateOutcome,
    UpdateStatus,
)
from utils.common_helpers import iso_z, utc_now, valid_price

logger = logging.getLogger(__name__)

# Metrics
SYNC_DURATION = Histogram(
    "price_sync_duration_seconds",
    "Wall time of one executed price sync pass",
)
SYNC_PASSES = Counter(
    "price_sync_passes_total",
    "Price sync triggers by outcome",
    ["outcome"],
)
PROVIDER_FAILURES = Counter(
    "price_provider_failures_total",
    "Price source fetches that produced no data",
    ["source"],
)
ASSET_UPDATES = Counter(
    "price_asset_updates_total",
    "Per-asset update outcomes",
    ["status"],
)


class PriceSynchronizer:
    def __init__(
        self,
        store: AssetStore,
        crypto: Optional[CoinGeckoService] = None,
        forex: Optional[ForexRateService] = None,
        settings: Optional[PriceSyncSettings] = None,
        lease: Optional[SyncLease] = None,
        events: Optional[PriceEventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or load_price_sync_settings()
        self.store = store
        self.crypto = crypto or CoinGeckoService(self.settings)
        self.forex = forex or ForexRateService(self.settings)
        self.lease = lease or SyncLease(self.settings.lease_sec)
        self.events = events
        self.clock = clock

    async def sync(self, credential: Optional[str]) -> SyncResult:
        """
        Raises SyncAuthorizationError before any fetch or write, and
        AssetStoreError when the asset list can't be read. Everything else
        is folded into the result.
        """
        try:
            caller = authorize_sync(credential, self.settings)
        except SyncAuthorizationError:
            SYNC_PASSES.labels(outcome="unauthorized").inc()
            raise

        token = self.lease.try_acquire()
        if token is None:
            logger.info("price_sync_skipped reason=in_flight caller=%s", caller.kind)
            SYNC_PASSES.labels(outcome="in_flight").inc()
            return SyncResult(
                success=True,
                message="Sync already in progress",
                timestamp=self.clock(),
                skipped_in_flight=True,
            )

        try:
            with SYNC_DURATION.time():
                result = await self._run_pass(caller)
        except AssetStoreError:
            SYNC_PASSES.labels(outcome="failed").inc()
            raise
        finally:
            self.lease.release(token)

        SYNC_PASSES.labels(outcome="completed").inc()
        return result

    # -----------------------
    # Fetch
    # -----------------------

    async def _bounded(
        self,
        fetch: Callable[[], Awaitable[ProviderQuotes]],
        source: str,
        asset_type: str,
    ) -> ProviderQuotes:
        try:
            return await asyncio.wait_for(fetch(), timeout=self.settings.upstream_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(
                "price_fetch_timeout source=%s timeout_s=%.1f", source, self.settings.upstream_timeout_sec
            )
            return ProviderQuotes.failed(source, asset_type, "timeout")
        except Exception as e:
            logger.warning("price_fetch_error source=%s err=%s", source, type(e).__name__, exc_info=True)
            return ProviderQuotes.failed(source, asset_type, type(e).__name__)

    async def fetch_snapshot(self) -> PriceSnapshot:
        crypto, forex = await asyncio.gather(
            self._bounded(self.crypto.fetch_prices, "crypto", ASSET_TYPE_CRYPTO),
            self._bounded(self.forex.fetch_rates, "forex", ASSET_TYPE_FOREX),
        )
        for quotes in (crypto, forex):
            if not quotes.ok:
                PROVIDER_FAILURES.labels(source=quotes.source).inc()
        return PriceSnapshot(crypto=crypto, forex=forex)

    # -----------------------
    # Resolve + persist
    # -----------------------

    def _resolve(self, asset: AssetRow, snapshot: PriceSnapshot) -> tuple[Optional[float], bool]:
        price = valid_price(snapshot.resolve(asset.symbol, asset.asset_type))
        if price is not None:
            return price, False

        # Forex source down: give never-priced pairs an approximate level,
        # leave pairs that already hold a real quote alone.
        if (
            asset.asset_type == ASSET_TYPE_FOREX
            and not snapshot.forex.ok
            and valid_price(asset.current_price) is None
        ):
            fallback = valid_price(baseline_price(asset.symbol, asset.asset_type))
            if fallback is not None:
                return fallback, True

        return None, False

    def _apply(self, asset: AssetRow, snapshot: PriceSnapshot) -> UpdateOutcome:
        price, from_baseline = self._resolve(asset, snapshot)
        if price is None:
            return UpdateOutcome(asset.id, asset.symbol, asset.asset_type, UpdateStatus.skipped)

        try:
            self.store.update_price(asset.id, price, self.clock())
        except PersistenceError as e:
            logger.error("price_update_failed symbol=%s err=%s", asset.symbol, e)
            return UpdateOutcome(
                asset.id, asset.symbol, asset.asset_type, UpdateStatus.failed, price=price, error=str(e)
            )

        return UpdateOutcome(
            asset.id,
            asset.symbol,
            asset.asset_type,
            UpdateStatus.updated,
            price=price,
            from_baseline=from_baseline,
        )

    def _recompute_profits(self) -> bool:
        try:
            self.store.recompute_profits()
        except ProfitRecomputeError as e:
            logger.error("profit_recompute_failed err=%s", e)
            return False
        logger.info("profit_recompute_done")
        return True

    def _publish(self, result: SyncResult) -> None:
        if self.events is None:
            return
        self.events.publish(
            {
                "timestamp": iso_z(result.timestamp),
                "prices": [
                    {
                        "id": o.asset_id,
                        "symbol": o.symbol,
                        "asset_type": o.asset_type,
                        "price": o.price,
                    }
                    for o in result.updates
                ],
            }
        )

    async def _run_pass(self, caller: SyncCaller) -> SyncResult:
        logger.info("price_sync_start caller=%s", caller.kind)

        snapshot = await self.fetch_snapshot()
        assets = self.store.list_assets()

        outcomes: List[UpdateOutcome] = [self._apply(asset, snapshot) for asset in assets]
        for o in outcomes:
            ASSET_UPDATES.labels(status=o.status.value).inc()

        # strictly after every update attempt, once per pass
        recompute_ok = self._recompute_profits()

        result = SyncResult(
            success=True,
            message="",
            timestamp=self.clock(),
            crypto_count=snapshot.crypto_count,
            forex_count=snapshot.forex_count,
            outcomes=outcomes,
            recompute_ok=recompute_ok,
            forex_fallback=any(o.from_baseline for o in outcomes),
        )
        result.message = f"Updated {result.updated_count} asset prices"

        logger.info(
            "price_sync_done crypto=%d forex=%d assets=%d updated=%d skipped=%d failed=%d recompute_ok=%s",
            result.crypto_count,
            result.forex_count,
            len(assets),
            result.updated_count,
            result.skipped_count,
            result.failed_count,
            recompute_ok,
        )

        self._publish(result)
        return result
