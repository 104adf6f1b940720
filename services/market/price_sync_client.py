# services/market/price_sync_client.py
"""
Caller-side view of the price service, for dashboards and workers.

- get_price() never does I/O: fresh cached value, else the last fetched
  price, else a static baseline, else 0.
- refetch() asks the service to sync, then reloads the price table. Only one
  refetch runs per client; overlapping calls are dropped, not queued.
- run() keeps the cache warm with one strategy: listen to the push stream,
  and let a health-check timer trigger refetch() only when the stream has
  been quiet for stall_after_sec.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Union

import httpx

from config.price_sync_config import load_price_sync_settings
from services.cache.cache_backend import cache_get, cache_set_many, clear_local_cache
from services.market.errors import PriceClientError
from services.market.price_events import PRICE_EVENT
from services.market.symbol_map import baseline_price, price_key
from services.market.sync_lease import SyncLease
from services.market.types import SyncStatus
from utils.common_helpers import utc_now, valid_price

logger = logging.getLogger(__name__)

SYNC_PATH = "/api/market/prices/sync"
PRICES_PATH = "/api/market/prices"
STREAM_PATH = "/api/market/prices/stream"

TokenProvider = Union[str, Callable[[], Optional[str]], None]
StatusListener = Callable[[SyncStatus], None]


@dataclass
class SyncState:
    status: SyncStatus = SyncStatus.idle
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[Tuple[str, str]]:
    """Yield (event, data) pairs from text/event-stream lines."""
    event = ""
    data: List[str] = []
    async for line in lines:
        if line == "":
            if data:
                yield event or "message", "\n".join(data)
            event, data = "", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield event or "message", "\n".join(data)


class PriceSyncClient:
    def __init__(
        self,
        base_url: str,
        token: TokenProvider = None,
        *,
        cache_ttl_sec: Optional[float] = None,
        lease_sec: Optional[float] = None,
        stall_after_sec: float = 60.0,
        health_check_sec: float = 10.0,
        reconnect_delay_sec: float = 5.0,
        request_timeout_sec: float = 10.0,
        cache_namespace: str = "PRICE",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = load_price_sync_settings()
        self.base_url = base_url.rstrip("/")
        self.cache_ttl_sec = cache_ttl_sec or settings.cache_ttl_sec
        self.stall_after_sec = stall_after_sec
        self.health_check_sec = health_check_sec
        self.reconnect_delay_sec = reconnect_delay_sec
        self.request_timeout_sec = request_timeout_sec
        self.cache_namespace = cache_namespace
        self.state = SyncState()
        self.lease = SyncLease(lease_sec or settings.lease_sec, clock=clock)

        self._token = token
        self._transport = transport
        self._clock = clock
        self._http: Optional[httpx.AsyncClient] = None
        self._listeners: List[StatusListener] = []
        self._tasks: List[asyncio.Task] = []
        self._last_activity: Optional[float] = None
        # last fetched price per cache key; outlives the TTL cache
        self._last_known: Dict[str, float] = {}

    # -----------------------
    # State
    # -----------------------

    @property
    def sync_status(self) -> SyncStatus:
        return self.state.status

    @property
    def last_update(self) -> Optional[datetime]:
        return self.state.last_sync_at

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _set_status(self, status: SyncStatus) -> None:
        self.state.status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("price_client_listener_failed status=%s", status.value)

    def _mark_activity(self) -> None:
        self._last_activity = self._clock()

    # -----------------------
    # Cache
    # -----------------------

    def _cache_key(self, symbol: str, asset_type: str) -> str:
        return f"{self.cache_namespace}:{asset_type}:{price_key(symbol, asset_type)}".upper()

    def _cache_prices(self, rows: List[Dict[str, Any]], price_field: str) -> int:
        kv: Dict[str, Any] = {}
        for row in rows:
            if not isinstance(row, dict):
                continue
            price = valid_price(row.get(price_field))
            symbol, asset_type = row.get("symbol"), row.get("asset_type")
            if price is None or not symbol or not asset_type:
                continue
            kv[self._cache_key(symbol, asset_type)] = price
        cache_set_many(kv, self.cache_ttl_sec)
        self._last_known.update(kv)
        return len(kv)

    def cached_price(self, symbol: str, asset_type: str) -> Optional[float]:
        return valid_price(cache_get(self._cache_key(symbol, asset_type)))

    def get_price(self, symbol: str, asset_type: str) -> float:
        """Fresh cached price, else the last one fetched, else the baseline, else 0."""
        cached = self.cached_price(symbol, asset_type)
        if cached is not None:
            return cached
        last = self._last_known.get(self._cache_key(symbol, asset_type))
        if last is not None:
            return last
        return baseline_price(symbol, asset_type) or 0.0

    async def fetch_price(self, symbol: str, asset_type: str) -> float:
        """Like get_price, but a cache miss triggers one refetch first."""
        cached = self.cached_price(symbol, asset_type)
        if cached is not None:
            return cached
        await self.refetch()
        return self.get_price(symbol, asset_type)

    def clear_cache(self) -> None:
        clear_local_cache(f"{self.cache_namespace}:")
        self._last_known.clear()

    # -----------------------
    # HTTP
    # -----------------------

    def _bearer(self) -> Dict[str, str]:
        token = self._token() if callable(self._token) else self._token
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.request_timeout_sec,
                transport=self._transport,
            )
        return self._http

    async def aclose(self) -> None:
        await self.stop()
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _request_json(self, method: str, path: str) -> Any:
        r = await self._client().request(method, path, headers=self._bearer())
        if r.status_code >= 400:
            raise PriceClientError(f"{method} {path} -> HTTP {r.status_code}", status_code=r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise PriceClientError(f"{method} {path} -> malformed body") from e

    async def _load_price_table(self) -> int:
        rows = await self._request_json("GET", PRICES_PATH)
        if not isinstance(rows, list):
            raise PriceClientError(f"GET {PRICES_PATH} -> expected a list")
        return self._cache_prices(rows, "current_price")

    async def refetch(self) -> Optional[Dict[str, Any]]:
        """
        Trigger one sync and reload prices. Returns the sync summary, or None
        when a refetch is already in flight or the call failed (see
        sync_status / state.last_error).
        """
        token = self.lease.try_acquire()
        if token is None:
            logger.debug("price_client_refetch_skipped reason=in_flight")
            return None

        self._set_status(SyncStatus.syncing)
        try:
            result = await self._request_json("POST", SYNC_PATH)
            cached = await self._load_price_table()
        except (httpx.HTTPError, PriceClientError) as e:
            self.state.last_error = str(e) or type(e).__name__
            logger.warning("price_client_refetch_failed err=%s", self.state.last_error)
            self._set_status(SyncStatus.error)
            return None
        finally:
            self.lease.release(token)

        self.state.last_result = result if isinstance(result, dict) else None
        self.state.last_sync_at = utc_now()
        self.state.last_error = None
        self._mark_activity()
        logger.info("price_client_refetch_done cached=%d", cached)
        self._set_status(SyncStatus.success)
        return self.state.last_result

    # -----------------------
    # Push + health check
    # -----------------------

    def apply_price_event(self, payload: Dict[str, Any]) -> int:
        prices = payload.get("prices") if isinstance(payload, dict) else None
        cached = self._cache_prices(prices if isinstance(prices, list) else [], "price")
        self._mark_activity()
        return cached

    async def _consume_stream(self) -> None:
        async with self._client().stream(
            "GET",
            STREAM_PATH,
            headers=self._bearer(),
            timeout=httpx.Timeout(self.request_timeout_sec, read=None),
        ) as r:
            if r.status_code != 200:
                raise PriceClientError(f"GET {STREAM_PATH} -> HTTP {r.status_code}", status_code=r.status_code)
            logger.info("price_stream_connected")
            async for event, data in iter_sse(r.aiter_lines()):
                if event != PRICE_EVENT:
                    continue
                try:
                    self.apply_price_event(json.loads(data))
                except ValueError:
                    logger.warning("price_stream_bad_event")

    async def _subscription_loop(self) -> None:
        while True:
            try:
                await self._consume_stream()
            except (httpx.HTTPError, PriceClientError) as e:
                logger.warning("price_stream_dropped err=%s", str(e) or type(e).__name__)
            await asyncio.sleep(self.reconnect_delay_sec)

    def is_stalled(self) -> bool:
        if self._last_activity is None:
            return True
        return (self._clock() - self._last_activity) >= self.stall_after_sec

    async def check_health(self) -> bool:
        """Refetch when nothing arrived within stall_after_sec. Returns True if it refetched."""
        if not self.is_stalled():
            return False
        logger.info("price_stream_stalled stall_after_s=%.0f", self.stall_after_sec)
        await self.refetch()
        return True

    async def _health_loop(self) -> None:
        while True:
            await self.check_health()
            await asyncio.sleep(self.health_check_sec)

    async def start(self) -> None:
        # the health loop's first check refetches, since nothing has arrived yet
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._subscription_loop()),
            asyncio.create_task(self._health_loop()),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self) -> None:
        """Start background refresh and block until cancelled."""
        await self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()
