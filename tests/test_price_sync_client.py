import asyncio
import json
import unittest

import httpx

import _support  # noqa: F401  sets DATABASE_URL
from services.cache.cache_backend import clear_local_cache
from services.market.price_events import sse_pack
from services.market.price_sync_client import (
    PRICES_PATH,
    STREAM_PATH,
    SYNC_PATH,
    PriceSyncClient,
    iter_sse,
)
from services.market.types import SyncStatus

SYNC_BODY = {"success": True, "message": "Updated 2 asset prices", "updatedCount": 2}
PRICE_TABLE = [
    {"id": "a1", "symbol": "BTC/USDT", "name": "Bitcoin", "asset_type": "crypto", "current_price": 95000.0},
    {"id": "a2", "symbol": "EUR/USD", "name": "Euro", "asset_type": "forex", "current_price": 1.087},
    {"id": "a3", "symbol": "DOGE/USDT", "name": "Doge", "asset_type": "crypto", "current_price": None},
]


class FakeClock:
    def __init__(self):
        self.now = 500.0

    def __call__(self):
        return self.now


class Backend:
    """Records requests and answers like the price API."""

    def __init__(self, sync_status=200, gate=None):
        self.sync_status = sync_status
        self.gate = gate
        self.calls = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path, request.headers.get("Authorization")))
        if request.url.path == SYNC_PATH:
            if self.gate is not None:
                await self.gate.wait()
            if self.sync_status != 200:
                return httpx.Response(self.sync_status, json={"detail": "nope"})
            return httpx.Response(200, json=SYNC_BODY)
        if request.url.path == PRICES_PATH:
            return httpx.Response(200, json=PRICE_TABLE)
        return httpx.Response(404)

    def count(self, path):
        return sum(1 for _, p, _ in self.calls if p == path)


class PriceSyncClientTests(unittest.TestCase):
    def setUp(self):
        self.ns = f"T{id(self)}"
        clear_local_cache(self.ns)
        self.clock = FakeClock()

    def tearDown(self):
        clear_local_cache(self.ns)

    def _client(self, backend, **kwargs):
        kwargs.setdefault("cache_ttl_sec", 30)
        return PriceSyncClient(
            "http://prices.test",
            token="tok",
            cache_namespace=self.ns,
            transport=httpx.MockTransport(backend),
            clock=self.clock,
            **kwargs,
        )

    def _run(self, client, coro_fn):
        async def scenario():
            try:
                return await coro_fn()
            finally:
                await client.aclose()

        return asyncio.run(scenario())

    def test_get_price_falls_back_to_baseline_then_zero(self):
        client = self._client(Backend())
        self.assertEqual(client.get_price("BTC/USDT", "crypto"), 94500)
        self.assertEqual(client.get_price("EUR/USD", "forex"), 1.0850)
        self.assertEqual(client.get_price("NOPE/USDT", "crypto"), 0.0)

    def test_refetch_syncs_then_caches_price_table(self):
        backend = Backend()
        client = self._client(backend)

        result = self._run(client, client.refetch)

        self.assertEqual(result, SYNC_BODY)
        self.assertEqual(
            [(m, p) for m, p, _ in backend.calls],
            [("POST", SYNC_PATH), ("GET", PRICES_PATH)],
        )
        self.assertTrue(all(auth == "Bearer tok" for _, _, auth in backend.calls))
        self.assertEqual(client.get_price("BTC/USDT", "crypto"), 95000.0)
        self.assertEqual(client.get_price("eur/usd", "forex"), 1.087)
        # no price in the table: still the baseline
        self.assertEqual(client.get_price("DOGE/USDT", "crypto"), 0.38)
        self.assertEqual(client.sync_status, SyncStatus.success)
        self.assertIsNotNone(client.last_update)

    def test_cached_price_served_without_network(self):
        backend = Backend()
        client = self._client(backend)

        async def scenario():
            await client.refetch()
            first = await client.fetch_price("BTC/USDT", "crypto")
            second = await client.fetch_price("BTC/USDT", "crypto")
            return first, second

        first, second = self._run(client, scenario)

        self.assertEqual(first, second)
        self.assertEqual(backend.count(SYNC_PATH), 1)

    def test_expired_entry_triggers_refetch(self):
        backend = Backend()
        client = self._client(backend, cache_ttl_sec=0.05)

        async def scenario():
            await client.refetch()
            await asyncio.sleep(0.1)
            self.assertIsNone(client.cached_price("BTC/USDT", "crypto"))
            return await client.fetch_price("BTC/USDT", "crypto")

        price = self._run(client, scenario)

        self.assertEqual(price, 95000.0)
        self.assertEqual(backend.count(SYNC_PATH), 2)

    def test_overlapping_refetch_is_dropped(self):
        async def scenario():
            gate = asyncio.Event()
            backend = Backend(gate=gate)
            client = self._client(backend)
            try:
                first = asyncio.create_task(client.refetch())
                while backend.count(SYNC_PATH) == 0:
                    await asyncio.sleep(0)
                second = await client.refetch()
                gate.set()
                return await first, second, backend.count(SYNC_PATH)
            finally:
                await client.aclose()

        first, second, syncs = asyncio.run(scenario())

        self.assertEqual(first, SYNC_BODY)
        self.assertIsNone(second)
        self.assertEqual(syncs, 1)

    def test_failed_refetch_sets_error_and_keeps_cache(self):
        ok = Backend()
        client = self._client(ok)
        self._run(client, client.refetch)

        failing = Backend(sync_status=401)
        client = self._client(failing)
        result = self._run(client, client.refetch)

        self.assertIsNone(result)
        self.assertEqual(client.sync_status, SyncStatus.error)
        self.assertIn("401", client.state.last_error)
        self.assertEqual(failing.count(PRICES_PATH), 0)
        self.assertEqual(client.get_price("BTC/USDT", "crypto"), 95000.0)
        # lease released after the failure
        self.assertFalse(client.lease.in_flight)

    def test_network_error_sets_error_status(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = self._client(handler)
        self.assertIsNone(self._run(client, client.refetch))
        self.assertEqual(client.sync_status, SyncStatus.error)

    def test_status_listeners_see_transitions(self):
        client = self._client(Backend())
        seen = []
        remove = client.add_status_listener(seen.append)

        self._run(client, client.refetch)
        self.assertEqual(seen, [SyncStatus.syncing, SyncStatus.success])

        remove()
        self._run(client, client.refetch)
        self.assertEqual(len(seen), 2)

    def test_broken_listener_does_not_break_refetch(self):
        client = self._client(Backend())

        def boom(status):
            raise RuntimeError("listener bug")

        client.add_status_listener(boom)
        self.assertEqual(self._run(client, client.refetch), SYNC_BODY)
        self.assertEqual(client.sync_status, SyncStatus.success)

    def test_health_check_refetches_only_when_stalled(self):
        backend = Backend()
        client = self._client(backend, stall_after_sec=60)

        async def scenario():
            # never heard anything: stalled
            self.assertTrue(await client.check_health())
            self.clock.now += 30
            self.assertFalse(await client.check_health())
            client.apply_price_event({"prices": []})
            self.clock.now += 59
            self.assertFalse(await client.check_health())
            self.clock.now += 1
            self.assertTrue(await client.check_health())

        self._run(client, scenario)
        self.assertEqual(backend.count(SYNC_PATH), 2)

    def test_price_event_updates_cache(self):
        client = self._client(Backend())
        n = client.apply_price_event(
            {
                "timestamp": "2025-01-15T12:00:00Z",
                "prices": [
                    {"id": "a1", "symbol": "BTC/USDT", "asset_type": "crypto", "price": 96000.0},
                    {"id": "a2", "symbol": "USD/JPY", "asset_type": "forex", "price": 150.1},
                    {"id": "a3", "symbol": "ETH/USDT", "asset_type": "crypto", "price": -1},
                    "junk",
                ],
            }
        )
        self.assertEqual(n, 2)
        self.assertEqual(client.get_price("BTC/USDT", "crypto"), 96000.0)
        self.assertEqual(client.get_price("USD/JPY", "forex"), 150.1)
        self.assertFalse(client.is_stalled())

    def test_clear_cache_only_drops_own_entries(self):
        client = self._client(Backend())
        client.apply_price_event({"prices": [{"symbol": "BTC/USDT", "asset_type": "crypto", "price": 1.0}]})
        client.clear_cache()
        self.assertEqual(client.get_price("BTC/USDT", "crypto"), 94500)

    def test_stream_events_land_in_cache(self):
        payload = {"prices": [{"symbol": "SOL/USDT", "asset_type": "crypto", "price": 210.5}]}
        body = ": keepalive\n\n" + sse_pack("other", {"x": 1}) + sse_pack("prices", payload)

        def handler(request):
            self.assertEqual(request.url.path, STREAM_PATH)
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        client = self._client(handler)
        self._run(client, client._consume_stream)

        self.assertEqual(client.get_price("SOL/USDT", "crypto"), 210.5)

    def test_last_fetched_price_survives_ttl_and_failed_refetch(self):
        backend = Backend()
        client = self._client(backend, cache_ttl_sec=0.05)

        async def scenario():
            await client.refetch()
            await asyncio.sleep(0.1)
            backend.sync_status = 503
            return await client.refetch()

        self.assertIsNone(self._run(client, scenario))

        self.assertEqual(client.sync_status, SyncStatus.error)
        self.assertIsNone(client.cached_price("BTC/USDT", "crypto"))
        self.assertEqual(client.get_price("BTC/USDT", "crypto"), 95000.0)
        self.assertEqual(client.get_price("EUR/USD", "forex"), 1.087)

    def test_overlapping_start_runs_one_set_of_loops(self):
        backend = Backend()
        client = self._client(backend, reconnect_delay_sec=60, health_check_sec=60)

        async def scenario():
            await asyncio.gather(client.start(), client.start())
            tasks = list(client._tasks)
            while backend.count(PRICES_PATH) == 0 or backend.count(STREAM_PATH) == 0:
                await asyncio.sleep(0.01)
            return tasks

        tasks = self._run(client, scenario)

        self.assertEqual(len(tasks), 2)
        self.assertEqual(backend.count(SYNC_PATH), 1)
        self.assertEqual(backend.count(STREAM_PATH), 1)
        self.assertEqual(client.get_price("BTC/USDT", "crypto"), 95000.0)


class IterSseTests(unittest.TestCase):
    def _collect(self, lines):
        async def source():
            for line in lines:
                yield line

        async def scenario():
            return [item async for item in iter_sse(source())]

        return asyncio.run(scenario())

    def test_parses_events_and_skips_comments(self):
        frames = self._collect(
            [": keepalive", "", "event: prices", 'data: {"a":1}', "", "data: plain", "data: two", ""]
        )
        self.assertEqual(frames, [("prices", '{"a":1}'), ("message", "plain\ntwo")])
        self.assertEqual(json.loads(frames[0][1]), {"a": 1})

    def test_trailing_frame_without_blank_line(self):
        self.assertEqual(self._collect(["event: prices", "data: x"]), [("prices", "x")])


if __name__ == "__main__":
    unittest.main()
