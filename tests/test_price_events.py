import asyncio
import json
import unittest

from services.market.price_events import PRICE_EVENT, PriceEventBus, sse_pack


class SsePackTests(unittest.TestCase):
    def test_packs_json_payload(self):
        frame = sse_pack(PRICE_EVENT, {"prices": []})
        self.assertEqual(frame, 'event: prices\ndata: {"prices":[]}\n\n')

    def test_multiline_string_payload(self):
        self.assertEqual(sse_pack("", "a\nb"), "data: a\ndata: b\n\n")


class PriceEventBusTests(unittest.TestCase):
    def test_publish_reaches_every_subscriber(self):
        async def scenario():
            bus = PriceEventBus()
            q1, q2 = bus.subscribe(), bus.subscribe()
            delivered = bus.publish({"n": 1})
            return delivered, q1.get_nowait(), q2.get_nowait()

        delivered, a, b = asyncio.run(scenario())
        self.assertEqual(delivered, 2)
        self.assertEqual(a, {"n": 1})
        self.assertEqual(b, {"n": 1})

    def test_slow_subscriber_drops_oldest(self):
        async def scenario():
            bus = PriceEventBus(queue_size=2)
            q = bus.subscribe()
            for n in range(3):
                bus.publish({"n": n})
            return [q.get_nowait()["n"] for _ in range(q.qsize())]

        self.assertEqual(asyncio.run(scenario()), [1, 2])

    def test_stream_yields_frames_and_unsubscribes(self):
        async def scenario():
            bus = PriceEventBus()
            gen = bus.stream(keepalive_sec=5)

            async def first_frame():
                return await gen.__anext__()

            pending = asyncio.create_task(first_frame())
            while bus.subscriber_count == 0:
                await asyncio.sleep(0)
            bus.publish({"prices": [{"symbol": "BTC/USDT", "price": 1.0}]})
            frame = await pending
            await gen.aclose()
            return frame, bus.subscriber_count

        frame, remaining = asyncio.run(scenario())
        self.assertTrue(frame.startswith("event: prices\n"))
        data = frame.split("data: ", 1)[1].strip()
        self.assertEqual(json.loads(data)["prices"][0]["symbol"], "BTC/USDT")
        self.assertEqual(remaining, 0)

    def test_stream_sends_keepalive_when_idle(self):
        async def scenario():
            bus = PriceEventBus()
            gen = bus.stream(keepalive_sec=0.01)
            frame = await gen.__anext__()
            await gen.aclose()
            return frame

        self.assertEqual(asyncio.run(scenario()), ": keepalive\n\n")


if __name__ == "__main__":
    unittest.main()
