# services/market/price_events.py
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Dict, Optional, Set

logger = logging.getLogger(__name__)

PRICE_EVENT = "prices"
SUBSCRIBER_QUEUE_SIZE = 32


def sse_pack(event: str, data: Any) -> str:
    payload = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))
    lines = payload.splitlines() or [""]
    out = f"event: {event}\n" if event else ""
    for line in lines:
        out += f"data: {line}\n"
    out += "\n"
    return out


class PriceEventBus:
    """
    In-process fan-out of price change notifications.

    Each subscriber gets its own bounded queue. A subscriber that stops
    reading loses its oldest events rather than blocking the publisher.
    """

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, payload: Dict[str, Any]) -> int:
        delivered = 0
        for q in list(self._subscribers):
            if q.full():
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            q.put_nowait(payload)
            delivered += 1
        logger.debug("price_event_published subscribers=%d", delivered)
        return delivered

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        self._subscribers.discard(q)

    async def stream(self, keepalive_sec: Optional[float] = 15.0) -> AsyncGenerator[str, None]:
        """SSE frames for one subscriber; comment frames keep idle proxies open."""
        q = self.subscribe()
        try:
            while True:
                try:
                    payload = await asyncio.wait_for(q.get(), timeout=keepalive_sec)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield sse_pack(PRICE_EVENT, payload)
        finally:
            self.unsubscribe(q)
