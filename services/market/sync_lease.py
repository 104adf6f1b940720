# services/market/sync_lease.py
from __future__ import annotations

import itertools
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SyncLease:
    """
    In-flight guard for one owner (a synchronizer or a client).

    Best-effort de-duplication, not a lock: a second acquire while a live
    lease is held returns None. A lease older than lease_seconds is treated
    as abandoned (crashed or hung pass) and can be taken over; the stale
    holder's later release() is then ignored because its token no longer
    matches.
    """

    def __init__(self, lease_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.lease_seconds = float(lease_seconds)
        self._clock = clock
        self._tokens = itertools.count(1)
        self._token: Optional[int] = None
        self._acquired_at: Optional[float] = None

    @property
    def in_flight(self) -> bool:
        return self._token is not None and not self._expired()

    @property
    def acquired_at(self) -> Optional[float]:
        return self._acquired_at

    def _expired(self) -> bool:
        if self._acquired_at is None:
            return True
        return (self._clock() - self._acquired_at) >= self.lease_seconds

    def try_acquire(self) -> Optional[int]:
        if self._token is not None:
            if not self._expired():
                return None
            logger.warning(
                "sync_lease_reclaimed held_for=%.1fs lease=%.1fs",
                self._clock() - (self._acquired_at or 0.0),
                self.lease_seconds,
            )
        self._token = next(self._tokens)
        self._acquired_at = self._clock()
        return self._token

    def release(self, token: int) -> bool:
        if token != self._token:
            return False
        self._token = None
        self._acquired_at = None
        return True
