# services/cache/cache_backend.py
from __future__ import annotations

import json
import math
import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple, Union

import redis as redis_sync

logger = logging.getLogger(__name__)

# -------------------------
# Types
# -------------------------
JsonValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]

# -------------------------
# Config
# -------------------------
DEFAULT_TTL_SEC = float(os.getenv("CACHE_DEFAULT_TTL_SEC", "30"))
LOCAL_CACHE_TTL_SEC = float(os.getenv("CACHE_LOCAL_TTL_SEC", "30"))

# Prefix isolates app + env, e.g. "pricesync:prod:"
REDIS_PREFIX = os.getenv("REDIS_PREFIX", "pricesync:")

UPSTASH_REDIS_URL = os.getenv("UPSTASH_REDIS_URL")

# store: key -> (expires_at_epoch, payload)
_LOCAL: Dict[str, Tuple[float, JsonValue]] = {}

_redis_client = None


def get_redis_client():
    """Lazy init redis client (sync). Returns None if not configured."""
    global _redis_client
    if _redis_client is not None or not UPSTASH_REDIS_URL:
        return _redis_client

    try:
        _redis_client = redis_sync.from_url(
            UPSTASH_REDIS_URL,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
    except (redis_sync.RedisError, ValueError) as e:
        logger.warning("cache_redis_init_failed err=%s", type(e).__name__)
        _redis_client = None

    return _redis_client


def _norm_key(key: str) -> str:
    return (key or "").strip().upper()


def _redis_key(key: str) -> str:
    return f"{REDIS_PREFIX}{_norm_key(key)}"


def _ttl(ttl_seconds: Optional[float]) -> float:
    return float(ttl_seconds) if ttl_seconds and ttl_seconds > 0 else DEFAULT_TTL_SEC


def _local_get(k: str) -> Optional[JsonValue]:
    hit = _LOCAL.get(k)
    if not hit:
        return None
    expires_at, payload = hit
    if time.time() <= expires_at:
        return payload
    _LOCAL.pop(k, None)
    return None


def _local_set(k: str, payload: JsonValue, ttl_seconds: float) -> None:
    _LOCAL[k] = (time.time() + ttl_seconds, payload)


def clear_local_cache(prefix: str = "") -> None:
    p = _norm_key(prefix)
    for k in [k for k in _LOCAL if k.startswith(p)]:
        _LOCAL.pop(k, None)


def cache_get(key: str) -> Optional[JsonValue]:
    """
    Read-through cache:
      1) local memory (short TTL)
      2) redis (shared across instances)
    """
    k = _norm_key(key)
    if not k:
        return None

    hit = _local_get(k)
    if hit is not None:
        return hit

    r = get_redis_client()
    if not r:
        return None

    try:
        raw = r.get(_redis_key(k))
    except redis_sync.RedisError as e:
        logger.warning("cache_redis_get_failed err=%s", type(e).__name__)
        return None
    if not isinstance(raw, (str, bytes, bytearray)):
        return None

    try:
        payload: JsonValue = json.loads(raw)
    except ValueError:
        return None
    _local_set(k, payload, LOCAL_CACHE_TTL_SEC)
    return payload


def cache_set(key: str, payload: JsonValue, ttl_seconds: Optional[float] = None) -> None:
    """
    Write-through cache:
      - local TTL: ttl_seconds
      - redis TTL: ttl_seconds (rounded up to whole seconds)
    """
    k = _norm_key(key)
    if not k:
        return
    cache_set_many({k: payload}, ttl_seconds)


def cache_set_many(kv: Dict[str, JsonValue], ttl_seconds: Optional[float] = None) -> None:
    if not kv:
        return

    ttl = _ttl(ttl_seconds)
    for key, payload in kv.items():
        k = _norm_key(key)
        if k:
            _local_set(k, payload, ttl)

    r = get_redis_client()
    if not r:
        return

    try:
        pipe = r.pipeline()
        for key, payload in kv.items():
            k = _norm_key(key)
            if not k:
                continue
            pipe.setex(_redis_key(k), max(1, math.ceil(ttl)), json.dumps(payload, separators=(",", ":")))
        pipe.execute()
    except redis_sync.RedisError as e:
        # Local cache still serves this instance.
        logger.warning("cache_redis_set_failed err=%s", type(e).__name__)
