import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import httpx


def safe_float(x: Any) -> Optional[float]:
    try:
        if x is None or isinstance(x, bool):
            return None
        v = float(x)
        if math.isnan(v):
            return None
        return v
    except Exception:
        return None


def valid_price(x: Any) -> Optional[float]:
    """Return x as a float when it is a usable market price (finite, > 0), else None."""
    v = safe_float(x)
    if v is None or not math.isfinite(v) or v <= 0:
        return None
    return v


def safe_json(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_z(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
