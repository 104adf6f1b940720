# middleware/rate_limit.py
"""
Rate limiting configuration using slowapi.

The price sync fans out to CoinGecko and the FX rate API, both of which
throttle hard, so the sync trigger carries its own limit on top of the
default:

    from middleware.rate_limit import limiter

    @router.post("/sync")
    @limiter.limit("30/minute")
    async def sync_market_prices(request: Request, ...):
        ...
"""
import logging
import os

from fastapi import Request
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    """
    Bucket signed-in users by the token's sub claim so dashboards behind one
    NAT don't share a bucket. Scheduler calls carry the sync secret, which
    is not a JWT, and fall back to client IP like anonymous callers.
    """
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth.split(" ", 1)[1].strip()
        try:
            # Unverified: only used to pick a bucket; the route authorizes.
            sub = jwt.get_unverified_claims(token).get("sub")
            if sub:
                return f"user:{sub}"
        except JWTError:
            pass

    return get_remote_address(request)


DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "120/minute")

limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
    strategy="fixed-window",
)
