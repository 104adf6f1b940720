# services/market/sync_auth.py
"""
Who may trigger a price sync.

Two kinds of caller are accepted:
  - the scheduler, presenting PRICE_SYNC_SECRET as its bearer token
  - a signed-in dashboard user, presenting a Supabase access token (HS256)

Anything else is a SyncAuthorizationError. Token values are never logged.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt

from config.price_sync_config import PriceSyncSettings, load_price_sync_settings
from services.market.errors import SyncAuthorizationError

logger = logging.getLogger(__name__)

CALLER_SCHEDULER = "scheduler"
CALLER_USER = "user"


@dataclass(frozen=True)
class SyncCaller:
    kind: str
    subject: Optional[str] = None


def bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    token = auth.split(" ", 1)[1].strip()
    return token or None


def _is_sync_secret(token: str, settings: PriceSyncSettings) -> bool:
    if not settings.sync_secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), settings.sync_secret.encode("utf-8"))


def _decode_user_token(token: str, settings: PriceSyncSettings) -> dict:
    if not settings.jwt_secret:
        logger.error("sync_auth_misconfigured reason=jwt_secret_missing")
        raise SyncAuthorizationError("User tokens cannot be verified")

    options = {"verify_iss": settings.jwt_issuer is not None}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
    except JWTError as e:
        logger.warning("sync_auth_invalid_token err=%s", type(e).__name__)
        raise SyncAuthorizationError("Invalid or expired token")


def authorize_sync(
    token: Optional[str],
    settings: Optional[PriceSyncSettings] = None,
) -> SyncCaller:
    settings = settings or load_price_sync_settings()

    if not token:
        raise SyncAuthorizationError("Missing bearer token")

    if _is_sync_secret(token, settings):
        logger.info("sync_auth_ok caller=%s", CALLER_SCHEDULER)
        return SyncCaller(kind=CALLER_SCHEDULER)

    payload = _decode_user_token(token, settings)
    sub = payload.get("sub")
    if not sub:
        raise SyncAuthorizationError("Invalid auth token")

    logger.info("sync_auth_ok caller=%s", CALLER_USER)
    return SyncCaller(kind=CALLER_USER, subject=str(sub))
