# routers/market_price_routes.py
import logging
import os
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from config.price_sync_config import load_price_sync_settings
from database import get_db
from middleware.rate_limit import limiter
from schemas.market_prices import AssetPriceOut, SyncResponse
from services.market.asset_store import AssetStore
from services.market.errors import AssetStoreError, SyncAuthorizationError
from services.market.price_events import PriceEventBus
from services.market.price_sync_service import PriceSynchronizer
from services.market.sync_auth import SyncCaller, authorize_sync, bearer_token
from services.market.sync_lease import SyncLease

logger = logging.getLogger(__name__)

router = APIRouter()

PRICE_SYNC_RATE_LIMIT = os.getenv("PRICE_SYNC_RATE_LIMIT", "30/minute")

# Process-wide: every request's synchronizer shares one in-flight lease and
# one notification bus.
_sync_lease: Optional[SyncLease] = None
_price_events = PriceEventBus()


def get_sync_lease() -> SyncLease:
    global _sync_lease
    if _sync_lease is None:
        _sync_lease = SyncLease(load_price_sync_settings().lease_sec)
    return _sync_lease


def get_price_event_bus() -> PriceEventBus:
    return _price_events


def get_price_synchronizer(
    db: Session = Depends(get_db),
    lease: SyncLease = Depends(get_sync_lease),
    events: PriceEventBus = Depends(get_price_event_bus),
) -> PriceSynchronizer:
    settings = load_price_sync_settings()
    store = AssetStore(db, profit_recompute_function=settings.profit_recompute_function)
    return PriceSynchronizer(store, settings=settings, lease=lease, events=events)


def _unauthorized(e: SyncAuthorizationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=str(e) or "Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_price_reader(request: Request) -> SyncCaller:
    try:
        return authorize_sync(bearer_token(request))
    except SyncAuthorizationError as e:
        raise _unauthorized(e)


@router.post("/sync", response_model=SyncResponse)
@limiter.limit(PRICE_SYNC_RATE_LIMIT)
async def sync_market_prices(
    request: Request,
    synchronizer: PriceSynchronizer = Depends(get_price_synchronizer),
):
    """
    Pull fresh crypto/forex prices into tradeable_assets and recompute
    trading profits. Accepts a user access token or PRICE_SYNC_SECRET, so
    it is safe to call from the dashboard or from a cron job.
    """
    try:
        result = await synchronizer.sync(bearer_token(request))
    except SyncAuthorizationError as e:
        logger.warning("price_sync_unauthorized")
        raise _unauthorized(e)
    except AssetStoreError as e:
        logger.error("price_sync_failed err=%s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch assets")

    return result.to_dict()


@router.get("", response_model=List[AssetPriceOut])
def list_market_prices(
    _caller: SyncCaller = Depends(require_price_reader),
    db: Session = Depends(get_db),
):
    settings = load_price_sync_settings()
    store = AssetStore(db, profit_recompute_function=settings.profit_recompute_function)
    try:
        return store.list_price_table()
    except AssetStoreError as e:
        logger.error("price_table_read_failed err=%s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch assets")


@router.get("/stream")
async def stream_market_prices(
    _caller: SyncCaller = Depends(require_price_reader),
    events: PriceEventBus = Depends(get_price_event_bus),
):
    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(events.stream(), media_type="text/event-stream", headers=headers)
