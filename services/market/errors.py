# services/market/errors.py
from __future__ import annotations

from typing import Optional


class PriceSyncError(Exception):
    """Base class for price sync failures."""


class SyncAuthorizationError(PriceSyncError):
    """Missing or invalid credential on the sync trigger. Nothing was fetched or written."""


class UpstreamFetchError(PriceSyncError):
    """A price source was unreachable or answered with a non-success status."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status_code = status_code


class AssetStoreError(PriceSyncError):
    """Reading the asset list failed; the pass has nothing to update."""


class PersistenceError(PriceSyncError):
    """A single asset's price update could not be written."""

    def __init__(self, asset_id: str, message: str):
        super().__init__(f"asset {asset_id}: {message}")
        self.asset_id = asset_id


class ProfitRecomputeError(PriceSyncError):
    """The stored profit recomputation failed after prices were written."""


class PriceClientError(PriceSyncError):
    """The price service answered a client call with an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
