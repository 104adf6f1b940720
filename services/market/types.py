# services/market/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from models.tradeable_asset import ASSET_TYPE_CRYPTO, ASSET_TYPE_FOREX
from services.market.symbol_map import price_key
from utils.common_helpers import iso_z

MAX_REPORTED_UPDATES = 10


class UpdateStatus(str, Enum):
    updated = "updated"
    skipped = "skipped"    # no resolvable price, left at prior value
    failed = "failed"      # write error, left at prior value


class SyncStatus(str, Enum):
    idle = "idle"
    syncing = "syncing"
    success = "success"
    error = "error"


@dataclass
class ProviderQuotes:
    """One provider's contribution to a pass. ok=False means the source gave no data."""
    source: str
    asset_type: str
    prices: Dict[str, float] = field(default_factory=dict)
    ok: bool = True
    error: Optional[str] = None

    @classmethod
    def failed(cls, source: str, asset_type: str, error: str) -> "ProviderQuotes":
        return cls(source=source, asset_type=asset_type, prices={}, ok=False, error=error)

    @property
    def count(self) -> int:
        return len(self.prices)


@dataclass
class PriceSnapshot:
    crypto: ProviderQuotes
    forex: ProviderQuotes

    @property
    def crypto_count(self) -> int:
        return self.crypto.count

    @property
    def forex_count(self) -> int:
        return self.forex.count

    def resolve(self, symbol: str, asset_type: str) -> Optional[float]:
        key = price_key(symbol, asset_type)
        if asset_type == ASSET_TYPE_CRYPTO:
            return self.crypto.prices.get(key)
        if asset_type == ASSET_TYPE_FOREX:
            return self.forex.prices.get(key)
        return None


@dataclass
class UpdateOutcome:
    asset_id: str
    symbol: str
    asset_type: str
    status: UpdateStatus
    price: Optional[float] = None
    error: Optional[str] = None
    from_baseline: bool = False


@dataclass
class SyncResult:
    success: bool
    message: str
    timestamp: datetime
    crypto_count: int = 0
    forex_count: int = 0
    outcomes: List[UpdateOutcome] = field(default_factory=list)
    recompute_ok: Optional[bool] = None
    forex_fallback: bool = False
    skipped_in_flight: bool = False

    def _count(self, status: UpdateStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def updated_count(self) -> int:
        return self._count(UpdateStatus.updated)

    @property
    def skipped_count(self) -> int:
        return self._count(UpdateStatus.skipped)

    @property
    def failed_count(self) -> int:
        return self._count(UpdateStatus.failed)

    @property
    def updates(self) -> List[UpdateOutcome]:
        return [o for o in self.outcomes if o.status == UpdateStatus.updated]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "cryptoCount": self.crypto_count,
            "forexCount": self.forex_count,
            "updatedCount": self.updated_count,
            "skippedCount": self.skipped_count,
            "failedCount": self.failed_count,
            "recomputeOk": self.recompute_ok,
            "forexFallback": self.forex_fallback,
            "inFlight": self.skipped_in_flight,
            "updates": [
                {"symbol": o.symbol, "price": o.price}
                for o in self.updates[:MAX_REPORTED_UPDATES]
            ],
            "timestamp": iso_z(self.timestamp),
        }
