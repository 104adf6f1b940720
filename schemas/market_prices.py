from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PriceUpdate(BaseModel):
    symbol: str
    price: float


class SyncResponse(BaseModel):
    success: bool
    message: str
    cryptoCount: int = 0
    forexCount: int = 0
    updatedCount: int = 0
    skippedCount: int = 0
    failedCount: int = 0
    recomputeOk: Optional[bool] = None
    forexFallback: bool = False
    inFlight: bool = False
    updates: List[PriceUpdate] = Field(default_factory=list)
    timestamp: str


class AssetPriceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    symbol: str
    name: str = ""
    asset_type: str
    current_price: Optional[float] = None
    updated_at: Optional[datetime] = None
