# services/market/asset_store.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.tradeable_asset import TradeableAsset
from services.market.errors import AssetStoreError, PersistenceError, ProfitRecomputeError

logger = logging.getLogger(__name__)

_SQL_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


@dataclass(frozen=True)
class AssetRow:
    id: str
    symbol: str
    asset_type: str
    current_price: Optional[float] = None


class AssetStore:
    """
    The slice of storage the price sync touches: read every tradeable asset,
    write one asset's price, and run the stored profit recomputation.

    Every price write is its own transaction; a failed row never rolls back
    rows written before it.
    """

    def __init__(self, db: Session, profit_recompute_function: str = "sync_trading_profits"):
        if not _SQL_IDENT.match(profit_recompute_function or ""):
            raise ValueError(f"Invalid recompute function name: {profit_recompute_function!r}")
        self.db = db
        self.profit_recompute_function = profit_recompute_function

    def list_assets(self) -> List[AssetRow]:
        stmt = select(
            TradeableAsset.id,
            TradeableAsset.symbol,
            TradeableAsset.asset_type,
            TradeableAsset.current_price,
        ).order_by(TradeableAsset.symbol)
        try:
            rows = self.db.execute(stmt).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise AssetStoreError(f"Failed to fetch assets: {type(e).__name__}") from e
        return [
            AssetRow(id=r.id, symbol=r.symbol, asset_type=r.asset_type, current_price=r.current_price)
            for r in rows
        ]

    def list_price_table(self) -> List[TradeableAsset]:
        """Full rows for the read endpoint."""
        try:
            return list(
                self.db.execute(select(TradeableAsset).order_by(TradeableAsset.symbol)).scalars().all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise AssetStoreError(f"Failed to fetch assets: {type(e).__name__}") from e

    def update_price(self, asset_id: str, price: float, at: datetime) -> None:
        try:
            res = self.db.execute(
                update(TradeableAsset)
                .where(TradeableAsset.id == asset_id)
                .values(current_price=price, updated_at=at)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount == 0:
                self.db.rollback()
                raise PersistenceError(asset_id, "row not found")
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(asset_id, type(e).__name__) from e

    def recompute_profits(self) -> None:
        try:
            self.db.execute(text(f"SELECT {self.profit_recompute_function}()"))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise ProfitRecomputeError(
                f"{self.profit_recompute_function} failed: {type(e).__name__}"
            ) from e
