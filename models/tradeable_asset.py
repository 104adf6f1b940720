import uuid

from database import Base
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Float, DateTime, func, Index, UniqueConstraint, CheckConstraint

ASSET_TYPE_CRYPTO = "crypto"
ASSET_TYPE_FOREX = "forex"
ASSET_TYPES = {ASSET_TYPE_CRYPTO, ASSET_TYPE_FOREX}


def _new_asset_id() -> str:
    return str(uuid.uuid4())


class TradeableAsset(Base):
    __tablename__ = "tradeable_assets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_asset_id)

    # "BTC/USDT" for crypto, "EUR/USD" for forex
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)

    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    # crypto | forex, never changes after insert
    asset_type: Mapped[str] = mapped_column(String(16), nullable=False)

    # provider id shown in the admin screens; the sync uses the static map
    api_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # only the price sync writes this
    current_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("asset_type", "symbol", name="uq_tradeable_assets_type_symbol"),
        CheckConstraint("asset_type IN ('crypto', 'forex')", name="ck_tradeable_assets_asset_type"),
        CheckConstraint("current_price IS NULL OR current_price > 0", name="ck_tradeable_assets_price_positive"),
        Index("ix_tradeable_assets_symbol", "symbol"),
    )
