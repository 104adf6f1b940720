"""add tradeable_assets table

Revision ID: f2a6c1d9e3b7
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "f2a6c1d9e3b7"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tradeable_assets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("asset_type", sa.String(length=16), nullable=False),
        sa.Column("api_id", sa.String(length=64), nullable=True),
        sa.Column("current_price", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.UniqueConstraint("asset_type", "symbol", name="uq_tradeable_assets_type_symbol"),
        sa.CheckConstraint("asset_type IN ('crypto', 'forex')", name="ck_tradeable_assets_asset_type"),
        sa.CheckConstraint("current_price IS NULL OR current_price > 0", name="ck_tradeable_assets_price_positive"),
    )
    op.create_index("ix_tradeable_assets_symbol", "tradeable_assets", ["symbol"], unique=False)

    # Dashboard users read prices directly; only the service role writes.
    op.execute("ALTER TABLE tradeable_assets ENABLE ROW LEVEL SECURITY")
    op.execute("ALTER TABLE tradeable_assets FORCE ROW LEVEL SECURITY")
    op.execute(
        'CREATE POLICY "read_tradeable_assets" ON tradeable_assets '
        "FOR SELECT TO authenticated USING (true)"
    )


def downgrade() -> None:
    op.execute('DROP POLICY IF EXISTS "read_tradeable_assets" ON tradeable_assets')
    op.execute("ALTER TABLE tradeable_assets NO FORCE ROW LEVEL SECURITY")
    op.execute("ALTER TABLE tradeable_assets DISABLE ROW LEVEL SECURITY")
    op.drop_index("ix_tradeable_assets_symbol", table_name="tradeable_assets")
    op.drop_table("tradeable_assets")
