"""create snapshots table

Revision ID: 0001
Revises:
Create Date: 2026-10-19

One row per UTC hour; collected_hour carries the unique index used for
insert-or-skip dedup.
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "snapshots",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "collected_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("collected_hour", sa.DateTime(timezone=True), nullable=False),
        sa.Column("nav", sa.Float(), nullable=False),
        sa.Column("pnl", sa.Float(), nullable=True),
        sa.Column("apr", sa.Float(), nullable=True),
        sa.Column("vlm", sa.Float(), nullable=True),
        sa.Column("allow_deposits", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("nav_ath", sa.Float(), nullable=False),
        sa.Column("drawdown_pct", sa.Float(), nullable=False),
        sa.Column("max_drawdown", sa.Float(), nullable=False),
        sa.Column("funding_rate", sa.Float(), nullable=True),
        sa.Column("open_interest", sa.Float(), nullable=True),
        sa.Column("volume_24h", sa.Float(), nullable=True),
        sa.Column("composite_score", sa.Integer(), nullable=True),
        sa.Column("dd_score", sa.Integer(), nullable=True),
        sa.Column("tvl_score", sa.Integer(), nullable=True),
        sa.Column("momentum_score", sa.Integer(), nullable=True),
        sa.Column("vol_score", sa.Integer(), nullable=True),
        sa.Column("apr_score", sa.Integer(), nullable=True),
        sa.Column("funding_score", sa.Integer(), nullable=True),
        sa.Column("oi_score", sa.Integer(), nullable=True),
    )
    op.create_index(
        "ix_snapshots_collected_hour", "snapshots", ["collected_hour"], unique=True
    )
    op.create_index(
        "ix_snapshots_collected_at_desc", "snapshots", [sa.text("collected_at DESC")]
    )


def downgrade() -> None:
    op.drop_index("ix_snapshots_collected_at_desc", table_name="snapshots")
    op.drop_index("ix_snapshots_collected_hour", table_name="snapshots")
    op.drop_table("snapshots")
