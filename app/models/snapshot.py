"""Raw Data Layer: Snapshot（每个 UTC 小时一行）"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Float, Index, Integer, func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

SCORE_FIELDS = (
    "composite_score",
    "dd_score",
    "tvl_score",
    "momentum_score",
    "vol_score",
    "apr_score",
    "funding_score",
    "oi_score",
)


class Snapshot(Base):
    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    collected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    # collected_at 截断到整点（UTC），唯一约束即去重锁
    collected_hour: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        unique=True,
        index=True,
    )

    nav: Mapped[float] = mapped_column(Float, nullable=False)
    pnl: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    apr: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vlm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    allow_deposits: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=true(), default=True)

    nav_ath: Mapped[float] = mapped_column(Float, nullable=False)
    drawdown_pct: Mapped[float] = mapped_column(Float, nullable=False)
    max_drawdown: Mapped[float] = mapped_column(Float, nullable=False)

    # 市场上下文
    funding_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    open_interest: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    volume_24h: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # 信号评分 [0, 100]
    composite_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    dd_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tvl_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    momentum_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    vol_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    apr_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    funding_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    oi_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


Index("ix_snapshots_collected_at_desc", Snapshot.__table__.c.collected_at.desc())
