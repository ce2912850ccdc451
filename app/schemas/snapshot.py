"""Snapshot API 的 Pydantic 模式定义"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.services.normalizer import ensure_utc


class SnapshotItem(BaseModel):
    """单条快照（小时原始行或日聚合行）"""

    id: Optional[int] = None
    collected_at: datetime
    nav: float
    pnl: Optional[float] = None
    apr: Optional[float] = None
    vlm: Optional[float] = None
    allow_deposits: bool = True
    nav_ath: float
    drawdown_pct: float
    max_drawdown: float

    funding_rate: Optional[float] = None
    open_interest: Optional[float] = None
    volume_24h: Optional[float] = None

    composite_score: Optional[int] = None
    dd_score: Optional[int] = None
    tvl_score: Optional[int] = None
    momentum_score: Optional[int] = None
    vol_score: Optional[int] = None
    apr_score: Optional[int] = None
    funding_score: Optional[int] = None
    oi_score: Optional[int] = None

    @field_validator("collected_at")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        """SQLite 读回的时间不带时区"""
        return ensure_utc(v)

    class Config:
        populate_by_name = True
        from_attributes = True


class LiveReadout(BaseModel):
    """Hyperliquid 实时读数（allTime 口径）"""

    nav: float
    pnl: float
    apr: float
    vlm: float
    ath: float
    drawdown: float
    max_dd: float = Field(serialization_alias="maxDD")
    allow_deposits: bool = Field(serialization_alias="allowDeposits")
    max_distributable: float = Field(serialization_alias="maxDistributable")

    class Config:
        populate_by_name = True


class LatestResponse(BaseModel):
    snapshot: Optional[SnapshotItem] = None
    live: LiveReadout
    history_available: bool


class SnapshotsMeta(BaseModel):
    count: int
    range: str
    resolution: str
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None


class SnapshotListResponse(BaseModel):
    snapshots: List[SnapshotItem]
    meta: SnapshotsMeta


class CollectResponse(BaseModel):
    success: bool = True
    snapshot: SnapshotItem
    skipped: bool
    gap_filled: int = Field(0, serialization_alias="gapFilled")

    class Config:
        populate_by_name = True
