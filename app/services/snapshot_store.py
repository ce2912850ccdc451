"""
快照存储：按小时幂等写入 + 按区间 / 粒度读取

同一 UTC 小时只保留一行（collected_hour 唯一索引），重复写入直接忽略，
这是并发采集时唯一的互斥手段。
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from itertools import groupby
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import asc, desc, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationFailure
from app.models.snapshot import SCORE_FIELDS, Snapshot
from app.services.normalizer import ensure_utc
from app.services.scoring import round_half_up

logger = logging.getLogger(__name__)

RANGE_DURATIONS: Dict[str, Optional[timedelta]] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
    "all": None,
}
VALID_RANGES = tuple(RANGE_DURATIONS)
VALID_RESOLUTIONS = ("auto", "hourly", "daily")
HOURLY_RANGES = ("24h", "7d")

# 日聚合时取平均值的数值列
AVERAGED_FIELDS = (
    "nav",
    "pnl",
    "apr",
    "vlm",
    "drawdown_pct",
    "funding_rate",
    "open_interest",
    "volume_24h",
)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def truncate_to_hour(value: datetime) -> datetime:
    return ensure_utc(value).replace(minute=0, second=0, microsecond=0)


def resolve_cutoff(range_key: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """range -> 起始时间；all 返回 None"""
    if range_key not in RANGE_DURATIONS:
        raise ValidationFailure(f"Invalid range. Use: {', '.join(VALID_RANGES)}")
    duration = RANGE_DURATIONS[range_key]
    if duration is None:
        return None
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    return now - duration


def resolve_resolution(range_key: str, resolution: str = "auto") -> str:
    """auto：24h / 7d 用小时粒度，其余按天聚合"""
    if resolution not in VALID_RESOLUTIONS:
        raise ValidationFailure(f"Invalid resolution. Use: {', '.join(VALID_RESOLUTIONS)}")
    if resolution == "auto":
        return "hourly" if range_key in HOURLY_RANGES else "daily"
    return resolution


def _mean(values: Sequence[Optional[float]]) -> Optional[float]:
    present = [float(v) for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def aggregate_daily(rows: Sequence[Snapshot]) -> List[Dict[str, Any]]:
    """
    按 UTC 自然日聚合

    - 数值列取平均（忽略空值）
    - allow_deposits 取逻辑与
    - nav_ath 取当日最大值，max_drawdown 取当日最小值
    - 评分取平均后四舍五入为整数
    """
    result: List[Dict[str, Any]] = []
    for day, group in groupby(rows, key=lambda r: ensure_utc(r.collected_at).date()):
        day_rows = list(group)
        item: Dict[str, Any] = {
            "id": None,
            "collected_at": datetime(day.year, day.month, day.day, tzinfo=timezone.utc),
            "allow_deposits": all(r.allow_deposits is not False for r in day_rows),
            "nav_ath": max(float(r.nav_ath) for r in day_rows),
            "max_drawdown": min(float(r.max_drawdown) for r in day_rows),
        }
        for field in AVERAGED_FIELDS:
            item[field] = _mean([getattr(r, field) for r in day_rows])
        for field in SCORE_FIELDS:
            avg = _mean([getattr(r, field) for r in day_rows])
            item[field] = round_half_up(avg) if avg is not None else None
        result.append(item)
    return result


class SnapshotStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"Unsupported database dialect: {dialect}") from None

    async def write(self, values: Mapping[str, Any]) -> Optional[Snapshot]:
        """
        写入一行快照；该小时已有数据时忽略

        Returns:
            新插入的 Snapshot；重复小时返回 None（视为 skipped，而非错误）
        """
        row = dict(values)
        collected_at = ensure_utc(row.get("collected_at") or datetime.now(timezone.utc))
        row["collected_at"] = collected_at
        row["collected_hour"] = truncate_to_hour(collected_at)

        stmt = (
            self._insert()(Snapshot)
            .values(**row)
            .on_conflict_do_nothing(index_elements=["collected_hour"])
            .returning(Snapshot.id)
        )
        new_id = (await self.session.execute(stmt)).scalar_one_or_none()
        if new_id is None:
            logger.debug("⏭️ %s 已有快照，跳过", row["collected_hour"].isoformat())
            return None
        return await self.session.get(Snapshot, new_id)

    async def read_latest(self) -> Optional[Snapshot]:
        stmt = select(Snapshot).order_by(desc(Snapshot.collected_at)).limit(1)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def read_since(self, cutoff: Optional[datetime] = None) -> List[Snapshot]:
        """cutoff 之后（含）的全部原始行，按时间升序"""
        stmt = select(Snapshot).order_by(asc(Snapshot.collected_at))
        if cutoff is not None:
            stmt = stmt.where(Snapshot.collected_at >= ensure_utc(cutoff))
        return list((await self.session.execute(stmt)).scalars().all())

    async def read_all(self) -> List[Snapshot]:
        return await self.read_since(None)

    async def read_range(
        self,
        range_key: str = "all",
        resolution: str = "auto",
        now: Optional[datetime] = None,
    ) -> List[Any]:
        """
        按时间范围与粒度读取

        Returns:
            hourly: Snapshot ORM 对象列表；daily: 聚合后的字典列表
        """
        cutoff = resolve_cutoff(range_key, now)
        effective = resolve_resolution(range_key, resolution)
        rows = await self.read_since(cutoff)
        if effective == "daily":
            return aggregate_daily(rows)
        return rows

    async def stats(self) -> Dict[str, Any]:
        """总行数 / 已评分行数 / 时间范围"""
        total, first, last = (
            await self.session.execute(
                select(
                    func.count(Snapshot.id),
                    func.min(Snapshot.collected_at),
                    func.max(Snapshot.collected_at),
                )
            )
        ).one()
        scored = (
            await self.session.execute(
                select(func.count(Snapshot.id)).where(Snapshot.composite_score.is_not(None))
            )
        ).scalar_one()
        return {
            "total": total or 0,
            "scored": scored or 0,
            "first": ensure_utc(first) if first else None,
            "last": ensure_utc(last) if last else None,
        }
