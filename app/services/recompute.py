"""
全量重算（维护任务，非常驻流程）

1. 按时间顺序重放全部快照，重写 nav_ath / drawdown_pct / max_drawdown
2. 为缺少评分的行（或 rescore_all 时的全部行）补算七项评分与综合分

两步都只改动数值发生变化 / 尚未评分的行，并按批提交；
中途失败后重新执行即可从断点继续，结果与一次跑完相同。
"""
import logging
from bisect import bisect_left
from dataclasses import dataclass, replace
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.snapshot import Snapshot
from app.services.normalizer import ensure_utc
from app.services.scoring import NEUTRAL_SCORE, compute_signal_scores, compute_trailing_signals
from app.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

TRAILING_WINDOW = timedelta(days=30)


@dataclass
class RecomputeReport:
    rows: int = 0
    ath_updated: int = 0
    scored: int = 0
    unscored: int = 0


def _has_market_context(row: Snapshot) -> bool:
    return row.funding_rate is not None or row.open_interest is not None


async def recompute_history(
    session: AsyncSession,
    rescore_all: bool = False,
    batch_size: int = 500,
) -> RecomputeReport:
    store = SnapshotStore(session)
    rows = await store.read_all()
    report = RecomputeReport(rows=len(rows))

    # -------- 1. 全局 ATH / 回撤 --------
    ath = 0.0
    max_dd = 0.0
    pending = 0
    for row in rows:
        nav = float(row.nav)
        if nav > ath:
            ath = nav
        dd = (nav - ath) / ath if ath > 0 else 0.0
        if dd < max_dd:
            max_dd = dd

        if (row.nav_ath, row.drawdown_pct, row.max_drawdown) != (ath, dd, max_dd):
            row.nav_ath = ath
            row.drawdown_pct = dd
            row.max_drawdown = max_dd
            report.ath_updated += 1
            pending += 1
            if pending >= batch_size:
                await session.commit()
                pending = 0
    await session.commit()
    logger.info("📐 ATH / 回撤已更新 %d/%d 行", report.ath_updated, report.rows)

    # -------- 2. 评分 --------
    times = [ensure_utc(r.collected_at) for r in rows]
    pending = 0
    for i, row in enumerate(rows):
        if row.composite_score is not None and not rescore_all:
            continue

        # 只取严格早于该行的快照（不含自身），当前 NAV 单独传入，与实时采集口径一致
        history = rows[bisect_left(times, times[i] - TRAILING_WINDOW):i]
        if len(history) < 2:
            report.unscored += 1
            continue

        trailing = compute_trailing_signals(history, float(row.nav), now=times[i])
        if not _has_market_context(row):
            # 历史行没有真实的市场上下文，资金费率 / OI 取中性分
            trailing = replace(trailing, oi_score=NEUTRAL_SCORE)

        scores = compute_signal_scores(
            row.drawdown_pct,
            trailing,
            apr=row.apr,
            funding_rate=row.funding_rate,
        )
        for column, value in scores.as_columns().items():
            setattr(row, column, value)

        report.scored += 1
        pending += 1
        if pending >= batch_size:
            await session.commit()
            pending = 0
    await session.commit()
    logger.info("🧮 评分已补算 %d 行（数据不足 %d 行）", report.scored, report.unscored)

    return report
