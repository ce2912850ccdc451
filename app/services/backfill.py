"""每日补洞：用 month / week 时间框回填缺失的小时快照"""
import logging
from typing import Any, Iterable, Mapping

from app.services.normalizer import compute_ath_series, parse_all_timeframes
from app.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEFRAMES = ("month", "week")


async def run_gap_fill(
    store: SnapshotStore,
    payload: Mapping[str, Any],
    timeframes: Iterable[str] = DEFAULT_TIMEFRAMES,
) -> int:
    """
    按时间框回放 NAV 并逐点写入（已有小时自动跳过）

    ATH / 回撤只在该时间框内部计算，是历史近似值而非全局值；
    APR 未知记为空，资金费率 / OI 不可得不写入。
    必须按时间顺序串行写入，每个点依赖此前所有点的累计状态。

    Returns:
        新插入的行数
    """
    parsed = parse_all_timeframes(payload)
    filled = 0

    for tf in timeframes:
        tf_data = parsed.get(tf)
        if tf_data is None:
            logger.info("ℹ️ 时间框 %s 不可用，跳过补洞", tf)
            continue

        inserted = 0
        for point in compute_ath_series(tf_data.nav_history, tf_data.pnl_lookup()):
            row = await store.write(
                {
                    "collected_at": point.collected_at,
                    "nav": point.nav,
                    "pnl": point.pnl,
                    "apr": None,
                    "nav_ath": point.ath,
                    "drawdown_pct": point.drawdown,
                    "max_drawdown": point.max_drawdown,
                    "allow_deposits": True,
                }
            )
            if row is not None:
                inserted += 1

        logger.info("🩹 补洞 %s: 新增 %d 行", tf, inserted)
        filled += inserted

    return filled
