"""
采集主流程（由 POST /collect 或外部定时任务触发）

    Hyperliquid vaultDetails + 市场上下文（并发）
        → allTime 清洗（NAV / ATH / 回撤）
        → 读取近 30 天快照 → 趋势信号 → 七项评分 + 综合分
        → 按小时幂等写入
        → UTC 0 点时补洞
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings as default_settings
from app.services.backfill import run_gap_fill
from app.services.hyperliquid import HyperliquidClient, MarketContext
from app.services.normalizer import VaultAnalytics, ensure_utc, parse_vault_data
from app.services.scoring import SignalScores, compute_signal_scores, compute_trailing_signals
from app.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class CollectResult:
    snapshot: Dict[str, Any]
    skipped: bool
    gap_filled: int = 0
    success: bool = True


async def fetch_market_context_safe(client: HyperliquidClient) -> MarketContext:
    """市场上下文只是补充数据，失败时退化为全 0 默认值"""
    try:
        return await client.fetch_market_context()
    except Exception as e:
        logger.warning("⚠️ 市场上下文获取失败，使用默认值: %s", e)
        return MarketContext.neutral()


def build_snapshot_row(
    analytics: VaultAnalytics,
    scores: SignalScores,
    market: MarketContext,
    collected_at: datetime,
) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "collected_at": collected_at,
        "nav": analytics.current_nav,
        "pnl": analytics.current_pnl,
        "apr": analytics.apr,
        "vlm": analytics.vlm,
        "allow_deposits": analytics.allow_deposits,
        "nav_ath": analytics.ath,
        "drawdown_pct": analytics.current_drawdown,
        "max_drawdown": analytics.max_drawdown,
        "funding_rate": market.funding_rate,
        "open_interest": market.open_interest,
        "volume_24h": market.volume_24h,
    }
    row.update(scores.as_columns())
    return row


async def run_collection(
    session: AsyncSession,
    client: HyperliquidClient,
    config: Settings = default_settings,
    now: Optional[datetime] = None,
) -> CollectResult:
    """
    执行一次采集

    vaultDetails 失败直接抛出（UpstreamFailure）；补洞失败只记日志。
    """
    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

    raw, market = await asyncio.gather(
        client.fetch_vault_details(),
        fetch_market_context_safe(client),
    )
    analytics = parse_vault_data(raw)

    store = SnapshotStore(session)
    trailing_rows = await store.read_range(config.TRAILING_WINDOW, "hourly", now=now)
    trailing = compute_trailing_signals(trailing_rows, analytics.current_nav, now=now)
    scores = compute_signal_scores(
        analytics.current_drawdown,
        trailing,
        apr=analytics.apr,
        funding_rate=market.funding_rate,
    )

    row = build_snapshot_row(analytics, scores, market, now)
    inserted = await store.write(row)
    await session.commit()

    if inserted is None:
        logger.info("⏭️ %s 已有快照，本次跳过", now.strftime("%Y-%m-%d %H:00"))
    else:
        logger.info(
            "💾 快照已写入 id=%s nav=%.2f composite=%s",
            inserted.id, analytics.current_nav, scores.composite,
        )
        row["id"] = inserted.id

    gap_filled = 0
    if now.hour == config.BACKFILL_UTC_HOUR:
        try:
            gap_filled = await run_gap_fill(store, raw, config.BACKFILL_TIMEFRAMES)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning("⚠️ 补洞失败: %s", e)
            gap_filled = 0

    return CollectResult(
        snapshot=row,
        skipped=inserted is None,
        gap_filled=gap_filled,
    )
