"""
初始化 & 历史灌库脚本
建表 → 拉取 Hyperliquid 全部时间框 → 逐点入库 → 全量重算 ATH / 评分

Usage:
    python -m scripts.setup_db [--reset] [--skip-seed] [--rescore-all]

Options:
    --reset        清空 snapshots 后重新灌库
    --skip-seed    只建表 + 重算，不拉取历史
    --rescore-all  重算所有行的评分（默认只补算缺失评分的行）
"""

import asyncio
import sys
from pathlib import Path

# 确保项目根目录在 Python path 中
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import delete

from app.core.config import settings
from app.db.base import Base
from app.db.session import async_session_factory, engine
from app.models import Snapshot
from app.services.hyperliquid import HyperliquidClient
from app.services.normalizer import compute_ath_series, parse_all_timeframes
from app.services.recompute import recompute_history
from app.services.snapshot_store import SnapshotStore

# 只使用账户价值口径的时间框；perpAllTime / DeFiLlama TVL 口径不同，混用会产生锯齿
SEED_TIMEFRAMES = ("allTime", "month", "week", "day")


async def create_tables():
    """建表（含小时唯一索引与 collected_at 倒序索引）"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("✅ 表和索引已就绪")


async def seed_points(store: SnapshotStore, tf_data, label: str) -> int:
    inserted = 0
    skipped = 0
    for point in compute_ath_series(tf_data.nav_history, tf_data.pnl_lookup()):
        row = await store.write({
            "collected_at": point.collected_at,
            "nav": point.nav,
            "pnl": point.pnl,
            "apr": None,  # 历史 APR 未知
            "vlm": None,
            "allow_deposits": True,
            "nav_ath": point.ath,
            "drawdown_pct": point.drawdown,
            "max_drawdown": point.max_drawdown,
        })
        if row is not None:
            inserted += 1
        else:
            skipped += 1

    print(f"   {label}: 新增 {inserted} 行, 跳过 {skipped} 行 (同小时已存在)")
    return inserted


async def setup(reset: bool = False, skip_seed: bool = False, rescore_all: bool = False):
    await create_tables()

    summary = {tf: 0 for tf in SEED_TIMEFRAMES}

    async with async_session_factory() as session:
        store = SnapshotStore(session)

        if reset:
            print("🗑️ 清空 snapshots ...")
            await session.execute(delete(Snapshot))
            await session.commit()

        if not skip_seed:
            print("\n📡 拉取 Hyperliquid vaultDetails ...")
            client = HyperliquidClient(settings)
            try:
                raw = await client.fetch_vault_details()
            finally:
                await client.close()

            timeframes = parse_all_timeframes(raw)
            for i, tf in enumerate(SEED_TIMEFRAMES, 1):
                tf_data = timeframes.get(tf)
                if tf_data is None:
                    print(f"\n[Source {i}/{len(SEED_TIMEFRAMES)}] {tf}: 不可用")
                    continue
                print(f"\n[Source {i}/{len(SEED_TIMEFRAMES)}] {tf} ...")
                summary[tf] = await seed_points(store, tf_data, tf)
                await session.commit()

        print("\n🧮 全量重算 ATH / 回撤 / 评分 ...")
        report = await recompute_history(session, rescore_all=rescore_all)
        print(f"   ATH 更新: {report.ath_updated}/{report.rows} 行")
        print(f"   评分补算: {report.scored} 行（数据不足跳过 {report.unscored} 行）")

        stats = await store.stats()

    first = stats["first"].date().isoformat() if stats["first"] else "-"
    last = stats["last"].date().isoformat() if stats["last"] else "-"

    print("\n" + "=" * 44)
    print("📊 灌库统计")
    print("=" * 44)
    print(f"   ├─ 总行数:     {stats['total']}")
    print(f"   ├─ 已评分:     {stats['scored']}")
    print(f"   ├─ 时间范围:   {first} → {last}")
    print("   └─ 各来源新增:")
    for tf, count in summary.items():
        print(f"        {tf:<10} {count}")
    print("=" * 44)

    await engine.dispose()


async def main():
    args = sys.argv[1:]
    await setup(
        reset="--reset" in args,
        skip_seed="--skip-seed" in args,
        rescore_all="--rescore-all" in args,
    )


if __name__ == "__main__":
    asyncio.run(main())
