"""Snapshot API 端点"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.decorators import profile_endpoint
from app.core.errors import AuthFailure, VaultMonitorError
from app.db.session import get_db
from app.schemas.snapshot import (
    CollectResponse,
    LatestResponse,
    LiveReadout,
    SnapshotItem,
    SnapshotListResponse,
    SnapshotsMeta,
)
from app.services.collector import run_collection
from app.services.hyperliquid import HyperliquidClient
from app.services.normalizer import parse_vault_data
from app.services.snapshot_store import SnapshotStore, resolve_cutoff, resolve_resolution

logger = logging.getLogger(__name__)

router = APIRouter()


def get_settings() -> Settings:
    return settings


async def get_hyperliquid_client(
    config: Settings = Depends(get_settings),
) -> AsyncGenerator[HyperliquidClient, None]:
    client = HyperliquidClient(config)
    try:
        yield client
    finally:
        await client.close()


async def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    config: Settings = Depends(get_settings),
) -> None:
    """配置了 CRON_SECRET 时要求 Authorization: Bearer <secret>"""
    if config.CRON_SECRET and authorization != f"Bearer {config.CRON_SECRET}":
        raise AuthFailure("Unauthorized")


@router.get("/latest", response_model=LatestResponse)
@profile_endpoint
async def get_latest(
    db: AsyncSession = Depends(get_db),
    client: HyperliquidClient = Depends(get_hyperliquid_client),
):
    """
    最新一条入库快照 + Hyperliquid 实时读数

    - **history_available**: 库里是否已有历史快照
    """
    try:
        store = SnapshotStore(db)
        snapshot, raw = await asyncio.gather(
            store.read_latest(),
            client.fetch_vault_details(),
        )
        live = parse_vault_data(raw)

        return LatestResponse(
            snapshot=SnapshotItem.model_validate(snapshot) if snapshot else None,
            live=LiveReadout(
                nav=live.current_nav,
                pnl=live.current_pnl,
                apr=live.apr,
                vlm=live.vlm,
                ath=live.ath,
                drawdown=live.current_drawdown,
                max_dd=live.max_drawdown,
                allow_deposits=live.allow_deposits,
                max_distributable=live.max_distributable,
            ),
            history_available=snapshot is not None,
        )

    except VaultMonitorError:
        raise
    except Exception as e:
        logger.exception("❌ /latest 失败")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/snapshots", response_model=SnapshotListResponse)
@profile_endpoint
async def get_snapshots(
    range: str = Query("all", description="时间范围: 24h, 7d, 30d, 90d, 1y, all"),
    resolution: str = Query("auto", description="粒度: auto, hourly, daily"),
    db: AsyncSession = Depends(get_db),
):
    """
    历史快照序列

    - **range**: 时间范围（非法值返回 400）
    - **resolution**: auto 时 24h / 7d 为小时粒度，其余按天聚合
    """
    now = datetime.now(timezone.utc)
    # 参数校验先于任何数据库访问
    resolve_cutoff(range, now)
    effective_resolution = resolve_resolution(range, resolution)

    try:
        rows = await SnapshotStore(db).read_range(range, resolution, now=now)
        items = [SnapshotItem.model_validate(row) for row in rows]

        return SnapshotListResponse(
            snapshots=items,
            meta=SnapshotsMeta(
                count=len(items),
                range=range,
                resolution=effective_resolution,
                oldest=items[0].collected_at if items else None,
                newest=items[-1].collected_at if items else None,
            ),
        )

    except VaultMonitorError:
        raise
    except Exception as e:
        logger.exception("❌ /snapshots 失败")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/collect",
    response_model=CollectResponse,
    dependencies=[Depends(verify_cron_secret)],
)
@profile_endpoint
async def collect(
    db: AsyncSession = Depends(get_db),
    client: HyperliquidClient = Depends(get_hyperliquid_client),
    config: Settings = Depends(get_settings),
):
    """
    触发一次采集（供 GitHub Actions / cron 调用）

    Example:
        curl -X POST -H "Authorization: Bearer $CRON_SECRET" https://your-app/collect
    """
    try:
        result = await run_collection(db, client, config)
        return CollectResponse(
            success=result.success,
            snapshot=SnapshotItem.model_validate(result.snapshot),
            skipped=result.skipped,
            gap_filled=result.gap_filled,
        )

    except VaultMonitorError:
        raise
    except Exception as e:
        logger.exception("❌ /collect 失败")
        raise HTTPException(status_code=500, detail=str(e))
