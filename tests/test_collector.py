"""采集主流程"""

from __future__ import annotations

from dataclasses import fields
from datetime import datetime, timedelta, timezone

import pytest

from app.core.config import Settings
from app.core.errors import UpstreamFailure
from app.services.collector import CollectResult, fetch_market_context_safe, run_collection
from app.services.hyperliquid import MarketContext
from app.services.snapshot_store import SnapshotStore
from tests.factories import (
    BASE_TIME,
    hyperliquid_transport,
    make_client,
    make_vault_payload,
    snapshot_row,
    timeframe,
)

MIDNIGHT = datetime(2026, 1, 10, 0, 10, tzinfo=timezone.utc)


async def test_collect_inserts_scored_snapshot(db_session) -> None:
    client = make_client(hyperliquid_transport(make_vault_payload()))

    result = await run_collection(db_session, client, Settings(), now=BASE_TIME)

    assert result.success is True
    assert result.skipped is False
    assert result.gap_filled == 0
    snapshot = result.snapshot
    assert snapshot["id"] is not None
    assert snapshot["nav"] == 95.0
    assert snapshot["nav_ath"] == 110.0
    assert snapshot["funding_rate"] == pytest.approx(0.00025)
    assert snapshot["open_interest"] == 4000.0
    assert snapshot["volume_24h"] == 75100.0
    assert snapshot["dd_score"] == 98
    assert snapshot["apr_score"] == 65
    assert snapshot["funding_score"] == 75
    # 无历史：TVL / 动量 / 波动 / OI 取中性
    assert snapshot["tvl_score"] == 50
    assert snapshot["oi_score"] == 50
    # 98*.25 + 50*.15*3 + 65*.05 + 75*.15 + 50*.10 = 66.5
    assert snapshot["composite_score"] == 67

    rows = await SnapshotStore(db_session).read_all()
    assert len(rows) == 1
    assert rows[0].composite_score == 67


async def test_second_collect_in_same_hour_is_skipped(db_session) -> None:
    transport = hyperliquid_transport(make_vault_payload())

    first = await run_collection(db_session, make_client(transport), Settings(), now=BASE_TIME)
    second = await run_collection(
        db_session, make_client(transport), Settings(), now=BASE_TIME + timedelta(minutes=30)
    )

    assert first.skipped is False
    assert second.skipped is True
    assert "id" not in second.snapshot
    assert second.snapshot["nav"] == 95.0
    assert len(await SnapshotStore(db_session).read_all()) == 1


async def test_trailing_history_feeds_scores(db_session) -> None:
    store = SnapshotStore(db_session)
    for hours_back, nav in ((30, 90.0), (20, 91.0), (10, 92.0)):
        await store.write(
            snapshot_row(BASE_TIME - timedelta(hours=hours_back), nav, open_interest=3000.0)
        )
    await db_session.commit()

    client = make_client(hyperliquid_transport(make_vault_payload()))
    result = await run_collection(db_session, client, Settings(), now=BASE_TIME)

    # 95 vs 90 -> +5.6%
    assert result.snapshot["tvl_score"] == 10
    # 3000 -> 3000
    assert result.snapshot["oi_score"] == 50


async def test_market_failure_degrades_to_defaults(db_session) -> None:
    transport = hyperliquid_transport(make_vault_payload(), market_status=500)

    result = await run_collection(db_session, make_client(transport), Settings(), now=BASE_TIME)

    assert result.skipped is False
    assert result.snapshot["funding_rate"] == 0.0
    assert result.snapshot["open_interest"] == 0.0
    assert result.snapshot["volume_24h"] == 0.0
    assert result.snapshot["funding_score"] == 45


async def test_market_context_safe_returns_neutral() -> None:
    transport = hyperliquid_transport(make_vault_payload(), market_payload={"unexpected": True})

    context = await fetch_market_context_safe(make_client(transport))

    assert context == MarketContext.neutral()


async def test_vault_failure_aborts_collection(db_session) -> None:
    transport = hyperliquid_transport(make_vault_payload(), vault_status=503)

    with pytest.raises(UpstreamFailure):
        await run_collection(db_session, make_client(transport), Settings(), now=BASE_TIME)

    assert await SnapshotStore(db_session).read_all() == []


async def test_missing_all_time_aborts_collection(db_session) -> None:
    payload = {"portfolio": [["week", timeframe([(BASE_TIME, 1.0)])]]}
    transport = hyperliquid_transport(payload)

    with pytest.raises(UpstreamFailure, match="allTime"):
        await run_collection(db_session, make_client(transport), Settings(), now=BASE_TIME)


async def test_midnight_run_fills_gaps(db_session) -> None:
    month = timeframe(
        [(MIDNIGHT - timedelta(hours=h), 100.0 + h) for h in (3, 2, 1)]
    )
    transport = hyperliquid_transport(make_vault_payload(month=month))

    result = await run_collection(db_session, make_client(transport), Settings(), now=MIDNIGHT)

    assert result.skipped is False
    assert result.gap_filled == 3
    assert len(await SnapshotStore(db_session).read_all()) == 4


async def test_gap_fill_only_at_configured_hour(db_session) -> None:
    month = timeframe([(BASE_TIME - timedelta(hours=2), 100.0)])
    transport = hyperliquid_transport(make_vault_payload(month=month))

    result = await run_collection(db_session, make_client(transport), Settings(), now=BASE_TIME)
    assert result.gap_filled == 0

    config = Settings(BACKFILL_UTC_HOUR=BASE_TIME.hour)
    result = await run_collection(
        db_session, make_client(transport), config, now=BASE_TIME + timedelta(minutes=5)
    )
    assert result.skipped is True
    assert result.gap_filled == 1


async def test_gap_fill_failure_keeps_live_row(db_session) -> None:
    payload = make_vault_payload(week={"accountValueHistory": [[1, "bad"]], "pnlHistory": []})
    transport = hyperliquid_transport(payload)

    result = await run_collection(db_session, make_client(transport), Settings(), now=MIDNIGHT)

    assert result.skipped is False
    assert result.gap_filled == 0
    rows = await SnapshotStore(db_session).read_all()
    assert len(rows) == 1
    assert rows[0].nav == 95.0


def test_collect_result_carries_response_fields_only() -> None:
    assert [f.name for f in fields(CollectResult)] == ["snapshot", "skipped", "gap_filled", "success"]
