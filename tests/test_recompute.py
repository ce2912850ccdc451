"""历史重算：全局 ATH 修正与缺失评分补算"""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.services.recompute import recompute_history
from app.services.snapshot_store import SnapshotStore
from tests.factories import BASE_TIME, snapshot_row


async def _seed(session, navs, **overrides):
    store = SnapshotStore(session)
    start = BASE_TIME - timedelta(hours=len(navs))
    for i, nav in enumerate(navs):
        await store.write(snapshot_row(start + timedelta(hours=i), nav, **overrides))
    await session.commit()
    return store


async def test_recompute_fixes_ath_and_drawdown(db_session) -> None:
    store = await _seed(db_session, [100.0, 110.0, 90.0, 95.0])

    report = await recompute_history(db_session)

    assert report.rows == 4
    assert report.ath_updated == 2
    rows = await store.read_all()
    assert [r.nav_ath for r in rows] == [100.0, 110.0, 110.0, 110.0]
    assert rows[2].drawdown_pct == pytest.approx(-20 / 110)
    assert rows[3].drawdown_pct == pytest.approx(-15 / 110)
    assert rows[3].max_drawdown == pytest.approx(-20 / 110)


async def test_recompute_scores_rows_with_enough_history(db_session) -> None:
    store = await _seed(db_session, [100.0, 110.0, 90.0, 95.0])

    report = await recompute_history(db_session)

    assert report.scored == 2
    assert report.unscored == 2
    rows = await store.read_all()
    assert rows[0].composite_score is None
    assert rows[1].composite_score is None
    for row in rows[2:]:
        assert row.dd_score == 98
        assert row.apr_score == 50
        assert row.funding_score == 50
        assert row.oi_score == 50
        assert row.composite_score is not None


async def test_recompute_keeps_existing_scores(db_session) -> None:
    store = await _seed(db_session, [100.0, 101.0, 102.0, 103.0], composite_score=12)

    report = await recompute_history(db_session)

    assert report.scored == 0
    assert {r.composite_score for r in await store.read_all()} == {12}

    report = await recompute_history(db_session, rescore_all=True)

    assert report.scored == 2
    rows = await store.read_all()
    assert rows[3].composite_score != 12


async def test_recompute_is_idempotent(db_session) -> None:
    store = await _seed(db_session, [100.0, 104.0, 99.0, 101.0, 97.0])

    await recompute_history(db_session)
    first = [
        (r.nav_ath, r.drawdown_pct, r.max_drawdown, r.composite_score)
        for r in await store.read_all()
    ]

    report = await recompute_history(db_session)
    second = [
        (r.nav_ath, r.drawdown_pct, r.max_drawdown, r.composite_score)
        for r in await store.read_all()
    ]

    assert report.ath_updated == 0
    assert report.scored == 0
    assert first == second


async def test_recompute_uses_stored_market_context(db_session) -> None:
    store = await _seed(
        db_session,
        [100.0, 100.0, 100.0],
        funding_rate=0.0006,
        open_interest=1000.0,
        apr=0.45,
    )

    await recompute_history(db_session, batch_size=1)

    last = (await store.read_all())[-1]
    assert last.funding_score == 90
    assert last.apr_score == 15
    assert last.oi_score == 50


async def test_recompute_ignores_rows_outside_trailing_window(db_session) -> None:
    store = SnapshotStore(db_session)
    for days_back in (45, 40):
        await store.write(snapshot_row(BASE_TIME - timedelta(days=days_back), 100.0))
    await store.write(snapshot_row(BASE_TIME, 100.0))
    await db_session.commit()

    report = await recompute_history(db_session)

    assert report.unscored == 3
    assert (await store.read_latest()).composite_score is None


async def test_recompute_history_excludes_the_row_itself(db_session) -> None:
    store = await _seed(db_session, [100.0, 100.0, 100.0, 130.0])

    await recompute_history(db_session)

    last = (await store.read_all())[-1]
    # 历史全为 100：收益为 0，跳涨只体现在 TVL 上
    assert last.momentum_score == 55
    assert last.tvl_score == 10
