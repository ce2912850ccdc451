"""allTime 清洗与 ATH / 回撤回放"""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.errors import UpstreamFailure
from app.services.normalizer import (
    SeriesPoint,
    compute_ath_series,
    parse_all_timeframes,
    parse_vault_data,
)
from tests.factories import BASE_TIME, make_vault_payload, timeframe, to_ms


def _points(values):
    return [SeriesPoint(time=i * 3_600_000, value=v) for i, v in enumerate(values)]


def test_ath_series_matches_worked_example() -> None:
    series = compute_ath_series(_points([100, 110, 90, 95]))

    assert [p.ath for p in series] == [100, 110, 110, 110]
    assert [p.drawdown for p in series] == pytest.approx([0, 0, -0.181818, -0.136364], abs=1e-6)
    assert series[-1].max_drawdown == pytest.approx(-0.181818, abs=1e-6)


def test_ath_and_max_drawdown_are_running_extremes() -> None:
    navs = [50, 48, 55, 40, 61, 61, 30, 45, 70, 69]
    series = compute_ath_series(_points(navs))

    for i, point in enumerate(series):
        assert point.ath == max(navs[: i + 1])
        assert point.max_drawdown == min(p.drawdown for p in series[: i + 1])
        assert point.drawdown <= 0


def test_pnl_lookup_is_exact_timestamp_match() -> None:
    series = compute_ath_series(_points([10, 11]), {0: 1.5})

    assert series[0].pnl == 1.5
    assert series[1].pnl is None


def test_parse_vault_data_uses_all_time_series() -> None:
    parsed = parse_vault_data(make_vault_payload())

    assert parsed.current_nav == 95.0
    assert parsed.current_pnl == -5.0
    assert parsed.ath == 110.0
    assert parsed.current_drawdown == pytest.approx((95 - 110) / 110)
    assert parsed.max_drawdown == pytest.approx((90 - 110) / 110)
    assert len(parsed.drawdown_history) == 4
    assert parsed.apr == 0.12
    assert parsed.allow_deposits is True
    assert parsed.max_distributable == 5_000.0


def test_non_positive_nav_dropped_and_pnl_trimmed() -> None:
    t0 = BASE_TIME - timedelta(hours=3)
    payload = make_vault_payload(
        timeframe(
            [(t0, 0.0), (t0 + timedelta(hours=1), 200.0), (t0 + timedelta(hours=2), 210.0)],
            [(t0, 0.0), (t0 + timedelta(hours=1), 1.0), (t0 + timedelta(hours=2), 2.0)],
        )
    )

    parsed = parse_vault_data(payload)

    assert [p.value for p in parsed.nav_history] == [200.0, 210.0]
    assert [p.time for p in parsed.pnl_history] == [
        to_ms(t0 + timedelta(hours=1)),
        to_ms(t0 + timedelta(hours=2)),
    ]
    assert parsed.current_drawdown == 0.0


def test_missing_all_time_fails() -> None:
    payload = {"portfolio": [["month", timeframe([(BASE_TIME, 100.0)])]]}

    with pytest.raises(UpstreamFailure, match="allTime"):
        parse_vault_data(payload)


def test_empty_all_time_history_is_zeroed() -> None:
    parsed = parse_vault_data(make_vault_payload(timeframe([])))

    assert parsed.current_nav == 0.0
    assert parsed.ath == 0.0
    assert parsed.current_drawdown == 0.0


def test_allow_deposits_false_is_preserved() -> None:
    parsed = parse_vault_data(make_vault_payload(allow_deposits=False))

    assert parsed.allow_deposits is False


def test_parse_all_timeframes_keeps_raw_pnl() -> None:
    week = timeframe(
        [(BASE_TIME, -1.0), (BASE_TIME + timedelta(hours=1), 5.0)],
        [(BASE_TIME, -3.0), (BASE_TIME + timedelta(hours=1), 4.0)],
    )
    result = parse_all_timeframes(make_vault_payload(week=week))

    assert set(result) == {"allTime", "week"}
    assert [p.value for p in result["week"].nav_history] == [5.0]
    assert [p.value for p in result["week"].pnl_history] == [-3.0, 4.0]


def test_malformed_history_point_is_upstream_failure() -> None:
    payload = make_vault_payload({"accountValueHistory": [["oops", "x"]], "pnlHistory": []})

    with pytest.raises(UpstreamFailure):
        parse_vault_data(payload)


def test_non_mapping_all_time_is_upstream_failure() -> None:
    payload = {"portfolio": [["allTime", ["oops"]]]}

    with pytest.raises(UpstreamFailure, match="allTime"):
        parse_vault_data(payload)


@pytest.mark.parametrize("field", ["apr", "vlm", "maxDistributable"])
def test_non_numeric_scalar_is_upstream_failure(field: str) -> None:
    payload = make_vault_payload()
    payload[field] = "n/a"

    with pytest.raises(UpstreamFailure, match=field):
        parse_vault_data(payload)


def test_non_mapping_timeframe_is_upstream_failure() -> None:
    payload = make_vault_payload(week="not-a-timeframe")

    with pytest.raises(UpstreamFailure, match="week"):
        parse_all_timeframes(payload)
