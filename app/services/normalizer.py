"""
vaultDetails 原始数据清洗

- parse_vault_data: 只使用 allTime 时间框，输出当前 NAV / PnL、ATH 与回撤
- parse_all_timeframes: 提取全部时间框（不计算衍生值），供回填使用
- compute_ath_series: 单次正向遍历计算 ATH / 回撤 / 最大回撤
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.core.errors import UpstreamFailure

# 注意：perpAllTime 只统计永续部分，与 allTime 的账户价值口径不同
TIMEFRAMES = ("allTime", "perpAllTime", "month", "week", "day")


@dataclass(frozen=True)
class SeriesPoint:
    time: int  # 毫秒时间戳
    value: float


@dataclass(frozen=True)
class AthPoint:
    time: int
    nav: float
    pnl: Optional[float]
    ath: float
    drawdown: float
    max_drawdown: float

    @property
    def collected_at(self) -> datetime:
        return ms_to_datetime(self.time)


@dataclass
class TimeframeSeries:
    nav_history: List[SeriesPoint]
    pnl_history: List[SeriesPoint]

    def pnl_lookup(self) -> Dict[int, float]:
        return {p.time: p.value for p in self.pnl_history}


@dataclass
class VaultAnalytics:
    nav_history: List[SeriesPoint]
    pnl_history: List[SeriesPoint]
    drawdown_history: List[SeriesPoint]
    current_nav: float
    current_pnl: float
    ath: float
    current_drawdown: float
    max_drawdown: float
    apr: float = 0.0
    vlm: float = 0.0
    allow_deposits: bool = True
    max_distributable: float = 0.0
    portfolio: List[Any] = field(default_factory=list)


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """SQLite 读回的时间不带时区，统一视为 UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _portfolio_map(payload: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        return {key: value for key, value in payload.get("portfolio") or []}
    except (TypeError, ValueError) as e:
        raise UpstreamFailure(f"Malformed portfolio data: {e}") from e


def _parse_points(raw: Iterable[Any]) -> List[SeriesPoint]:
    try:
        return [SeriesPoint(time=int(ts), value=float(val)) for ts, val in raw or []]
    except (TypeError, ValueError) as e:
        raise UpstreamFailure(f"Malformed history point: {e}") from e


def _timeframe(portfolio: Mapping[str, Any], key: str) -> Optional[Mapping[str, Any]]:
    tf_data = portfolio.get(key)
    if not tf_data:
        return None
    if not isinstance(tf_data, Mapping):
        raise UpstreamFailure(f"Malformed {key} portfolio data")
    return tf_data


def _scalar(payload: Mapping[str, Any], key: str) -> float:
    try:
        return float(payload.get(key) or 0)
    except (TypeError, ValueError) as e:
        raise UpstreamFailure(f"Malformed {key}: {e}") from e


def compute_ath_series(
    nav_history: Iterable[SeriesPoint],
    pnl_lookup: Optional[Mapping[int, float]] = None,
) -> List[AthPoint]:
    """按时间顺序回放 NAV，得到每个点的 ATH、回撤和截至该点的最大回撤"""
    ath = 0.0
    max_dd = 0.0
    points: List[AthPoint] = []
    for point in nav_history:
        if point.value > ath:
            ath = point.value
        dd = (point.value - ath) / ath if ath > 0 else 0.0
        if dd < max_dd:
            max_dd = dd
        points.append(
            AthPoint(
                time=point.time,
                nav=point.value,
                pnl=pnl_lookup.get(point.time) if pnl_lookup is not None else None,
                ath=ath,
                drawdown=dd,
                max_drawdown=max_dd,
            )
        )
    return points


def parse_vault_data(payload: Mapping[str, Any]) -> VaultAnalytics:
    """解析 allTime 时间框；缺失 allTime 时直接失败，不用其他时间框替代"""
    all_time = _timeframe(_portfolio_map(payload), "allTime")
    if not all_time:
        raise UpstreamFailure("No allTime portfolio data")

    nav_history = [
        p for p in _parse_points(all_time.get("accountValueHistory")) if p.value > 0
    ]
    first_time = nav_history[0].time if nav_history else 0
    pnl_history = [
        p for p in _parse_points(all_time.get("pnlHistory")) if p.time >= first_time
    ]

    current_nav = nav_history[-1].value if nav_history else 0.0
    current_pnl = pnl_history[-1].value if pnl_history else 0.0

    series = compute_ath_series(nav_history)
    ath = series[-1].ath if series else 0.0

    return VaultAnalytics(
        nav_history=nav_history,
        pnl_history=pnl_history,
        drawdown_history=[SeriesPoint(time=p.time, value=p.drawdown) for p in series],
        current_nav=current_nav,
        current_pnl=current_pnl,
        ath=ath,
        current_drawdown=(current_nav - ath) / ath if ath > 0 else 0.0,
        max_drawdown=series[-1].max_drawdown if series else 0.0,
        apr=_scalar(payload, "apr"),
        vlm=_scalar(payload, "vlm"),
        allow_deposits=payload.get("allowDeposits") is not False,
        max_distributable=_scalar(payload, "maxDistributable"),
        portfolio=list(payload.get("portfolio") or []),
    )


def parse_all_timeframes(payload: Mapping[str, Any]) -> Dict[str, TimeframeSeries]:
    """提取全部已知时间框；NAV 过滤非正值，PnL 保持原样"""
    portfolio = _portfolio_map(payload)
    result: Dict[str, TimeframeSeries] = {}
    for key in TIMEFRAMES:
        tf_data = _timeframe(portfolio, key)
        if tf_data is None:
            continue
        result[key] = TimeframeSeries(
            nav_history=[
                p for p in _parse_points(tf_data.get("accountValueHistory")) if p.value > 0
            ],
            pnl_history=_parse_points(tf_data.get("pnlHistory")),
        )
    return result
