"""
信号评分（纯函数，无数据库 / 环境依赖）

实时采集、历史回填、批量重算三条路径共用本模块。

七个子信号（0-100，越高表示越适合入场）：
    1. 回撤 (25%)：当前 NAV 距 ATH 的跌幅
    2. TVL 动量 (15%)：7 日 NAV 变化
    3. 收益动量 (15%)：最近 7 个区间收益均值
    4. 波动率体制 (15%)：波动率由高转低得分最高
    5. APR 相对价值 (5%)
    6. 资金费率 (15%)
    7. OI 趋势 (10%)
所有阈值表均为有序的 (边界, 分数) 元组，由 bucket_score 统一查表。
"""
from __future__ import annotations

import math
import operator
import statistics
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence, Tuple

from app.services.normalizer import ensure_utc

NEUTRAL_SCORE = 50
MOMENTUM_LOOKBACK_POINTS = 30
MOMENTUM_AVG_RETURNS = 7
SEVEN_DAYS = timedelta(days=7)

Tier = Tuple[float, int]

# |回撤| 百分比，严格小于
DRAWDOWN_TIERS: Tuple[Tier, ...] = (
    (0.1, 5),
    (0.5, 15),
    (1, 25),
    (2, 40),
    (3, 55),
    (5, 70),
    (7, 85),
    (9, 92),
)
DRAWDOWN_FLOOR = 98

# 7 日 NAV 变化百分比，严格大于
TVL_TIERS: Tuple[Tier, ...] = (
    (3, 10),
    (1, 25),
    (0, 40),
    (-1, 55),
    (-3, 70),
    (-5, 85),
)
TVL_FLOOR = 95

# 最近 7 个区间收益均值（小数），严格大于
MOMENTUM_TIERS: Tuple[Tier, ...] = (
    (0.003, 10),
    (0.001, 25),
    (0, 40),
    (-0.001, 55),
    (-0.003, 70),
    (-0.01, 85),
)
MOMENTUM_FLOOR = 95

# APR 百分比，严格大于
APR_TIERS: Tuple[Tier, ...] = (
    (40, 15),
    (25, 30),
    (15, 50),
    (8, 65),
    (3, 75),
)
APR_FLOOR = 90

# 资金费率（基点），严格大于
FUNDING_TIERS: Tuple[Tier, ...] = (
    (5, 90),
    (2, 75),
    (0.5, 60),
    (-0.5, 45),
    (-2, 25),
)
FUNDING_FLOOR = 15

# OI 7 日变化（小数），严格大于
OI_TIERS: Tuple[Tier, ...] = (
    (0.10, 90),
    (0.03, 70),
    (-0.03, 50),
    (-0.05, 30),
)
OI_FLOOR = 15

WEIGHTS = {
    "dd": 0.25,
    "tvl": 0.15,
    "momentum": 0.15,
    "vol": 0.15,
    "apr": 0.05,
    "funding": 0.15,
    "oi": 0.10,
}
if not math.isclose(sum(WEIGHTS.values()), 1.0):
    raise ValueError("signal weights must sum to 1.0")


def bucket_score(
    value: float,
    tiers: Sequence[Tier],
    default: int,
    compare: Callable[[float, float], bool] = operator.gt,
) -> int:
    """按顺序查表，返回第一个满足 compare(value, bound) 的分数"""
    for bound, score in tiers:
        if compare(value, bound):
            return score
    return default


def drawdown_score(current_drawdown: float) -> int:
    return bucket_score(abs(current_drawdown) * 100, DRAWDOWN_TIERS, DRAWDOWN_FLOOR, operator.lt)


def tvl_momentum_score(tvl7_pct: float) -> int:
    return bucket_score(tvl7_pct, TVL_TIERS, TVL_FLOOR)


def return_momentum_score(avg_return: float) -> int:
    return bucket_score(avg_return, MOMENTUM_TIERS, MOMENTUM_FLOOR)


def volatility_score(vol_trend: float, annualized_vol: float) -> int:
    """波动率收敛（且此前确有波动）得分最高"""
    if vol_trend < -0.3 and annualized_vol > 10:
        return 90
    if vol_trend < -0.1:
        return 70
    if abs(vol_trend) < 0.1:
        return 50
    if vol_trend < 0.3:
        return 35
    return 15


def apr_score(apr: Optional[float]) -> int:
    if apr is None:
        return NEUTRAL_SCORE
    return bucket_score(apr * 100, APR_TIERS, APR_FLOOR)


def funding_score(funding_rate: Optional[float]) -> int:
    if funding_rate is None:
        return NEUTRAL_SCORE
    return bucket_score(funding_rate * 10000, FUNDING_TIERS, FUNDING_FLOOR)


def oi_trend_score(oi_change: float) -> int:
    return bucket_score(oi_change, OI_TIERS, OI_FLOOR)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _sample_std(values: Sequence[float]) -> float:
    # 分母 n-1；不足两个样本时方差记为 0
    if len(values) < 2:
        return 0.0
    return statistics.stdev(values)


@dataclass(frozen=True)
class TrailingSignals:
    tvl_score: int = NEUTRAL_SCORE
    momentum_score: int = NEUTRAL_SCORE
    vol_score: int = NEUTRAL_SCORE
    oi_score: int = NEUTRAL_SCORE

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class SignalScores:
    composite: int
    dd_score: int
    tvl_score: int
    momentum_score: int
    vol_score: int
    apr_score: int
    funding_score: int
    oi_score: int

    def as_columns(self) -> dict[str, int]:
        """映射为 snapshots 表的列名"""
        columns = asdict(self)
        columns["composite_score"] = columns.pop("composite")
        return columns


def _history_time(row: Any) -> datetime:
    return ensure_utc(row.collected_at)


def compute_trailing_signals(
    history: Sequence[Any],
    current_nav: float,
    now: Optional[datetime] = None,
) -> TrailingSignals:
    """
    基于已入库快照计算 TVL 动量 / 收益动量 / 波动率体制 / OI 趋势

    Args:
        history: 按时间升序的历史快照（需有 collected_at / nav / open_interest 属性）
        current_nav: 本次采集的 NAV
        now: 计算时点，默认当前 UTC 时间；批量重算时传入该行自身时间
    """
    if not history or len(history) < 2:
        return TrailingSignals()

    now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    seven_days_ago = now - SEVEN_DAYS

    # 1. TVL 动量：与 7 日窗口内最早一条比较
    window_7d = [s for s in history if _history_time(s) >= seven_days_ago]
    nav_7d_ago = float(window_7d[0].nav) if window_7d else current_nav
    tvl7 = (current_nav - nav_7d_ago) / nav_7d_ago * 100 if nav_7d_ago > 0 else 0.0
    tvl = tvl_momentum_score(tvl7)

    # 2. 收益动量：最近 30 个点的逐段收益，取最后 7 个均值
    recent = history[-MOMENTUM_LOOKBACK_POINTS:]
    returns = []
    for prev_row, curr_row in zip(recent, recent[1:]):
        prev = float(prev_row.nav)
        if prev > 0:
            returns.append((float(curr_row.nav) - prev) / prev)

    last_returns = returns[-MOMENTUM_AVG_RETURNS:]
    avg_return = sum(last_returns) / len(last_returns) if last_returns else 0.0
    momentum = return_momentum_score(avg_return)

    # 3. 波动率体制：整体 vs 前半段
    current_vol = _sample_std(returns)
    prior_vol = _sample_std(returns[: len(returns) // 2])
    vol_trend = (current_vol - prior_vol) / prior_vol if prior_vol > 0 else 0.0
    annualized_vol = current_vol * math.sqrt(365) * 100
    vol = volatility_score(vol_trend, annualized_vol)

    # 4. OI 趋势：最新 OI 对比 7 日前
    oi = NEUTRAL_SCORE
    oi_rows = [
        s for s in history
        if s.open_interest is not None and float(s.open_interest) > 0
    ]
    if len(oi_rows) >= 2:
        latest_oi = float(oi_rows[-1].open_interest)
        oi_window = [s for s in oi_rows if _history_time(s) >= seven_days_ago]
        oi_ago = float(oi_window[0].open_interest) if oi_window else latest_oi
        if oi_ago > 0:
            oi = oi_trend_score((latest_oi - oi_ago) / oi_ago)

    return TrailingSignals(tvl_score=tvl, momentum_score=momentum, vol_score=vol, oi_score=oi)


def compute_composite(
    dd: int,
    tvl: int,
    momentum: int,
    vol: int,
    apr: int,
    funding: int,
    oi: int,
) -> int:
    """加权求和后四舍五入（.5 向上）"""
    raw = (
        dd * WEIGHTS["dd"]
        + tvl * WEIGHTS["tvl"]
        + momentum * WEIGHTS["momentum"]
        + vol * WEIGHTS["vol"]
        + apr * WEIGHTS["apr"]
        + funding * WEIGHTS["funding"]
        + oi * WEIGHTS["oi"]
    )
    return round_half_up(raw)


def compute_signal_scores(
    current_drawdown: float,
    trailing: Optional[TrailingSignals] = None,
    apr: Optional[float] = None,
    funding_rate: Optional[float] = None,
) -> SignalScores:
    """合成七个子信号；缺数据的子信号取中性 50"""
    trailing = trailing or TrailingSignals()
    dd = drawdown_score(current_drawdown)
    apr_value = apr_score(apr)
    funding_value = funding_score(funding_rate)

    composite = compute_composite(
        dd,
        trailing.tvl_score,
        trailing.momentum_score,
        trailing.vol_score,
        apr_value,
        funding_value,
        trailing.oi_score,
    )
    return SignalScores(
        composite=composite,
        dd_score=dd,
        tvl_score=trailing.tvl_score,
        momentum_score=trailing.momentum_score,
        vol_score=trailing.vol_score,
        apr_score=apr_value,
        funding_score=funding_value,
        oi_score=trailing.oi_score,
    )
