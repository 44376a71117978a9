"""Technical indicators — SMA, EMA, MACD, RSI, KDJ, Bollinger Bands. Pure functions, no I/O.

Every function returns a series the same length as its input.  Positions
inside the warm-up window are ``None``; an undefined value is never
reported as zero.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, TypeVar

import numpy as np

from quantdash.analysis.models import IndicatorSeries, PriceBar

T = TypeVar("T")


def _check_period(period: int) -> None:
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")


def last_valid(series: Sequence[Optional[T]]) -> Optional[T]:
    """Return the last non-``None`` entry of *series*, or ``None``."""
    for value in reversed(series):
        if value is not None:
            return value
    return None


def last_n_valid(series: Sequence[Optional[T]], n: int) -> list[T]:
    """Return up to *n* trailing defined values, oldest first."""
    result: list[T] = []
    for value in reversed(series):
        if len(result) >= n:
            break
        if value is not None:
            result.append(value)
    result.reverse()
    return result


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards +∞ (``round`` goes to even)."""
    return math.floor(value + 0.5)


# ── Moving averages ──────────────────────────────────────────────────────


def calculate_sma(values: Sequence[float], period: int) -> IndicatorSeries:
    """Arithmetic mean of the trailing *period* values.

    Undefined for the first ``period - 1`` positions.
    """
    _check_period(period)
    result: IndicatorSeries = [None] * len(values)
    for i in range(period - 1, len(values)):
        result[i] = sum(values[i - period + 1 : i + 1]) / period
    return result


def calculate_ema(values: Sequence[float], period: int) -> IndicatorSeries:
    """Calculate an Exponential Moving Average series.

    The first value sits at index ``period - 1`` and is seeded with the SMA
    of the first *period* values.  Thereafter::

        ema[i] = (v[i] - ema[i-1]) × k + ema[i-1],   k = 2 / (period + 1)
    """
    _check_period(period)
    result: IndicatorSeries = [None] * len(values)
    if len(values) < period:
        return result

    k = 2.0 / (period + 1)
    ema = sum(values[:period]) / period
    result[period - 1] = ema
    for i in range(period, len(values)):
        ema = (values[i] - ema) * k + ema
        result[i] = ema
    return result


@dataclass(frozen=True)
class MovingAverages:
    ma5: IndicatorSeries
    ma10: IndicatorSeries
    ma20: IndicatorSeries
    ma60: IndicatorSeries


def calculate_ma(bars: Sequence[PriceBar]) -> MovingAverages:
    """The 5/10/20/60-period close SMAs shown on the chart."""
    closes = [b.close for b in bars]
    return MovingAverages(
        ma5=calculate_sma(closes, 5),
        ma10=calculate_sma(closes, 10),
        ma20=calculate_sma(closes, 20),
        ma60=calculate_sma(closes, 60),
    )


# ── MACD ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MACDResult:
    dif: IndicatorSeries
    dea: IndicatorSeries
    histogram: IndicatorSeries


def calculate_macd(
    bars: Sequence[PriceBar],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDResult:
    """Calculate MACD (DIF / DEA / histogram).

    Algorithm:
        1. DIF = EMA(close, fast) − EMA(close, slow) where both are defined.
        2. DEA = EMA(DIF, signal) computed over the *defined* DIF values
           only, then mapped back onto the original indices.
        3. histogram = (DIF − DEA) × 2.

    Positions where DIF is undefined stay undefined in DEA and histogram.
    """
    closes = [b.close for b in bars]
    ema_fast = calculate_ema(closes, fast_period)
    ema_slow = calculate_ema(closes, slow_period)

    dif: IndicatorSeries = [
        f - s if f is not None and s is not None else None
        for f, s in zip(ema_fast, ema_slow)
    ]

    defined_dif = [v for v in dif if v is not None]
    dea_raw = calculate_ema(defined_dif, signal_period)

    dea: IndicatorSeries = [None] * len(dif)
    histogram: IndicatorSeries = [None] * len(dif)
    j = 0
    for i, d in enumerate(dif):
        if d is None:
            continue
        dea_value = dea_raw[j]
        j += 1
        if dea_value is None:
            continue
        dea[i] = dea_value
        histogram[i] = (d - dea_value) * 2

    return MACDResult(dif=dif, dea=dea, histogram=histogram)


# ── RSI ──────────────────────────────────────────────────────────────────


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        # No losses: fully bullish, unless nothing moved at all
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def calculate_rsi(bars: Sequence[PriceBar], period: int = 14) -> IndicatorSeries:
    """Calculate Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = close[i] - close[i-1]
        2. Seed average gain/loss = simple mean of the first *period* deltas.
        3. Subsequent: avg = (prev_avg × (period-1) + current) / period
        4. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Index 0 is always undefined; the first value is at index *period*.
    """
    _check_period(period)
    closes = [b.close for b in bars]
    rsi: IndicatorSeries = [None] * len(closes)
    if len(closes) < period + 1:
        return rsi

    deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [max(-d, 0.0) for d in deltas]

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    rsi[period] = _rsi_from_avgs(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        # deltas are offset by one bar
        rsi[i + 1] = _rsi_from_avgs(avg_gain, avg_loss)

    return rsi


# ── KDJ ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class KDJResult:
    k: IndicatorSeries
    d: IndicatorSeries
    j: IndicatorSeries


def calculate_kdj(bars: Sequence[PriceBar], period: int = 9) -> KDJResult:
    """Calculate the KDJ stochastic (9, 3, 3).

    RSV is the close's position inside the trailing *period* high/low
    range (50 for a flat range).  K and D are smoothed recursively from a
    seed of 50::

        K = 2/3 × prevK + 1/3 × RSV
        D = 2/3 × prevD + 1/3 × K
        J = 3K − 2D          (unbounded)
    """
    _check_period(period)
    n = len(bars)
    k: IndicatorSeries = [None] * n
    d: IndicatorSeries = [None] * n
    j: IndicatorSeries = [None] * n

    prev_k = 50.0
    prev_d = 50.0
    for i in range(period - 1, n):
        window = bars[i - period + 1 : i + 1]
        highest = max(b.high for b in window)
        lowest = min(b.low for b in window)
        if highest == lowest:
            rsv = 50.0
        else:
            rsv = (bars[i].close - lowest) / (highest - lowest) * 100.0

        cur_k = (2.0 / 3.0) * prev_k + (1.0 / 3.0) * rsv
        cur_d = (2.0 / 3.0) * prev_d + (1.0 / 3.0) * cur_k
        k[i] = cur_k
        d[i] = cur_d
        j[i] = 3 * cur_k - 2 * cur_d
        prev_k, prev_d = cur_k, cur_d

    return KDJResult(k=k, d=d, j=j)


# ── Bollinger Bands ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class BollingerResult:
    upper: IndicatorSeries
    middle: IndicatorSeries
    lower: IndicatorSeries


def calculate_bollinger(
    bars: Sequence[PriceBar],
    period: int = 20,
    multiplier: float = 2.0,
) -> BollingerResult:
    """Calculate Bollinger Bands.

    Middle = SMA(close, *period*)
    Upper  = middle + *multiplier* × σ
    Lower  = middle − *multiplier* × σ

    σ is the population standard deviation of the same window.
    """
    closes = [b.close for b in bars]
    middle = calculate_sma(closes, period)
    upper: IndicatorSeries = [None] * len(closes)
    lower: IndicatorSeries = [None] * len(closes)

    for i, mid in enumerate(middle):
        if mid is None:
            continue
        sigma = float(np.std(closes[i - period + 1 : i + 1]))
        upper[i] = mid + multiplier * sigma
        lower[i] = mid - multiplier * sigma

    return BollingerResult(upper=upper, middle=middle, lower=lower)
