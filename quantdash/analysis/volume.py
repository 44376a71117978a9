"""Volume indicators — OBV, VWAP, volume MA, OBV trend. Pure functions, no I/O."""

from typing import Sequence

from quantdash.analysis.indicators import calculate_sma
from quantdash.analysis.models import IndicatorSeries, PriceBar


def calculate_obv(bars: Sequence[PriceBar]) -> IndicatorSeries:
    """On-Balance Volume.

    ``obv[0] = volume[0]``; each later bar adds its volume on an up close,
    subtracts it on a down close, and carries the previous value on an
    unchanged close.
    """
    if not bars:
        return []

    obv = bars[0].volume
    result: IndicatorSeries = [obv]
    for prev, cur in zip(bars, bars[1:]):
        if cur.close > prev.close:
            obv += cur.volume
        elif cur.close < prev.close:
            obv -= cur.volume
        result.append(obv)
    return result


def calculate_vwap(bars: Sequence[PriceBar], period: int = 20) -> IndicatorSeries:
    """Rolling VWAP of the typical price ``(H + L + C) / 3``.

    Undefined until *period* bars are available, and for any window whose
    total volume is zero.
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")

    result: IndicatorSeries = [None] * len(bars)
    for i in range(period - 1, len(bars)):
        sum_pv = 0.0
        sum_v = 0.0
        for b in bars[i - period + 1 : i + 1]:
            sum_pv += (b.high + b.low + b.close) / 3 * b.volume
            sum_v += b.volume
        if sum_v != 0:
            result[i] = sum_pv / sum_v
    return result


def calculate_volume_ma(bars: Sequence[PriceBar], period: int = 5) -> IndicatorSeries:
    return calculate_sma([b.volume for b in bars], period)


def get_obv_trend(obv: IndicatorSeries, lookback: int = 10) -> int:
    """Classify the recent OBV direction.

    Over the last *lookback* defined values, count rising and falling
    steps.  Returns ``1`` when rises outnumber falls by more than 1.5×,
    ``-1`` for the mirror case, else ``0``.  Fewer than *lookback* defined
    values is ``0``.
    """
    valid = [v for v in obv if v is not None]
    if len(valid) < lookback:
        return 0

    recent = valid[-lookback:]
    up = 0
    down = 0
    for prev, cur in zip(recent, recent[1:]):
        if cur > prev:
            up += 1
        elif cur < prev:
            down += 1

    if up > down * 1.5:
        return 1
    if down > up * 1.5:
        return -1
    return 0
