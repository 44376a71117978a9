"""Average True Range and ATR-based stop levels. Pure functions, no I/O."""

from dataclasses import dataclass
from typing import Optional, Sequence

from quantdash.analysis.models import IndicatorSeries, PriceBar


def calculate_atr(bars: Sequence[PriceBar], period: int = 14) -> IndicatorSeries:
    """Calculate the Average True Range series.

    Uses the standard True Range definition:
        TR = max(high - low, |high - prev_close|, |low - prev_close|)

    The first bar has no previous close, so its TR is ``high - low``.
    The first ATR (index ``period - 1``) is the simple mean of the first
    *period* true ranges; after that Wilder smoothing applies::

        atr = (atr × (period - 1) + tr) / period
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")

    result: IndicatorSeries = [None] * len(bars)
    if len(bars) < 2:
        return result

    true_ranges = [bars[0].high - bars[0].low]
    for prev, cur in zip(bars, bars[1:]):
        true_ranges.append(
            max(
                cur.high - cur.low,
                abs(cur.high - prev.close),
                abs(cur.low - prev.close),
            )
        )

    if len(true_ranges) < period:
        return result

    atr = sum(true_ranges[:period]) / period
    result[period - 1] = atr
    for i in range(period, len(true_ranges)):
        atr = (atr * (period - 1) + true_ranges[i]) / period
        result[i] = atr
    return result


@dataclass(frozen=True)
class ATRStopLoss:
    """Stop levels a multiple of ATR away from the last close."""

    long_stop_loss: float
    short_stop_loss: float
    atr_value: float


def calculate_atr_stop_loss(
    bars: Sequence[PriceBar],
    multiplier: float = 2.0,
    period: int = 14,
) -> Optional[ATRStopLoss]:
    """Return ATR stops around the latest close, or ``None`` without an ATR."""
    if not bars:
        return None
    atr = calculate_atr(bars, period)[-1]
    if atr is None:
        return None

    close = bars[-1].close
    return ATRStopLoss(
        long_stop_loss=close - atr * multiplier,
        short_stop_loss=close + atr * multiplier,
        atr_value=atr,
    )
