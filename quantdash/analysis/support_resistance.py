"""Support/Resistance level detection — pure functions.

Pivot highs and lows are pooled, clustered into price levels, and split
into support and resistance by where the latest close sits.
"""

from dataclasses import dataclass
from typing import Sequence

from quantdash.analysis.models import PriceBar, SRLevels

# Proximity band (fraction of price) for the S/R score.
SR_PROXIMITY = 0.02
MAX_LEVELS = 3


@dataclass(frozen=True)
class Pivot:
    """A local extremum relative to a symmetric window."""

    index: int
    price: float
    kind: str  # "high" or "low"


def find_pivots(bars: Sequence[PriceBar], lookback: int = 5) -> list[Pivot]:
    """Identify pivot highs and lows.

    Bar *i* (``lookback <= i < len - lookback``) is a pivot high if its high
    is strictly greater than every other high in ``[i - lookback, i + lookback]``,
    and a pivot low under the mirrored rule.  Equal extremes disqualify.
    """
    pivots: list[Pivot] = []
    for i in range(lookback, len(bars) - lookback):
        high = bars[i].high
        low = bars[i].low
        is_high = True
        is_low = True
        for j in range(i - lookback, i + lookback + 1):
            if j == i:
                continue
            if bars[j].high >= high:
                is_high = False
            if bars[j].low <= low:
                is_low = False
            if not is_high and not is_low:
                break
        if is_high:
            pivots.append(Pivot(index=i, price=high, kind="high"))
        if is_low:
            pivots.append(Pivot(index=i, price=low, kind="low"))
    return pivots


def cluster_price_levels(
    prices: Sequence[float], tolerance: float = 0.02
) -> list[float]:
    """Cluster nearby prices into levels.

    Prices are visited in ascending order.  A price joins the current
    cluster while its distance from the running cluster mean is below
    *tolerance* relative to that mean; otherwise it opens a new cluster.
    Clusters with fewer than two members are dropped.

    Returns the cluster means, ascending.
    """
    if not prices:
        return []

    sorted_prices = sorted(prices)
    clusters: list[list[float]] = [[sorted_prices[0]]]
    for price in sorted_prices[1:]:
        current = clusters[-1]
        mean = sum(current) / len(current)
        if mean != 0 and abs(price - mean) / mean < tolerance:
            current.append(price)
        else:
            clusters.append([price])

    return sorted(sum(c) / len(c) for c in clusters if len(c) >= 2)


def calculate_support_resistance(
    bars: Sequence[PriceBar],
    lookback: int = 5,
    tolerance: float = 0.015,
) -> SRLevels:
    """Detect the nearest support and resistance levels.

    Args:
        bars: Price history, oldest first.
        lookback: Half-window size for pivot detection.
        tolerance: Relative clustering tolerance.

    Returns:
        ``SRLevels`` with up to three levels each side, nearest first.
        Empty when fewer than ``lookback × 3`` bars are supplied.
    """
    if len(bars) < lookback * 3:
        return SRLevels()

    pivots = find_pivots(bars, lookback)
    levels = cluster_price_levels([p.price for p in pivots], tolerance)
    current_price = bars[-1].close

    support = sorted((lv for lv in levels if lv < current_price), reverse=True)
    resistance = sorted(lv for lv in levels if lv > current_price)
    return SRLevels(
        support=support[:MAX_LEVELS],
        resistance=resistance[:MAX_LEVELS],
    )


def calculate_sr_score(
    current_price: float,
    levels: SRLevels,
    volume_increasing: bool,
) -> int:
    """Score the price position against the nearest levels (±10).

    * Within 2 % above the nearest support → +10 on rising volume, else +5.
    * Within 2 % below the nearest resistance → −10 on rising volume
      (rejection with distribution), else −5.

    Returns 0 when no levels exist.
    """
    if not levels.support and not levels.resistance:
        return 0
    if current_price == 0:
        return 0

    score = 0
    if levels.support:
        dist = (current_price - levels.support[0]) / current_price
        if 0 <= dist < SR_PROXIMITY:
            score += 10 if volume_increasing else 5

    if levels.resistance:
        dist = (levels.resistance[0] - current_price) / current_price
        if 0 <= dist < SR_PROXIMITY:
            score -= 10 if volume_increasing else 5

    return max(-10, min(10, score))
