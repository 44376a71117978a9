"""Trade plan generation — stop-loss, target and size from a signal. Pure math, no I/O.

Stop:   2 × ATR(14) from the latest close, against the trade.
Target: the nearest S/R level in the profit direction when it lies beyond
        a 1:1 reward distance, otherwise a 2:1 multiple of the risk.
"""

from typing import Optional, Sequence

from quantdash.analysis.atr import calculate_atr_stop_loss
from quantdash.analysis.models import (
    PriceBar,
    SignalLevel,
    SignalScore,
    SRLevels,
    TradePlan,
)
from quantdash.risk.position_sizer import calculate_position_size

STOP_ATR_MULTIPLIER = 2.0
FALLBACK_RR_RATIO = 2.0


def calculate_target(
    entry_price: float,
    direction: str,
    risk: float,
    levels: SRLevels,
) -> float:
    """Pick the profit target for a trade.

    Args:
        entry_price: Trade entry price.
        direction: ``"long"`` or ``"short"``.
        risk: Distance from entry to stop (non-negative).
        levels: Current support/resistance levels.

    Returns:
        The nearest resistance (long) or support (short) if it is farther
        than *risk* from entry, otherwise ``entry ± 2 × risk``.

    Raises:
        ValueError: If *direction* is not ``"long"`` or ``"short"``.
    """
    if direction == "long":
        if levels.resistance and levels.resistance[0] > entry_price + risk:
            return levels.resistance[0]
        return entry_price + risk * FALLBACK_RR_RATIO
    if direction == "short":
        if levels.support and levels.support[0] < entry_price - risk:
            return levels.support[0]
        return entry_price - risk * FALLBACK_RR_RATIO
    raise ValueError(f"direction must be 'long' or 'short', got '{direction}'")


def generate_trade_plan(
    bars: Sequence[PriceBar],
    signal: SignalScore,
    levels: SRLevels,
    risk_fraction: float = 0.02,
) -> Optional[TradePlan]:
    """Derive a trade plan from a directional signal.

    Returns ``None`` for a neutral signal, or when ATR is not yet defined.
    Prices are rounded to 2 dp, the R:R ratio to 2 dp, ATR to 3 dp and the
    position percentage to 1 dp.
    """
    if signal.level == SignalLevel.NEUTRAL:
        return None

    atr_stop = calculate_atr_stop_loss(bars, multiplier=STOP_ATR_MULTIPLIER)
    if atr_stop is None:
        return None

    entry = bars[-1].close
    if signal.total > 0:
        direction = "long"
        stop_loss = atr_stop.long_stop_loss
    else:
        direction = "short"
        stop_loss = atr_stop.short_stop_loss

    risk = abs(entry - stop_loss)
    target = calculate_target(entry, direction, risk, levels)
    rr_ratio = abs(target - entry) / risk if risk > 0 else 0.0
    position_pct = calculate_position_size(entry, stop_loss, risk_fraction) * 100

    return TradePlan(
        entry_price=round(entry, 2),
        stop_loss=round(stop_loss, 2),
        target_price=round(target, 2),
        risk_reward_ratio=round(rr_ratio, 2),
        position_size_pct=round(position_pct, 1),
        atr_value=round(atr_stop.atr_value, 3),
        direction=direction,
    )
