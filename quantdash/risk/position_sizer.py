"""Position sizing — pure math, no I/O.

Sizes a position as a fraction of the portfolio so that hitting the stop
loses at most a fixed fraction of the entry notional.
"""

MAX_POSITION_FRACTION = 0.25


def calculate_position_size(
    entry_price: float,
    stop_loss: float,
    risk_fraction: float = 0.02,
) -> float:
    """Calculate position size as a fraction of the portfolio.

    Formula::

        risk_per_share = |entry_price − stop_loss|
        fraction       = risk_fraction × entry_price / risk_per_share

    capped at 25 % of the portfolio.

    Args:
        entry_price: Planned entry price.
        stop_loss: Stop-loss price.
        risk_fraction: Fraction of notional to risk per trade (0.02 = 2 %).

    Returns:
        Fraction in ``[0, 0.25]``.  A zero stop distance yields 0.

    Raises:
        ValueError: If *risk_fraction* is negative.
    """
    if risk_fraction < 0:
        raise ValueError(f"risk_fraction must be non-negative, got {risk_fraction}")

    risk_per_share = abs(entry_price - stop_loss)
    if risk_per_share == 0:
        return 0.0

    fraction = (risk_fraction * entry_price) / risk_per_share
    return max(0.0, min(fraction, MAX_POSITION_FRACTION))
