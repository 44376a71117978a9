"""Market sentiment — weighted composite of breadth and flow, pure functions.

Each component is normalised to 0–100 independently:

    涨跌比    advance/decline ratio        0.25
    涨停率    limit-up rate, 0–3 % ramp    0.15
    跌停率    limit-down rate, inverted    0.15
    指数趋势  mean index pct change ±3 %   0.20
    北向资金  northbound net flow ±100亿   0.15
    成交量    volume (neutral placeholder) 0.10
"""

from quantdash.analysis.indicators import round_half_up
from quantdash.analysis.models import (
    MarketOverview,
    SentimentComponent,
    SentimentLevel,
    SentimentScore,
)

# Limit rates at or beyond this share of the market saturate the ramp.
LIMIT_RATE_CAP = 0.03
INDEX_PCT_RANGE = 3.0
# ±10000 million yuan (±100亿)
NORTHBOUND_RANGE = 10_000.0

SENTIMENT_LABELS: dict[SentimentLevel, str] = {
    SentimentLevel.HOT: "沸点",
    SentimentLevel.WARM: "活跃",
    SentimentLevel.NEUTRAL: "正常",
    SentimentLevel.COLD: "低迷",
    SentimentLevel.FREEZING: "冰点",
}


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def score_advance_decline(overview: MarketOverview) -> float:
    b = overview.breadth
    total = b.advance_count + b.decline_count + b.flat_count
    if total == 0:
        return 50.0
    return _clamp(b.advance_count / total * 100)


def score_limit_up(overview: MarketOverview) -> float:
    b = overview.breadth
    if b.total_count == 0:
        return 0.0
    rate = b.limit_up_count / b.total_count
    return _clamp(rate / LIMIT_RATE_CAP * 100)


def score_limit_down(overview: MarketOverview) -> float:
    b = overview.breadth
    if b.total_count == 0:
        return 100.0
    rate = b.limit_down_count / b.total_count
    return _clamp(100 - rate / LIMIT_RATE_CAP * 100)


def score_index_trend(overview: MarketOverview) -> float:
    """Mean index pct change mapped linearly from −3 % → 0 to +3 % → 100."""
    if not overview.indices:
        return 50.0
    avg = sum(i.pct_chg for i in overview.indices) / len(overview.indices)
    return _clamp((avg + INDEX_PCT_RANGE) / (2 * INDEX_PCT_RANGE) * 100)


def score_northbound(overview: MarketOverview) -> float:
    """Latest day's net northbound flow mapped from −100亿 → 0 to +100亿 → 100."""
    if not overview.northbound:
        return 50.0
    flow = overview.northbound[-1].north_money
    return _clamp((flow + NORTHBOUND_RANGE) / (2 * NORTHBOUND_RANGE) * 100)


def score_volume(overview: MarketOverview) -> float:
    # Neutral until historical turnover is available to compare against.
    return 50.0


def classify_sentiment(total: int) -> SentimentLevel:
    if total >= 80:
        return SentimentLevel.HOT
    if total >= 60:
        return SentimentLevel.WARM
    if total >= 40:
        return SentimentLevel.NEUTRAL
    if total >= 20:
        return SentimentLevel.COLD
    return SentimentLevel.FREEZING


def compute_sentiment(overview: MarketOverview) -> SentimentScore:
    """Compute the weighted sentiment score for a market snapshot."""
    components = [
        SentimentComponent("涨跌比", score_advance_decline(overview), 0.25),
        SentimentComponent("涨停率", score_limit_up(overview), 0.15),
        SentimentComponent("跌停率", score_limit_down(overview), 0.15),
        SentimentComponent("指数趋势", score_index_trend(overview), 0.20),
        SentimentComponent("北向资金", score_northbound(overview), 0.15),
        SentimentComponent("成交量", score_volume(overview), 0.10),
    ]

    total = round_half_up(sum(c.value * c.weight for c in components))
    level = classify_sentiment(total)
    return SentimentScore(
        total=total,
        level=level,
        label=SENTIMENT_LABELS[level],
        components=components,
    )
