"""Tests for quantdash.analysis.sentiment — component scores and weighted composite."""

import pytest

from quantdash.analysis.models import (
    IndexQuote,
    MarketBreadth,
    MarketOverview,
    NorthboundFlow,
    SentimentLevel,
)
from quantdash.analysis.sentiment import (
    classify_sentiment,
    compute_sentiment,
    score_advance_decline,
    score_index_trend,
    score_limit_down,
    score_limit_up,
    score_northbound,
)


def _make_index(pct_chg: float) -> IndexQuote:
    return IndexQuote(
        ts_code="000001.SH", name="上证指数",
        close=3000.0, open=2990.0, high=3010.0, low=2980.0, pre_close=2990.0,
        change=10.0, pct_chg=pct_chg, vol=1e8, amount=1e9,
    )


def _make_overview(
    breadth: MarketBreadth = None,
    index_pcts=(),
    north_money=None,
) -> MarketOverview:
    northbound = []
    if north_money is not None:
        northbound = [NorthboundFlow(date="20240102", hgt=0.0, sgt=0.0, north_money=north_money)]
    return MarketOverview(
        date="20240102",
        indices=[_make_index(p) for p in index_pcts],
        breadth=breadth or MarketBreadth(date="20240102"),
        northbound=northbound,
    )


# ── Components ───────────────────────────────────────────────────────────


class TestComponents:
    def test_northbound_zero_is_neutral(self):
        assert score_northbound(_make_overview(north_money=0.0)) == pytest.approx(50.0)

    def test_northbound_saturates(self):
        assert score_northbound(_make_overview(north_money=25_000.0)) == 100.0
        assert score_northbound(_make_overview(north_money=-25_000.0)) == 0.0

    def test_northbound_uses_latest_day(self):
        overview = MarketOverview(
            date="20240103",
            indices=[],
            breadth=MarketBreadth(date="20240103"),
            northbound=[
                NorthboundFlow("20240102", 0.0, 0.0, -10_000.0),
                NorthboundFlow("20240103", 0.0, 0.0, 5_000.0),
            ],
        )
        assert score_northbound(overview) == pytest.approx(75.0)

    def test_advance_decline_ratio(self):
        breadth = MarketBreadth(date="d", advance_count=300, decline_count=100, flat_count=100, total_count=500)
        assert score_advance_decline(_make_overview(breadth)) == pytest.approx(60.0)

    def test_limit_up_rate_ramp(self):
        breadth = MarketBreadth(date="d", limit_up_count=15, total_count=1000)
        # 1.5 % of a 3 % cap
        assert score_limit_up(_make_overview(breadth)) == pytest.approx(50.0)

    def test_limit_down_rate_inverted(self):
        breadth = MarketBreadth(date="d", limit_down_count=60, total_count=1000)
        assert score_limit_down(_make_overview(breadth)) == 0.0

    def test_index_trend(self):
        assert score_index_trend(_make_overview(index_pcts=(1.0, 2.0))) == pytest.approx(75.0)
        assert score_index_trend(_make_overview(index_pcts=(-5.0,))) == 0.0

    def test_empty_snapshot_defaults(self):
        empty = _make_overview()
        assert score_advance_decline(empty) == 50.0
        assert score_limit_up(empty) == 0.0
        assert score_limit_down(empty) == 100.0
        assert score_index_trend(empty) == 50.0
        assert score_northbound(empty) == 50.0


# ── Composite ────────────────────────────────────────────────────────────


class TestComputeSentiment:
    def test_empty_snapshot_is_neutral(self):
        # 0.25·50 + 0.15·0 + 0.15·100 + 0.20·50 + 0.15·50 + 0.10·50 = 50
        score = compute_sentiment(_make_overview())
        assert score.total == 50
        assert score.level == SentimentLevel.NEUTRAL
        assert score.label == "正常"

    def test_hot_market(self):
        breadth = MarketBreadth(
            date="d", advance_count=3000, decline_count=1000, flat_count=0,
            limit_up_count=120, limit_down_count=0, total_count=4000,
        )
        score = compute_sentiment(_make_overview(breadth, index_pcts=(1.5,), north_money=5_000.0))
        assert score.total == 80
        assert score.level == SentimentLevel.HOT
        assert score.label == "沸点"

    def test_half_point_total_rounds_up(self):
        # 0.25·52 + 0.15·0 + 0.15·100 + 0.20·50 + 0.15·50 + 0.10·50 = 50.5
        breadth = MarketBreadth(date="d", advance_count=52, decline_count=48, total_count=100)
        score = compute_sentiment(_make_overview(breadth))
        assert score.total == 51
        assert score.level == SentimentLevel.NEUTRAL

    def test_components_and_weights(self):
        score = compute_sentiment(_make_overview())
        assert [c.name for c in score.components] == [
            "涨跌比", "涨停率", "跌停率", "指数趋势", "北向资金", "成交量",
        ]
        assert sum(c.weight for c in score.components) == pytest.approx(1.0)
        for c in score.components:
            assert 0.0 <= c.value <= 100.0

    @pytest.mark.parametrize(
        "total, level",
        [
            (80, SentimentLevel.HOT),
            (79, SentimentLevel.WARM),
            (60, SentimentLevel.WARM),
            (59, SentimentLevel.NEUTRAL),
            (40, SentimentLevel.NEUTRAL),
            (39, SentimentLevel.COLD),
            (20, SentimentLevel.COLD),
            (19, SentimentLevel.FREEZING),
        ],
    )
    def test_classification(self, total, level):
        assert classify_sentiment(total) == level
