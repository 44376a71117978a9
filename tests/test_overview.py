"""Tests for quantdash.market.overview — trade date resolution and part assembly."""

from datetime import datetime

import pytest

from quantdash.data.errors import DataFetchError, ErrorKind
from quantdash.market.overview import (
    MAJOR_INDICES,
    fetch_breadth,
    fetch_margin,
    fetch_market_overview,
    fetch_market_stats,
    fetch_northbound,
    recent_trade_date,
)
from quantdash.tushare.client import TushareTable
from quantdash.tushare.parsers import BEIJING


def _table(fields, rows) -> TushareTable:
    return TushareTable(fields=list(fields), items=[list(r) for r in rows])


class FakeTushareClient:
    """Canned Tushare tables; any endpoint named in *failures* raises instead."""

    def __init__(self, failures: dict = None, north_money: float = 5_000.0) -> None:
        self.failures = failures or {}
        self.north_money = north_money
        self.calls: list[str] = []

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    async def get_index_daily(self, ts_code, start_date, end_date):
        self._maybe_fail("index_daily")
        fields = ["ts_code", "trade_date", "open", "high", "low", "close",
                  "pre_close", "change", "pct_chg", "vol", "amount"]
        return _table(fields, [
            [ts_code, "20240103", 100.0, 102.0, 99.0, 101.0, 100.0, 1.0, 1.0, 1e6, 1e7],
            [ts_code, "20240102", 99.0, 101.0, 98.0, 100.0, 99.0, 1.0, 1.01, 1e6, 1e7],
        ])

    async def get_daily_all(self, trade_date):
        self._maybe_fail("daily")
        return _table(["ts_code", "pct_chg"], [
            ["600000.SH", 10.0],    # main board limit up
            ["600001.SH", 9.6],     # main board limit up
            ["300001.SZ", 10.0],    # ChiNext: up, not at limit
            ["688001.SH", 19.8],    # STAR limit up
            ["000001.SZ", -9.7],    # main board limit down
            ["300002.SZ", -19.6],   # ChiNext limit down
            ["600002.SH", 0.0],
            ["600003.SH", None],
        ])

    async def get_moneyflow_hsgt(self, start_date, end_date):
        self._maybe_fail("moneyflow_hsgt")
        return _table(["trade_date", "hgt", "sgt", "north_money"], [
            ["20240103", 2_000.0, 3_000.0, self.north_money],
            ["20240102", 1_000.0, 1_000.0, 2_000.0],
        ])

    async def get_margin(self, start_date, end_date):
        self._maybe_fail("margin")
        fields = ["trade_date", "exchange_id", "rzye", "rzmre", "rzche", "rqye", "rzrqye"]
        return _table(fields, [
            ["20240102", "SSE", 8e11, 5e10, 4e10, 1e10, 8.1e11],
            ["20240102", "SZSE", 7e11, 4e10, 3e10, 1e10, 7.1e11],
        ])

    async def get_daily_info(self, trade_date):
        self._maybe_fail("daily_info")
        fields = ["trade_date", "ts_code", "ts_name", "com_count", "total_mv",
                  "amount", "vol", "pe", "tr"]
        return _table(fields, [
            [trade_date, "SH_A", "上海A股", 1700, 5e5, 4e3, 3e2, 13.0, 0.9],
            [trade_date, "SH_FUND", "上海基金", 600, 1e4, 1e3, 1e2, 0.0, 2.0],
        ])


# ── Trade date ───────────────────────────────────────────────────────────


class TestRecentTradeDate:
    @pytest.mark.parametrize(
        "now, expected",
        [
            (datetime(2024, 1, 3, 17, 0, tzinfo=BEIJING), "20240103"),   # Wed after close
            (datetime(2024, 1, 3, 10, 0, tzinfo=BEIJING), "20240102"),   # Wed morning
            (datetime(2024, 1, 8, 9, 0, tzinfo=BEIJING), "20240105"),    # Mon morning → Fri
            (datetime(2024, 1, 6, 18, 0, tzinfo=BEIJING), "20240105"),   # Saturday
            (datetime(2024, 1, 7, 18, 0, tzinfo=BEIJING), "20240105"),   # Sunday
        ],
    )
    def test_resolution(self, now, expected):
        assert recent_trade_date(now) == expected


# ── Parts ────────────────────────────────────────────────────────────────


class TestParts:
    @pytest.mark.asyncio
    async def test_breadth_limit_thresholds(self):
        breadth = await fetch_breadth(FakeTushareClient(), "20240103")
        assert breadth.advance_count == 4
        assert breadth.decline_count == 2
        assert breadth.flat_count == 2
        assert breadth.limit_up_count == 3
        assert breadth.limit_down_count == 2
        assert breadth.total_count == 8

    @pytest.mark.asyncio
    async def test_northbound_sorted_in_million_yuan(self):
        flows = await fetch_northbound(FakeTushareClient(), "20240103")
        assert [f.date for f in flows] == ["20240102", "20240103"]
        assert flows[-1].north_money == pytest.approx(5_000.0)

    @pytest.mark.asyncio
    async def test_northbound_rescaled_from_ten_thousand_yuan(self):
        flows = await fetch_northbound(FakeTushareClient(north_money=600_000.0), "20240103")
        assert flows[-1].north_money == pytest.approx(6_000.0)
        assert flows[-1].hgt == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_margin_summed_in_hundred_million(self):
        margin = await fetch_margin(FakeTushareClient(), "20240103")
        assert len(margin) == 1
        m = margin[0]
        assert m.rzye == pytest.approx(15_000.0)
        assert m.rzmre == pytest.approx(900.0)
        assert m.rzche == pytest.approx(700.0)
        assert m.rzjmr == pytest.approx(200.0)

    @pytest.mark.asyncio
    async def test_stats_keep_segments_only(self):
        stats = await fetch_market_stats(FakeTushareClient(), "20240103")
        assert [s.ts_code for s in stats] == ["SH_A"]
        assert stats[0].name == "上海A股"


# ── Overview ─────────────────────────────────────────────────────────────


class TestFetchMarketOverview:
    @pytest.mark.asyncio
    async def test_all_parts(self):
        overview = await fetch_market_overview(FakeTushareClient(), "20240103")
        assert overview.date == "20240103"
        assert [i.ts_code for i in overview.indices] == [code for code, _ in MAJOR_INDICES]
        assert overview.indices[0].pct_chg == pytest.approx(1.0)
        assert [d for d, _ in overview.indices[0].history] == ["20240102", "20240103"]
        assert overview.breadth.total_count == 8
        assert len(overview.northbound) == 2
        assert len(overview.margin) == 1
        assert len(overview.stats) == 1

    @pytest.mark.asyncio
    async def test_failed_part_degrades(self):
        client = FakeTushareClient(failures={"margin": DataFetchError(ErrorKind.NETWORK)})
        overview = await fetch_market_overview(client, "20240103")
        assert overview.margin == []
        assert overview.breadth.total_count == 8

    @pytest.mark.asyncio
    async def test_failed_breadth_defaults(self):
        client = FakeTushareClient(failures={"daily": DataFetchError(ErrorKind.API)})
        overview = await fetch_market_overview(client, "20240103")
        assert overview.breadth.total_count == 0
        assert overview.breadth.date == "20240103"

    @pytest.mark.asyncio
    async def test_credential_failure_propagates(self):
        client = FakeTushareClient(failures={"daily": DataFetchError(ErrorKind.AUTH)})
        with pytest.raises(DataFetchError) as exc_info:
            await fetch_market_overview(client, "20240103")
        assert exc_info.value.kind == ErrorKind.AUTH

    @pytest.mark.asyncio
    async def test_every_part_failing_raises(self):
        error = DataFetchError(ErrorKind.NETWORK)
        client = FakeTushareClient(failures={
            name: error
            for name in ("index_daily", "daily", "moneyflow_hsgt", "margin", "daily_info")
        })
        with pytest.raises(DataFetchError):
            await fetch_market_overview(client, "20240103")

    @pytest.mark.asyncio
    async def test_serialises(self):
        overview = await fetch_market_overview(FakeTushareClient(), "20240103")
        data = overview.to_dict()
        assert data["indices"][0]["history"][0] == ["20240102", 100.0]
        assert data["breadth"]["limit_up_count"] == 3
