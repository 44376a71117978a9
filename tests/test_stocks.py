"""Tests for quantdash.market.stocks — directory loading, caching and search."""

import asyncio

import pytest

from quantdash.analysis.models import StockInfo
from quantdash.data.cache import TTLCache
from quantdash.data.errors import DataFetchError, ErrorKind
from quantdash.market.stocks import DEFAULT_RESULTS, MAX_RESULTS, StockDirectory, search_stocks
from quantdash.tushare.client import TushareTable

FIELDS = ["ts_code", "symbol", "name", "area", "industry", "list_date"]


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakeStockListClient:
    def __init__(self, rows=None, error: Exception = None) -> None:
        self.rows = rows if rows is not None else [
            ["000001.SZ", "000001", "平安银行", "深圳", "银行", "19910403"],
            ["600519.SH", "600519", "贵州茅台", "贵州", "白酒", "20010827"],
            ["300750.SZ", "300750", "宁德时代", "福建", "电池", "20180611"],
        ]
        self.error = error
        self.calls = 0

    async def get_stock_basic(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return TushareTable(FIELDS, self.rows)


def _stocks(n: int) -> list[StockInfo]:
    return [StockInfo(f"{i:06d}.SZ", f"{i:06d}", f"股票{i}") for i in range(n)]


# ── Search ───────────────────────────────────────────────────────────────


class TestSearchStocks:
    STOCKS = [
        StockInfo("000001.SZ", "000001", "平安银行"),
        StockInfo("600519.SH", "600519", "贵州茅台"),
        StockInfo("688981.SH", "688981", "中芯国际"),
        StockInfo("000002.SZ", "000002", "万科A"),
    ]

    def test_matches_ts_code_case_insensitive(self):
        assert [s.ts_code for s in search_stocks(self.STOCKS, "sh")] == ["600519.SH", "688981.SH"]

    def test_matches_symbol(self):
        assert [s.ts_code for s in search_stocks(self.STOCKS, "0000")] == ["000001.SZ", "000002.SZ"]

    def test_matches_name(self):
        assert [s.name for s in search_stocks(self.STOCKS, "茅台")] == ["贵州茅台"]

    def test_name_match_ignores_case_and_whitespace(self):
        assert [s.name for s in search_stocks(self.STOCKS, "  万科a ")] == ["万科A"]

    def test_no_match(self):
        assert search_stocks(self.STOCKS, "zzz") == []

    @pytest.mark.parametrize("keyword", ["", "   ", None])
    def test_blank_returns_head(self, keyword):
        stocks = _stocks(30)
        assert search_stocks(stocks, keyword) == stocks[:DEFAULT_RESULTS]

    def test_results_capped(self):
        assert len(search_stocks(_stocks(120), ".sz")) == MAX_RESULTS


# ── Directory ────────────────────────────────────────────────────────────


class TestStockDirectory:
    @pytest.mark.asyncio
    async def test_load_parses_table(self):
        directory = StockDirectory(FakeStockListClient())

        stocks = await directory.load()

        assert len(stocks) == 3
        assert stocks[1] == StockInfo("600519.SH", "600519", "贵州茅台", "贵州", "白酒", "20010827")
        assert directory.loaded

    @pytest.mark.asyncio
    async def test_loaded_once(self):
        upstream = FakeStockListClient()
        directory = StockDirectory(upstream)

        await directory.search("茅台")
        results = await directory.search("宁德")

        assert [s.ts_code for s in results] == ["300750.SZ"]
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_loads_share_request(self):
        upstream = FakeStockListClient()
        directory = StockDirectory(upstream)

        first, second = await asyncio.gather(directory.load(), directory.load())

        assert first == second
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_reloads_after_ttl(self):
        clock = FakeClock()
        upstream = FakeStockListClient()
        directory = StockDirectory(upstream, cache=TTLCache(max_entries=1, clock=clock), ttl=60)

        await directory.load()
        clock.now += 61
        await directory.load()

        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_clear_forces_reload(self):
        upstream = FakeStockListClient()
        directory = StockDirectory(upstream)

        await directory.load()
        directory.clear()
        assert not directory.loaded
        await directory.load()

        assert upstream.calls == 2

    @pytest.mark.asyncio
    async def test_empty_list_is_nodata(self):
        upstream = FakeStockListClient(rows=[])
        directory = StockDirectory(upstream)

        with pytest.raises(DataFetchError) as exc_info:
            await directory.load()
        assert exc_info.value.kind == ErrorKind.NODATA
        assert exc_info.value.detail == "股票列表为空，请检查 Token 权限"
        assert not directory.loaded
        assert upstream.calls == 1

    @pytest.mark.asyncio
    async def test_auth_failure_not_cached(self):
        upstream = FakeStockListClient(error=DataFetchError(ErrorKind.AUTH))
        directory = StockDirectory(upstream)

        with pytest.raises(DataFetchError):
            await directory.search("茅台")

        upstream.error = None
        assert len(await directory.search("")) == 3
