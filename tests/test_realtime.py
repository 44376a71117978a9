"""Tests for quantdash.market.realtime — trading session window and polling."""

import asyncio
from datetime import datetime, timezone

import pytest

from quantdash.analysis.models import PriceBar
from quantdash.market.realtime import RealtimeRefresher, is_trading_time
from quantdash.tushare.parsers import BEIJING

# 2024-01-03 is a Wednesday.
OPEN_NOW = datetime(2024, 1, 3, 10, 0, tzinfo=BEIJING)
CLOSED_NOW = datetime(2024, 1, 3, 20, 0, tzinfo=BEIJING)


def _bar(close: float = 10.0) -> PriceBar:
    return PriceBar(timestamp=0, open=close, high=close, low=close, close=close, volume=100.0)


class GatedFetch:
    def __init__(self, bar: PriceBar = None) -> None:
        self.calls: list[str] = []
        self.bar = bar or _bar()
        self.gate = asyncio.Event()

    async def __call__(self, ts_code: str):
        self.calls.append(ts_code)
        await self.gate.wait()
        return self.bar


# ── Session window ───────────────────────────────────────────────────────


class TestIsTradingTime:
    @pytest.mark.parametrize(
        "hour, minute, expected",
        [
            (9, 24, False),
            (9, 25, True),
            (10, 30, True),
            (11, 31, True),
            (11, 32, False),
            (12, 58, False),
            (12, 59, True),
            (15, 1, True),
            (15, 2, False),
        ],
    )
    def test_weekday_boundaries(self, hour, minute, expected):
        assert is_trading_time(datetime(2024, 1, 3, hour, minute, tzinfo=BEIJING)) is expected

    def test_weekend(self):
        assert is_trading_time(datetime(2024, 1, 6, 10, 0, tzinfo=BEIJING)) is False

    def test_converts_from_utc(self):
        # 01:30 UTC == 09:30 Beijing
        assert is_trading_time(datetime(2024, 1, 3, 1, 30, tzinfo=timezone.utc)) is True


# ── Refresher ────────────────────────────────────────────────────────────


class TestRealtimeRefresher:
    @pytest.mark.asyncio
    async def test_tick_outside_trading_time(self):
        fetch = GatedFetch()
        refresher = RealtimeRefresher(fetch, now=lambda: CLOSED_NOW)
        refresher.start("600519.SH")

        assert await refresher.tick() is None
        assert fetch.calls == []

    @pytest.mark.asyncio
    async def test_tick_accepts_bar(self):
        fetch = GatedFetch(_bar(11.0))
        fetch.gate.set()
        received = []
        refresher = RealtimeRefresher(fetch, now=lambda: OPEN_NOW, on_bar=received.append)
        refresher.start("600519.SH")

        bar = await refresher.tick()

        assert bar.close == 11.0
        assert refresher.latest_bar is bar
        assert received == [bar]
        assert fetch.calls == ["600519.SH"]

    @pytest.mark.asyncio
    async def test_tick_without_subject(self):
        fetch = GatedFetch()
        refresher = RealtimeRefresher(fetch, now=lambda: OPEN_NOW)
        assert await refresher.tick() is None
        assert fetch.calls == []

    @pytest.mark.asyncio
    async def test_skips_while_fetch_outstanding(self):
        fetch = GatedFetch()
        refresher = RealtimeRefresher(fetch, now=lambda: OPEN_NOW)
        refresher.start("600519.SH")

        first = asyncio.ensure_future(refresher.tick())
        await asyncio.sleep(0)
        assert refresher.busy

        assert await refresher.tick() is None
        fetch.gate.set()
        assert (await first) is not None
        assert len(fetch.calls) == 1
        assert not refresher.busy

    @pytest.mark.asyncio
    async def test_discards_result_after_subject_change(self):
        fetch = GatedFetch()
        refresher = RealtimeRefresher(fetch, now=lambda: OPEN_NOW)
        refresher.start("600519.SH")

        pending = asyncio.ensure_future(refresher.tick())
        await asyncio.sleep(0)
        refresher.start("000001.SZ")
        fetch.gate.set()

        assert await pending is None
        assert refresher.latest_bar is None

    @pytest.mark.asyncio
    async def test_discards_result_after_stop(self):
        fetch = GatedFetch()
        refresher = RealtimeRefresher(fetch, now=lambda: OPEN_NOW)
        refresher.start("600519.SH")

        pending = asyncio.ensure_future(refresher.tick())
        await asyncio.sleep(0)
        refresher.stop()
        fetch.gate.set()

        assert await pending is None
        assert refresher.latest_bar is None

    @pytest.mark.asyncio
    async def test_discards_result_after_stop_and_restart(self):
        fetch = GatedFetch()
        received = []
        refresher = RealtimeRefresher(fetch, now=lambda: OPEN_NOW, on_bar=received.append)
        refresher.start("600519.SH")

        pending = asyncio.ensure_future(refresher.tick())
        await asyncio.sleep(0)
        refresher.stop()
        refresher.start("600519.SH")
        fetch.gate.set()

        assert await pending is None
        assert refresher.latest_bar is None
        assert received == []

    @pytest.mark.asyncio
    async def test_repeated_start_keeps_pending_result(self):
        fetch = GatedFetch(_bar(12.0))
        refresher = RealtimeRefresher(fetch, now=lambda: OPEN_NOW)
        refresher.start("600519.SH")

        pending = asyncio.ensure_future(refresher.tick())
        await asyncio.sleep(0)
        refresher.start("600519.SH")
        fetch.gate.set()

        bar = await pending
        assert bar.close == 12.0
        assert refresher.latest_bar is bar

    @pytest.mark.asyncio
    async def test_fetch_error_swallowed(self):
        async def _fail(ts_code):
            raise RuntimeError("boom")

        refresher = RealtimeRefresher(_fail, now=lambda: OPEN_NOW)
        refresher.start("600519.SH")

        assert await refresher.tick() is None
        assert not refresher.busy

    @pytest.mark.asyncio
    async def test_run_until_max_ticks(self):
        fetch = GatedFetch()
        fetch.gate.set()
        received = []
        refresher = RealtimeRefresher(
            fetch, interval=0.0, now=lambda: OPEN_NOW, on_bar=received.append
        )
        refresher.start("600519.SH")

        await refresher.run(max_ticks=3)

        assert 1 <= len(fetch.calls) <= 3
        assert len(received) == len(fetch.calls)
        assert refresher.latest_bar is not None

    @pytest.mark.asyncio
    async def test_run_does_nothing_when_stopped(self):
        fetch = GatedFetch()
        refresher = RealtimeRefresher(fetch, now=lambda: OPEN_NOW)
        await refresher.run(max_ticks=3)
        assert fetch.calls == []
