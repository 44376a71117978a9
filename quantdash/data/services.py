"""Data services — cached, coalesced access to price series and market data.

Each service owns its cache and in-flight map.  A cache hit returns
immediately; a miss (or a forced refresh) goes through the request
coordinator, and only a successful fetch writes back into the cache.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, Optional, TypeVar

from quantdash.analysis.models import (
    AnalysisResult,
    MarketOverview,
    PriceBar,
    SentimentScore,
    Timeframe,
)
from quantdash.analysis.sentiment import compute_sentiment
from quantdash.analysis.signal_engine import run_analysis
from quantdash.config import Config, cache_ttl_for
from quantdash.data.cache import TTLCache
from quantdash.data.coordinator import CancellationToken, RequestCoordinator
from quantdash.data.errors import DataFetchError, ErrorKind
from quantdash.market.overview import fetch_market_overview, format_date, recent_trade_date
from quantdash.tushare.client import TushareClient
from quantdash.tushare.parsers import (
    BEIJING,
    merge_realtime_bar,
    parse_daily_bars,
    parse_minute_bars,
    parse_realtime_bar,
)

logger = logging.getLogger("quantdash")

T = TypeVar("T")

DAILY_HISTORY_DAYS = 500

NODATA_DETAIL = "无数据返回，请检查股票代码或 Token 权限"


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """A payload with its provenance.

    ``fetched_at`` is the epoch-seconds time the payload was fetched
    upstream, also for cache hits.
    """

    payload: T
    from_cache: bool
    fetched_at: float


def _fetched_at(cache: TTLCache, key: tuple) -> float:
    # The request that produced the payload stored it on success.
    entry = cache.get_entry(key)
    return entry.created_at if entry is not None else time.time()


class StockDataService:
    """Price series and single-stock analysis.

    Args:
        client: Tushare client.
        config: Application configuration.
        coordinator: Request coordinator (a fresh one by default).
        cache: Bar cache keyed by ``(ts_code, timeframe)``.
        history_days: Calendar days of daily history to request.
    """

    def __init__(
        self,
        client: TushareClient,
        config: Config,
        *,
        coordinator: Optional[RequestCoordinator] = None,
        cache: Optional[TTLCache[list[PriceBar]]] = None,
        history_days: int = DAILY_HISTORY_DAYS,
    ) -> None:
        self._client = client
        self._config = config
        self._coordinator = coordinator if coordinator is not None else RequestCoordinator()
        self._cache: TTLCache[list[PriceBar]] = (
            cache if cache is not None else TTLCache(max_entries=config.kline_cache_max_entries)
        )
        self._history_days = history_days

    async def get_bars(
        self,
        ts_code: str,
        timeframe: Timeframe = Timeframe.DAILY,
        *,
        force_refresh: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> FetchResult[list[PriceBar]]:
        """Return bars for *ts_code*, oldest first.

        Raises:
            DataFetchError: ``nodata`` for an empty series, otherwise the
                classified upstream failure.
            RequestCancelled: If *token* is cancelled before the result.
        """
        key = (ts_code, timeframe)
        if not force_refresh:
            entry = self._cache.get_entry(key)
            if entry is not None:
                if token is not None:
                    token.raise_if_cancelled()
                return FetchResult(entry.payload, True, entry.created_at)

        ttl = cache_ttl_for(timeframe)

        def _store(bars: list[PriceBar]) -> None:
            self._cache.set(key, bars, ttl)

        bars = await self._coordinator.run(
            key,
            lambda: self._fetch_bars(ts_code, timeframe),
            force=force_refresh,
            token=token,
            on_success=_store,
        )
        return FetchResult(bars, False, _fetched_at(self._cache, key))

    async def get_analysis(
        self,
        ts_code: str,
        timeframe: Timeframe = Timeframe.DAILY,
        *,
        force_refresh: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> FetchResult[Optional[AnalysisResult]]:
        """Analyse the latest bar; the payload is ``None`` below 60 bars."""
        bars = await self.get_bars(ts_code, timeframe, force_refresh=force_refresh, token=token)
        analysis = run_analysis(bars.payload, self._config.risk_fraction)
        return FetchResult(analysis, bars.from_cache, bars.fetched_at)

    async def get_realtime_bar(self, ts_code: str) -> Optional[PriceBar]:
        """Today's snapshot bar, or ``None`` when there is no trading volume."""
        table = await self._client.get_realtime_daily(ts_code)
        bar = parse_realtime_bar(table)
        if bar is None or bar.volume <= 0:
            return None
        return bar

    def clear(self) -> None:
        self._cache.clear()
        self._coordinator.clear()

    # ── Upstream ─────────────────────────────────────────────────────────

    async def _fetch_bars(self, ts_code: str, timeframe: Timeframe) -> list[PriceBar]:
        if timeframe is Timeframe.DAILY:
            bars = await self._fetch_daily(ts_code)
        else:
            table = await self._client.get_minutes(ts_code, timeframe.value)
            bars = parse_minute_bars(table)

        if not bars:
            raise DataFetchError(ErrorKind.NODATA, detail=NODATA_DETAIL)
        logger.info("Fetched %d %s bars for %s", len(bars), timeframe.value, ts_code)
        return bars

    async def _fetch_daily(self, ts_code: str) -> list[PriceBar]:
        today = datetime.now(BEIJING)
        start = format_date(today - timedelta(days=self._history_days))

        history, realtime = await asyncio.gather(
            self._client.get_daily(ts_code, start, format_date(today)),
            self.get_realtime_bar(ts_code),
            return_exceptions=True,
        )
        if isinstance(history, BaseException):
            raise history
        if isinstance(realtime, BaseException):
            # Outside trading hours rt_k may be empty or refused.
            logger.debug("Realtime bar for %s unavailable: %s", ts_code, realtime)
            realtime = None
        return merge_realtime_bar(parse_daily_bars(history), realtime)


class MarketDataService:
    """Market overview and sentiment, cached per trade date."""

    def __init__(
        self,
        client: TushareClient,
        config: Config,
        *,
        coordinator: Optional[RequestCoordinator] = None,
        cache: Optional[TTLCache[MarketOverview]] = None,
    ) -> None:
        self._client = client
        self._coordinator = coordinator if coordinator is not None else RequestCoordinator()
        self._cache: TTLCache[MarketOverview] = (
            cache if cache is not None else TTLCache(max_entries=config.market_cache_max_entries)
        )
        self._ttl = config.market_cache_ttl_s

    async def get_overview(
        self,
        trade_date: Optional[str] = None,
        *,
        force_refresh: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> FetchResult[MarketOverview]:
        trade_date = trade_date or recent_trade_date()
        key = ("market", trade_date)
        if not force_refresh:
            entry = self._cache.get_entry(key)
            if entry is not None:
                if token is not None:
                    token.raise_if_cancelled()
                return FetchResult(entry.payload, True, entry.created_at)

        def _store(overview: MarketOverview) -> None:
            self._cache.set(key, overview, self._ttl)

        overview = await self._coordinator.run(
            key,
            lambda: fetch_market_overview(self._client, trade_date),
            force=force_refresh,
            token=token,
            on_success=_store,
        )
        return FetchResult(overview, False, _fetched_at(self._cache, key))

    async def get_sentiment(
        self,
        trade_date: Optional[str] = None,
        *,
        force_refresh: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> FetchResult[SentimentScore]:
        overview = await self.get_overview(trade_date, force_refresh=force_refresh, token=token)
        return FetchResult(compute_sentiment(overview.payload), overview.from_cache, overview.fetched_at)

    def clear(self) -> None:
        self._cache.clear()
        self._coordinator.clear()
