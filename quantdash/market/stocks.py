"""Stock directory — the listed-stock list, loaded once a day and searched locally.

Search never goes upstream: it filters whatever list is loaded, so callers
load the directory first (the API does this on the first search).
"""

import logging
from typing import Optional, Sequence

from quantdash.analysis.models import StockInfo
from quantdash.data.cache import TTLCache
from quantdash.data.coordinator import RequestCoordinator
from quantdash.data.errors import DataFetchError, ErrorKind
from quantdash.tushare.client import TushareClient
from quantdash.tushare.parsers import parse_stock_list

logger = logging.getLogger("quantdash")

STOCK_LIST_TTL_S = 24 * 60 * 60
DEFAULT_RESULTS = 20
MAX_RESULTS = 50

EMPTY_LIST_DETAIL = "股票列表为空，请检查 Token 权限"

_CACHE_KEY = "stock_basic"


def search_stocks(stocks: Sequence[StockInfo], keyword: Optional[str]) -> list[StockInfo]:
    """Case-insensitive substring match on ts_code, symbol or name.

    A blank keyword returns the first ``DEFAULT_RESULTS`` stocks; matches
    are capped at ``MAX_RESULTS`` in directory order.
    """
    kw = (keyword or "").strip().lower()
    if not kw:
        return list(stocks[:DEFAULT_RESULTS])

    matches = []
    for stock in stocks:
        if kw in stock.ts_code.lower() or kw in stock.symbol or kw in stock.name.lower():
            matches.append(stock)
            if len(matches) >= MAX_RESULTS:
                break
    return matches


class StockDirectory:
    """Cached listed-stock directory.

    Args:
        client: Tushare client.
        coordinator: Request coordinator (a fresh one by default).
        cache: Cache holding the list under a single key.
        ttl: Lifetime of a loaded list, in seconds.
    """

    def __init__(
        self,
        client: TushareClient,
        *,
        coordinator: Optional[RequestCoordinator] = None,
        cache: Optional[TTLCache[list[StockInfo]]] = None,
        ttl: float = STOCK_LIST_TTL_S,
    ) -> None:
        self._client = client
        self._coordinator = coordinator if coordinator is not None else RequestCoordinator()
        self._cache: TTLCache[list[StockInfo]] = cache if cache is not None else TTLCache(max_entries=1)
        self._ttl = ttl

    @property
    def loaded(self) -> bool:
        return _CACHE_KEY in self._cache

    async def load(self, *, force_refresh: bool = False) -> list[StockInfo]:
        """Return the directory, fetching it when missing or expired.

        Raises:
            DataFetchError: ``nodata`` for an empty list, otherwise the
                classified upstream failure.
        """
        if not force_refresh:
            cached = self._cache.get(_CACHE_KEY)
            if cached is not None:
                return cached

        def _store(stocks: list[StockInfo]) -> None:
            self._cache.set(_CACHE_KEY, stocks, self._ttl)

        return await self._coordinator.run(
            _CACHE_KEY, self._fetch, force=force_refresh, on_success=_store
        )

    async def search(self, keyword: Optional[str]) -> list[StockInfo]:
        return search_stocks(await self.load(), keyword)

    def clear(self) -> None:
        """Forget the loaded list (call after the token changes)."""
        self._cache.clear()
        self._coordinator.clear()

    async def _fetch(self) -> list[StockInfo]:
        stocks = parse_stock_list(await self._client.get_stock_basic())
        if not stocks:
            raise DataFetchError(ErrorKind.NODATA, detail=EMPTY_LIST_DETAIL)
        logger.info("Loaded %d listed stocks", len(stocks))
        return stocks
