"""HTTP API routers — /kline, /analysis, /market, /realtime and /stocks endpoints.

No business logic. Delegates to the data services injected at startup and
maps classified fetch errors to JSON error responses.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from quantdash.analysis.models import Timeframe
from quantdash.data.errors import DataFetchError, ErrorKind

logger = logging.getLogger("quantdash")
router = APIRouter(prefix="/api")

# ── Shared state (set during app startup) ────────────────────────────────

_stock_service = None    # Set via configure_routers()
_market_service = None   # Set via configure_routers()
_stock_directory = None  # Set via configure_routers()
_leaderboard = None      # Set via configure_routers()

_ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.AUTH: 401,
    ErrorKind.PERMISSION: 403,
    ErrorKind.NODATA: 404,
}
_DEFAULT_ERROR_STATUS = 502


def configure_routers(
    stock_service=None,
    market_service=None,
    stock_directory=None,
    leaderboard=None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        stock_service: A ``StockDataService`` (or duck-type for tests).
        market_service: A ``MarketDataService`` (or duck-type for tests).
        stock_directory: A ``StockDirectory`` (or duck-type for tests).
        leaderboard: A ``Leaderboard`` (or duck-type for tests).
    """
    global _stock_service, _market_service, _stock_directory, _leaderboard  # noqa: PLW0603
    _stock_service = stock_service
    _market_service = market_service
    _stock_directory = stock_directory
    _leaderboard = leaderboard


def _error_response(exc: DataFetchError) -> JSONResponse:
    status = _ERROR_STATUS.get(exc.kind, _DEFAULT_ERROR_STATUS)
    logger.warning("API request failed (%s): %s", exc.kind.value, exc)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"error": {"type": "unavailable", "message": "服务未初始化", "retryable": True}},
    )


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/kline/{ts_code}")
async def get_kline(
    ts_code: str,
    timeframe: Timeframe = Query(default=Timeframe.DAILY),
    refresh: bool = Query(default=False),
):
    """Return the bar series for a stock, oldest first."""
    if _stock_service is None:
        return _unavailable()
    try:
        result = await _stock_service.get_bars(ts_code, timeframe, force_refresh=refresh)
    except DataFetchError as exc:
        return _error_response(exc)
    return {
        "ts_code": ts_code,
        "timeframe": timeframe.value,
        "bars": [b.to_dict() for b in result.payload],
        "from_cache": result.from_cache,
        "fetched_at": result.fetched_at,
    }


@router.get("/analysis/{ts_code}")
async def get_analysis(
    ts_code: str,
    timeframe: Timeframe = Query(default=Timeframe.DAILY),
    refresh: bool = Query(default=False),
):
    """Return the signal score, trade plan and indicator snapshot.

    ``analysis`` is null while the series is too short to score.
    """
    if _stock_service is None:
        return _unavailable()
    try:
        result = await _stock_service.get_analysis(ts_code, timeframe, force_refresh=refresh)
    except DataFetchError as exc:
        return _error_response(exc)
    analysis = result.payload
    return {
        "ts_code": ts_code,
        "timeframe": timeframe.value,
        "analysis": analysis.to_dict() if analysis is not None else None,
        "from_cache": result.from_cache,
        "fetched_at": result.fetched_at,
    }


@router.get("/market/overview")
async def get_market_overview(
    date: Optional[str] = Query(default=None, pattern=r"^\d{8}$"),
    refresh: bool = Query(default=False),
):
    """Return indices, breadth, northbound flow, margin and segment stats."""
    if _market_service is None:
        return _unavailable()
    try:
        result = await _market_service.get_overview(date, force_refresh=refresh)
    except DataFetchError as exc:
        return _error_response(exc)
    return {
        "overview": result.payload.to_dict(),
        "from_cache": result.from_cache,
        "fetched_at": result.fetched_at,
    }


@router.get("/market/sentiment")
async def get_market_sentiment(
    date: Optional[str] = Query(default=None, pattern=r"^\d{8}$"),
    refresh: bool = Query(default=False),
):
    """Return the composite market sentiment score."""
    if _market_service is None:
        return _unavailable()
    try:
        result = await _market_service.get_sentiment(date, force_refresh=refresh)
    except DataFetchError as exc:
        return _error_response(exc)
    return {
        "sentiment": result.payload.to_dict(),
        "from_cache": result.from_cache,
        "fetched_at": result.fetched_at,
    }


@router.get("/realtime/{ts_code}")
async def get_realtime(ts_code: str):
    """Return today's snapshot bar, or null when the stock has not traded."""
    if _stock_service is None:
        return _unavailable()
    try:
        bar = await _stock_service.get_realtime_bar(ts_code)
    except DataFetchError as exc:
        return _error_response(exc)
    return {"ts_code": ts_code, "bar": bar.to_dict() if bar is not None else None}


@router.get("/stocks/search")
async def get_stock_search(q: str = Query(default="", max_length=32)):
    """Return directory entries matching *q* (the first 20 when blank)."""
    if _stock_directory is None:
        return _unavailable()
    try:
        stocks = await _stock_directory.search(q)
    except DataFetchError as exc:
        return _error_response(exc)
    return {"query": q, "stocks": [s.to_dict() for s in stocks]}


@router.get("/market/top")
async def get_top_stocks(limit: int = Query(default=50, ge=1, le=200)):
    """Return the realtime breakout leaderboard, highest score first."""
    if _leaderboard is None:
        return _unavailable()
    try:
        stocks = await _leaderboard.top(limit)
    except DataFetchError as exc:
        return _error_response(exc)
    return {"stocks": [s.to_dict() for s in stocks]}
