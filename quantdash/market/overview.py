"""Market overview assembly — indices, breadth, northbound flow, margin, segment stats.

The five parts are fetched concurrently.  A part whose endpoint fails
degrades to an empty or default value, so one missing dataset never blanks
the dashboard.  Credential failures, or every part failing, propagate
instead so that no degraded overview is cached as fresh.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

from quantdash.analysis.models import (
    IndexQuote,
    MarginData,
    MarketBreadth,
    MarketOverview,
    MarketStats,
    NorthboundFlow,
)
from quantdash.data.errors import DataFetchError, ErrorKind
from quantdash.tushare.client import TushareClient
from quantdash.tushare.parsers import BEIJING

logger = logging.getLogger("quantdash")

MAJOR_INDICES: list[tuple[str, str]] = [
    ("000001.SH", "上证指数"),
    ("399001.SZ", "深证成指"),
    ("399006.SZ", "创业板指"),
    ("000688.SH", "科创50"),
]

SEGMENTS = ("SH_A", "SZ_MAIN", "SZ_GEM", "SH_STAR")

# ~30 trading days
HISTORY_CALENDAR_DAYS = 60

# ChiNext (300xxx) and STAR (688xxx) boards have a ±20 % daily limit.
WIDE_LIMIT_THRESHOLD = 19.5
MAIN_LIMIT_THRESHOLD = 9.5

# Net daily northbound flow rarely exceeds ±20000 million yuan; larger
# magnitudes mean the feed is in ten-thousand yuan.
NORTHBOUND_UNIT_SWITCH = 50_000
NORTHBOUND_RESCALE = 100

YUAN_PER_YI = 100_000_000

# Failures that no other part can succeed past.
CREDENTIAL_ERRORS = (ErrorKind.AUTH, ErrorKind.PERMISSION)


def format_date(dt: datetime) -> str:
    return dt.strftime("%Y%m%d")


def recent_trade_date(now: Optional[datetime] = None) -> str:
    """The most recent settled trade date (``YYYYMMDD``).

    Before 16:00 Beijing time today's data is not final, so the previous day
    is used; weekends roll back to Friday.  Holidays are not checked.
    """
    day = (now or datetime.now(BEIJING)).astimezone(BEIJING)
    if day.hour < 16:
        day -= timedelta(days=1)
    while day.weekday() >= 5:
        day -= timedelta(days=1)
    return format_date(day)


def _history_start(trade_date: str) -> str:
    end = datetime.strptime(trade_date, "%Y%m%d")
    return format_date(end - timedelta(days=HISTORY_CALENDAR_DAYS))


def _is_wide_limit_board(ts_code: str) -> bool:
    return ts_code.startswith("300") or ts_code.startswith("688")


# ── Parts ────────────────────────────────────────────────────────────────


async def fetch_indices(client: TushareClient, trade_date: str) -> list[IndexQuote]:
    start = _history_start(trade_date)
    quotes: list[IndexQuote] = []
    last_error: Optional[DataFetchError] = None

    for ts_code, name in MAJOR_INDICES:
        try:
            table = await client.get_index_daily(ts_code, start, trade_date)
        except DataFetchError as exc:
            if exc.kind in CREDENTIAL_ERRORS:
                raise
            logger.error("Failed to fetch index %s: %s", ts_code, exc)
            last_error = exc
            continue
        rows = sorted(table.rows(), key=lambda r: str(r["trade_date"]))
        if not rows:
            continue

        latest = rows[-1]
        quotes.append(
            IndexQuote(
                ts_code=ts_code,
                name=name,
                close=float(latest["close"]),
                open=float(latest["open"]),
                high=float(latest["high"]),
                low=float(latest["low"]),
                pre_close=float(latest["pre_close"]),
                change=float(latest["change"]),
                pct_chg=float(latest["pct_chg"]),
                vol=float(latest["vol"]),
                amount=float(latest["amount"]),
                history=[(str(r["trade_date"]), float(r["close"])) for r in rows],
            )
        )

    if not quotes and last_error is not None:
        raise last_error
    return quotes


async def fetch_breadth(client: TushareClient, trade_date: str) -> MarketBreadth:
    table = await client.get_daily_all(trade_date)

    advance = decline = flat = limit_up = limit_down = 0
    rows = table.rows()
    for r in rows:
        pct = float(r.get("pct_chg") or 0)
        if pct > 0:
            advance += 1
        elif pct < 0:
            decline += 1
        else:
            flat += 1

        threshold = (
            WIDE_LIMIT_THRESHOLD if _is_wide_limit_board(str(r["ts_code"])) else MAIN_LIMIT_THRESHOLD
        )
        if pct >= threshold:
            limit_up += 1
        elif pct <= -threshold:
            limit_down += 1

    return MarketBreadth(
        date=trade_date,
        advance_count=advance,
        decline_count=decline,
        flat_count=flat,
        limit_up_count=limit_up,
        limit_down_count=limit_down,
        total_count=len(rows),
    )


async def fetch_northbound(client: TushareClient, trade_date: str) -> list[NorthboundFlow]:
    """Northbound flows, oldest first, in million yuan."""
    table = await client.get_moneyflow_hsgt(_history_start(trade_date), trade_date)

    rows = sorted(table.rows(), key=lambda r: str(r["trade_date"]))
    flows = [
        (
            str(r["trade_date"]),
            float(r.get("hgt") or 0),
            float(r.get("sgt") or 0),
            float(r.get("north_money") or 0),
        )
        for r in rows
    ]
    if not flows:
        return []

    scale = 1.0
    max_abs = max(abs(f[3]) for f in flows)
    if max_abs > NORTHBOUND_UNIT_SWITCH:
        scale = NORTHBOUND_RESCALE
        logger.info(
            "Northbound data appears to be in ten-thousand yuan (max=%.0f), normalising by /%d",
            max_abs, NORTHBOUND_RESCALE,
        )

    return [
        NorthboundFlow(date=d, hgt=h / scale, sgt=s / scale, north_money=n / scale)
        for d, h, s, n in flows
    ]


async def fetch_margin(client: TushareClient, trade_date: str) -> list[MarginData]:
    """Margin balances summed across exchanges, in hundred-million yuan."""
    table = await client.get_margin(_history_start(trade_date), trade_date)

    fields = ("rzye", "rzmre", "rzche", "rqye", "rzrqye")
    by_date: dict[str, dict[str, float]] = defaultdict(lambda: dict.fromkeys(fields, 0.0))
    for r in table.rows():
        totals = by_date[str(r["trade_date"])]
        for f in fields:
            totals[f] += float(r.get(f) or 0) / YUAN_PER_YI

    return [
        MarginData(
            date=date,
            rzye=t["rzye"],
            rzmre=t["rzmre"],
            rzche=t["rzche"],
            rzjmr=t["rzmre"] - t["rzche"],
            rqye=t["rqye"],
            rzrqye=t["rzrqye"],
        )
        for date, t in sorted(by_date.items())
    ]


async def fetch_market_stats(client: TushareClient, trade_date: str) -> list[MarketStats]:
    table = await client.get_daily_info(trade_date)

    return [
        MarketStats(
            ts_code=str(r["ts_code"]),
            name=str(r.get("ts_name") or r["ts_code"]),
            pe=float(r.get("pe") or 0),
            total_mv=float(r.get("total_mv") or 0),
            amount=float(r.get("amount") or 0),
            vol=float(r.get("vol") or 0),
            com_count=float(r.get("com_count") or 0),
            tr=float(r.get("tr") or 0),
        )
        for r in table.rows()
        if str(r["ts_code"]) in SEGMENTS
    ]


# ── Entry point ──────────────────────────────────────────────────────────


async def fetch_market_overview(
    client: TushareClient,
    trade_date: Optional[str] = None,
) -> MarketOverview:
    """Fetch all overview parts for *trade_date* (default: most recent).

    Raises:
        DataFetchError: On an auth/permission failure in any part, or when
            every part failed (the first failure is raised).
    """
    trade_date = trade_date or recent_trade_date()
    logger.info("Fetching market overview for %s", trade_date)

    results = await asyncio.gather(
        fetch_indices(client, trade_date),
        fetch_breadth(client, trade_date),
        fetch_northbound(client, trade_date),
        fetch_margin(client, trade_date),
        fetch_market_stats(client, trade_date),
        return_exceptions=True,
    )

    errors = [r for r in results if isinstance(r, BaseException)]
    for err in errors:
        if not isinstance(err, DataFetchError) or err.kind in CREDENTIAL_ERRORS:
            raise err
    if len(errors) == len(results):
        raise errors[0]

    names = ("indices", "breadth", "northbound", "margin", "stats")
    defaults = ([], MarketBreadth(date=trade_date), [], [], [])
    parts = []
    for name, result, default in zip(names, results, defaults):
        if isinstance(result, DataFetchError):
            logger.error("Failed to fetch %s: %s", name, result)
            parts.append(default)
        else:
            parts.append(result)
    indices, breadth, northbound, margin, stats = parts

    logger.info(
        "Market overview ready: %d indices, %d stocks, %d northbound days, %d margin days",
        len(indices), breadth.total_count, len(northbound), len(margin),
    )
    return MarketOverview(
        date=trade_date,
        indices=indices,
        breadth=breadth,
        northbound=northbound,
        margin=margin,
        stats=stats,
    )
