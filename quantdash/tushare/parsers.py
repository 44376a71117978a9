"""Tushare table → ``PriceBar`` conversion and unit normalisation.

Historical daily bars report volume in lots (100 shares) and amount in
thousand yuan; the realtime ``rt_k`` endpoint reports shares and yuan.
Realtime bars are rescaled to the historical units so they can be merged.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from quantdash.analysis.models import PriceBar, RealtimeQuote, StockInfo
from quantdash.tushare.client import TushareTable

logger = logging.getLogger("quantdash")

BEIJING = timezone(timedelta(hours=8))

SHARES_PER_LOT = 100
YUAN_PER_THOUSAND = 1000


def _to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _day_start(dt: datetime) -> datetime:
    return dt.astimezone(BEIJING).replace(hour=0, minute=0, second=0, microsecond=0)


def parse_trade_date(value: Any) -> int:
    """``YYYYMMDD`` (Beijing date) → ms epoch at midnight."""
    s = str(value)
    dt = datetime(int(s[0:4]), int(s[4:6]), int(s[6:8]), tzinfo=BEIJING)
    return _to_ms(dt)


def parse_trade_time(value: Any) -> int:
    """``YYYY-MM-DD HH:MM:SS`` (Beijing time) → ms epoch."""
    dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=BEIJING)
    return _to_ms(dt)


def _float(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _bar(timestamp: int, row: dict[str, Any], volume_scale: float = 1, amount_scale: float = 1) -> PriceBar:
    return PriceBar(
        timestamp=timestamp,
        open=_float(row.get("open")),
        high=_float(row.get("high")),
        low=_float(row.get("low")),
        close=_float(row.get("close")),
        volume=_float(row.get("vol")) / volume_scale,
        amount=_float(row.get("amount")) / amount_scale,
    )


def parse_daily_bars(table: TushareTable) -> list[PriceBar]:
    """Daily table → bars sorted oldest-first."""
    bars = [_bar(parse_trade_date(r["trade_date"]), r) for r in table.rows()]
    bars.sort(key=lambda b: b.timestamp)
    return bars


def parse_minute_bars(table: TushareTable) -> list[PriceBar]:
    """Minute table → bars sorted oldest-first."""
    bars = [_bar(parse_trade_time(r["trade_time"]), r) for r in table.rows()]
    bars.sort(key=lambda b: b.timestamp)
    return bars


def parse_realtime_bar(
    table: TushareTable,
    now: Optional[datetime] = None,
) -> Optional[PriceBar]:
    """First ``rt_k`` row → a daily bar in historical units.

    The timestamp is truncated to the start of the trade day.  Returns
    ``None`` for an empty table or a malformed row.
    """
    rows = table.rows()
    if not rows:
        return None
    row = rows[0]

    try:
        if row.get("trade_time"):
            moment = datetime.fromtimestamp(parse_trade_time(row["trade_time"]) / 1000, BEIJING)
        else:
            moment = now or datetime.now(BEIJING)
        return _bar(
            _to_ms(_day_start(moment)),
            row,
            volume_scale=SHARES_PER_LOT,
            amount_scale=YUAN_PER_THOUSAND,
        )
    except (TypeError, ValueError) as exc:
        logger.error("Failed to parse realtime bar %s: %s", row.get("ts_code"), exc)
        return None


def is_same_day(ts1: int, ts2: int) -> bool:
    d1 = datetime.fromtimestamp(ts1 / 1000, BEIJING).date()
    d2 = datetime.fromtimestamp(ts2 / 1000, BEIJING).date()
    return d1 == d2


def merge_realtime_bar(
    bars: Sequence[PriceBar],
    realtime_bar: Optional[PriceBar],
) -> list[PriceBar]:
    """Merge today's realtime bar into a daily series.

    Replaces the last bar when it is the same trade day, otherwise appends.
    A missing bar or one with no volume leaves the series unchanged.
    """
    merged = list(bars)
    if realtime_bar is None or realtime_bar.volume <= 0:
        return merged
    if merged and is_same_day(merged[-1].timestamp, realtime_bar.timestamp):
        merged[-1] = realtime_bar
    elif not merged or realtime_bar.timestamp > merged[-1].timestamp:
        merged.append(realtime_bar)
    return merged


def _text(value: Any) -> str:
    return str(value) if value is not None else ""


def parse_stock_list(table: TushareTable) -> list[StockInfo]:
    """``stock_basic`` table → directory entries, in provider order."""
    return [
        StockInfo(
            ts_code=_text(r.get("ts_code")),
            symbol=_text(r.get("symbol")),
            name=_text(r.get("name")),
            area=_text(r.get("area")),
            industry=_text(r.get("industry")),
            list_date=_text(r.get("list_date")),
        )
        for r in table.rows()
        if r.get("ts_code")
    ]


def parse_realtime_quotes(table: TushareTable) -> list[RealtimeQuote]:
    """Batch ``rt_k`` table → quotes in provider units; malformed rows are skipped."""
    quotes = []
    for r in table.rows():
        try:
            quotes.append(
                RealtimeQuote(
                    ts_code=_text(r.get("ts_code")),
                    name=_text(r.get("name")),
                    open=_float(r.get("open")),
                    high=_float(r.get("high")),
                    low=_float(r.get("low")),
                    close=_float(r.get("close")),
                    pre_close=_float(r.get("pre_close")),
                    vol=_float(r.get("vol")),
                    amount=_float(r.get("amount")),
                )
            )
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping malformed rt_k row %s: %s", r.get("ts_code"), exc)
    return quotes


def parse_daily_snapshot(table: TushareTable) -> dict[str, PriceBar]:
    """Whole-market daily table for one date → bars keyed by ts_code.

    Rows without a positive close (suspended stocks) are dropped.
    """
    bars: dict[str, PriceBar] = {}
    for r in table.rows():
        try:
            bar = _bar(parse_trade_date(r["trade_date"]), r)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed daily row %s: %s", r.get("ts_code"), exc)
            continue
        if bar.close > 0:
            bars[_text(r.get("ts_code"))] = bar
    return bars
