"""Realtime top-stocks leaderboard — intraday breakout scoring.

Every listed stock's live quote is scored on six dimensions, using a
20-trading-day history profile as reference:

    position   close vs the 20-day high or the consolidation range   0–30
    volume     time-adjusted amount vs the 5-day average amount      0–25
    amount     log scale of the time-adjusted amount                 0–10
    price      day change and close position in the day's range      0–20
    ma         5/10/20 MA alignment and distance above them          0–15
    candle     body share and upper shadow of a rising candle        0–10

The 110-point raw total is mapped onto 0–100.  Profiles are built in the
background at most once per day; until they are ready stocks are scored
with change-based fallbacks.
"""

import asyncio
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from quantdash.analysis.indicators import round_half_up
from quantdash.analysis.models import PriceBar, RealtimeQuote, TopStock
from quantdash.data.coordinator import RequestCoordinator
from quantdash.data.errors import DataFetchError
from quantdash.market.overview import format_date
from quantdash.market.stocks import StockDirectory
from quantdash.tushare.client import TushareClient
from quantdash.tushare.parsers import BEIJING, parse_daily_snapshot, parse_realtime_quotes

logger = logging.getLogger("quantdash")

DEFAULT_TOP_LIMIT = 50

PROFILE_DAYS = 20
# Weekdays to scan for PROFILE_DAYS trading days; holidays come back empty.
PROFILE_WEEKDAYS = 30
PROFILE_BATCH_SIZE = 3
PROFILE_BATCH_DELAY_S = 0.25
MIN_PROFILE_BARS = 3
# The latest days may be the breakout itself.
CONSOLIDATION_SKIP_DAYS = 3

SESSION_MINUTES = 240
MIN_DAY_PROGRESS = 0.05

RAW_SCORE_MAX = 110

YUAN_PER_THOUSAND = 1000
YUAN_PER_YI = 100_000_000


@dataclass(frozen=True)
class HistoryProfile:
    """Reference levels from the last 20 trading days (amounts in thousand yuan)."""

    high_5d: float
    high_10d: float
    high_20d: float
    low_20d: float
    avg_amount_5d: float
    avg_amount_20d: float
    ma5: float
    ma10: float
    ma20: float
    consolidation_high: float
    consolidation_low: float


# ── Profiles ─────────────────────────────────────────────────────────────


def recent_weekdays(count: int, now: Optional[datetime] = None) -> list[str]:
    """Up to *count* weekday dates (``YYYYMMDD``), newest first, from yesterday back."""
    day = (now or datetime.now(BEIJING)).astimezone(BEIJING) - timedelta(days=1)
    dates: list[str] = []
    for _ in range(count * 2):
        if len(dates) >= count:
            break
        if day.weekday() < 5:
            dates.append(format_date(day))
        day -= timedelta(days=1)
    return dates


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _profile(bars: Sequence[PriceBar]) -> HistoryProfile:
    # bars are newest first
    d5, d10, d20 = bars[:5], bars[:10], bars[:20]
    high_20d = max(b.high for b in d20)
    low_20d = min(b.low for b in d20)
    consolidation = bars[CONSOLIDATION_SKIP_DAYS:PROFILE_DAYS]
    return HistoryProfile(
        high_5d=max(b.high for b in d5),
        high_10d=max(b.high for b in d10),
        high_20d=high_20d,
        low_20d=low_20d,
        avg_amount_5d=_mean([b.amount for b in d5]),
        avg_amount_20d=_mean([b.amount for b in d20]),
        ma5=_mean([b.close for b in d5]),
        ma10=_mean([b.close for b in d10]),
        ma20=_mean([b.close for b in d20]),
        consolidation_high=max(b.high for b in consolidation) if consolidation else high_20d,
        consolidation_low=min(b.low for b in consolidation) if consolidation else low_20d,
    )


def build_profiles(days: Mapping[str, Mapping[str, PriceBar]]) -> dict[str, HistoryProfile]:
    """Build per-stock profiles from whole-market daily snapshots.

    Args:
        days: ``YYYYMMDD`` → {ts_code: bar}.  Only the latest
            ``PROFILE_DAYS`` dates are used.

    Stocks with fewer than ``MIN_PROFILE_BARS`` bars get no profile.
    """
    series: dict[str, list[PriceBar]] = defaultdict(list)
    for date in sorted(days, reverse=True)[:PROFILE_DAYS]:
        for ts_code, bar in days[date].items():
            if bar.close > 0:
                series[ts_code].append(bar)

    return {
        ts_code: _profile(bars)
        for ts_code, bars in series.items()
        if len(bars) >= MIN_PROFILE_BARS
    }


class ProfileStore:
    """History profiles rebuilt at most once per Beijing day.

    A build already running is shared.  The previous day's profiles stay
    in use until a new build succeeds.

    Args:
        client: Tushare client.
        sleep: Awaitable sleep between fetch batches; injectable for tests.
        now: Clock returning an aware datetime; injectable for tests.
    """

    def __init__(
        self,
        client: TushareClient,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(BEIJING),
    ) -> None:
        self._client = client
        self._sleep = sleep
        self._now = now
        self._profiles: dict[str, HistoryProfile] = {}
        self._built_for: Optional[str] = None
        self._building: Optional[asyncio.Task] = None

    @property
    def ready(self) -> bool:
        return bool(self._profiles)

    def get(self, ts_code: str) -> Optional[HistoryProfile]:
        return self._profiles.get(ts_code)

    def __len__(self) -> int:
        return len(self._profiles)

    def start_build(self) -> Optional[asyncio.Task]:
        """Start today's build in the background unless it is done or running.

        Returns the running build task, or ``None`` when today's profiles
        are already built.
        """
        today = format_date(self._now().astimezone(BEIJING))
        if self._built_for == today:
            return None
        if self._building is None:
            self._building = asyncio.ensure_future(self._build(today))
            self._building.add_done_callback(self._build_done)
        return self._building

    async def ensure(self) -> None:
        """Wait until today's profiles are built (or the build gave up)."""
        task = self.start_build()
        if task is not None:
            await asyncio.shield(task)

    def clear(self) -> None:
        self._profiles = {}
        self._built_for = None

    def _build_done(self, task: asyncio.Task) -> None:
        self._building = None
        if not task.cancelled() and task.exception() is not None:
            logger.error("History profile build failed: %s", task.exception())

    async def _build(self, today: str) -> None:
        dates = recent_weekdays(PROFILE_WEEKDAYS, self._now())
        days: dict[str, dict[str, PriceBar]] = {}

        for start in range(0, len(dates), PROFILE_BATCH_SIZE):
            batch = dates[start:start + PROFILE_BATCH_SIZE]
            snapshots = await asyncio.gather(*(self._fetch_day(d) for d in batch))
            for date, bars in zip(batch, snapshots):
                if bars:
                    days[date] = bars
            if len(days) >= PROFILE_DAYS:
                break
            if start + PROFILE_BATCH_SIZE < len(dates):
                await self._sleep(PROFILE_BATCH_DELAY_S)

        if not days:
            logger.warning("No daily history fetched; profiles not built")
            return

        self._profiles = build_profiles(days)
        self._built_for = today
        logger.info("Built %d history profiles from %d trading days", len(self._profiles), len(days))

    async def _fetch_day(self, trade_date: str) -> dict[str, PriceBar]:
        try:
            return parse_daily_snapshot(await self._client.get_daily_all(trade_date))
        except DataFetchError as exc:
            logger.warning("Daily snapshot for %s unavailable: %s", trade_date, exc)
            return {}


# ── Scoring ──────────────────────────────────────────────────────────────


def trading_day_progress(now: datetime) -> float:
    """Share of the 240-minute session elapsed at *now* (Beijing time).

    Floored at ``MIN_DAY_PROGRESS`` before the open; the lunch break counts
    as the end of the morning session.
    """
    local = now.astimezone(BEIJING)
    minutes = local.hour * 60 + local.minute
    if minutes < 9 * 60 + 30:
        return MIN_DAY_PROGRESS
    if minutes >= 15 * 60:
        return 1.0

    if minutes <= 11 * 60 + 30:
        elapsed = minutes - (9 * 60 + 30)
    elif minutes < 13 * 60:
        elapsed = 120
    else:
        elapsed = 120 + minutes - 13 * 60
    return max(MIN_DAY_PROGRESS, min(1.0, elapsed / SESSION_MINUTES))


def _position_score(
    close: float, change_pct: float, profile: Optional[HistoryProfile]
) -> tuple[float, str]:
    if profile is None or profile.high_20d <= 0:
        if change_pct > 0:
            return min(20, round_half_up(change_pct * 2.5)), ""
        return 0, ""

    breakout_pct = (close - profile.high_20d) / profile.high_20d * 100
    if breakout_pct >= 0:
        tag = "强势新高" if breakout_pct >= 2 else "创20日新高"
        return min(30.0, 22 + breakout_pct * 2.5), tag

    if profile.consolidation_high > 0 and close > profile.consolidation_high:
        above_pct = (close - profile.consolidation_high) / profile.consolidation_high * 100
        return min(21.0, 16 + above_pct * 2.5), "平台突破"

    span = profile.high_20d - profile.low_20d
    if span <= 0:
        return 0, ""
    position = (close - profile.low_20d) / span
    return round_half_up(position * 15), "接近突破" if position >= 0.9 else ""


def _volume_score(adjusted_yuan: float, profile: Optional[HistoryProfile]) -> tuple[int, float]:
    if profile is None or profile.avg_amount_5d <= 0:
        return min(25, round_half_up(adjusted_yuan / YUAN_PER_YI * 8)), 0.0

    adjusted_thousand = adjusted_yuan / YUAN_PER_THOUSAND
    volume_ratio = round(adjusted_thousand / profile.avg_amount_5d, 2)
    score = min(25, max(0, round_half_up((volume_ratio - 0.5) * 10)))

    # Sustained expansion against the 20-day average
    if profile.avg_amount_20d > 0:
        ratio_20d = adjusted_thousand / profile.avg_amount_20d
        if ratio_20d >= 1.5:
            score = min(25, score + min(3, round_half_up((ratio_20d - 1.5) * 2)))
    return score, volume_ratio


def _amount_score(adjusted_yuan: float) -> int:
    amount_yi = adjusted_yuan / YUAN_PER_YI
    if amount_yi <= 0:
        return 0
    return min(10, max(0, round_half_up(math.log2(amount_yi + 1) * 3)))


def _price_score(quote: RealtimeQuote, change_pct: float) -> int:
    score = 0
    if change_pct > 0:
        score += min(12, round_half_up(change_pct * 1.5))
    day_range = quote.high - quote.low
    if day_range > 0:
        score += round_half_up((quote.close - quote.low) / day_range * 8)
    return min(20, score)


def _ma_score(close: float, change_pct: float, profile: Optional[HistoryProfile]) -> int:
    if profile is None or min(profile.ma5, profile.ma10, profile.ma20) <= 0:
        return min(5, round_half_up(change_pct)) if change_pct > 0 else 0

    score = 0
    if profile.ma5 > profile.ma10 > profile.ma20:
        score += 8
    elif profile.ma5 > profile.ma10:
        score += 5
    elif profile.ma5 > profile.ma20:
        score += 3

    above = 0.0
    for ma, scale in ((profile.ma5, 20), (profile.ma10, 15), (profile.ma20, 10)):
        if close > ma:
            above += min(1.0, (close - ma) / ma * scale)
    score += round_half_up(above / 3 * 7)
    return min(15, score)


def _candle_score(quote: RealtimeQuote) -> int:
    total = quote.high - quote.low
    # Rising candles only
    if total <= 0 or quote.close <= quote.open:
        return 0
    body_ratio = (quote.close - quote.open) / total
    upper_shadow_ratio = (quote.high - quote.close) / total
    score = round_half_up(body_ratio * 6) + round_half_up(max(0.0, 1 - upper_shadow_ratio * 3) * 4)
    return min(10, score)


def score_stock(
    quote: RealtimeQuote,
    profile: Optional[HistoryProfile],
    progress: float,
) -> TopStock:
    """Score one live quote.

    Args:
        quote: Live quote in provider units.
        profile: The stock's history profile, or ``None`` before it is built.
        progress: Elapsed share of the session; the day's amount is scaled
            up by it so it compares with full-day averages.
    """
    close, pre_close = quote.close, quote.pre_close
    change_pct = (close - pre_close) / pre_close * 100 if pre_close > 0 else 0.0
    amplitude = (quote.high - quote.low) / quote.open * 100 if quote.open > 0 else 0.0
    adjusted_yuan = quote.amount / progress if progress > 0 else quote.amount

    position, tag = _position_score(close, change_pct, profile)
    volume, volume_ratio = _volume_score(adjusted_yuan, profile)
    raw = (
        position
        + volume
        + _amount_score(adjusted_yuan)
        + _price_score(quote, change_pct)
        + _ma_score(close, change_pct, profile)
        + _candle_score(quote)
    )
    score = min(100, max(0, round_half_up(raw * 100 / RAW_SCORE_MAX)))

    return TopStock(
        ts_code=quote.ts_code,
        name=quote.name,
        close=close,
        change_pct=round(change_pct, 2),
        change=round(close - pre_close, 2),
        volume=math.floor(quote.vol / 100),
        amount=math.floor(quote.amount / 10_000),
        amplitude=round(amplitude, 2),
        score=score,
        pre_close=pre_close,
        open=quote.open,
        high=quote.high,
        low=quote.low,
        volume_ratio=volume_ratio,
        breakout_tag=tag,
    )


def rank_stocks(stocks: Sequence[TopStock], limit: int = DEFAULT_TOP_LIMIT) -> list[TopStock]:
    """Traded stocks by score, highest first, ties in input order."""
    traded = [s for s in stocks if s.volume > 0 and s.close > 0]
    traded.sort(key=lambda s: s.score, reverse=True)
    return traded[:limit]


# ── Leaderboard ──────────────────────────────────────────────────────────


class Leaderboard:
    """Scores the whole market from one batch realtime request.

    Args:
        client: Tushare client.
        directory: Listed-stock directory supplying the codes.
        profiles: History profile store (a fresh one by default).
        coordinator: Request coordinator for the batch quote request.
        now: Clock returning an aware datetime; injectable for tests.
    """

    def __init__(
        self,
        client: TushareClient,
        directory: StockDirectory,
        *,
        profiles: Optional[ProfileStore] = None,
        coordinator: Optional[RequestCoordinator] = None,
        now: Callable[[], datetime] = lambda: datetime.now(BEIJING),
    ) -> None:
        self._client = client
        self._directory = directory
        self._profiles = profiles if profiles is not None else ProfileStore(client, now=now)
        self._coordinator = coordinator if coordinator is not None else RequestCoordinator()
        self._now = now

    @property
    def profiles(self) -> ProfileStore:
        return self._profiles

    async def top(self, limit: int = DEFAULT_TOP_LIMIT) -> list[TopStock]:
        """Return the *limit* highest-scoring traded stocks.

        Raises:
            DataFetchError: The classified failure of the directory or the
                batch quote request.
        """
        stocks = await self._directory.load()
        # Never awaited here; the first call of the day scores without profiles.
        self._profiles.start_build()

        codes = [s.ts_code for s in stocks]
        table = await self._coordinator.run(
            "rt_k_batch", lambda: self._client.get_realtime_daily_batch(codes)
        )
        progress = trading_day_progress(self._now())
        scored = [
            score_stock(quote, self._profiles.get(quote.ts_code), progress)
            for quote in parse_realtime_quotes(table)
        ]
        return rank_stocks(scored, limit)

    def clear(self) -> None:
        self._profiles.clear()
        self._coordinator.clear()
