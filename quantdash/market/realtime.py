"""Realtime quote polling during A-share trading sessions."""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from quantdash.analysis.models import PriceBar
from quantdash.tushare.parsers import BEIJING

logger = logging.getLogger("quantdash")

# Minutes after midnight, Beijing time, with a minute of slack either side.
MORNING_SESSION = (9 * 60 + 25, 11 * 60 + 31)
AFTERNOON_SESSION = (12 * 60 + 59, 15 * 60 + 1)


def is_trading_time(now: datetime) -> bool:
    """Return True if *now* falls in a weekday trading session (Beijing time).

    Windows: 09:25–11:31 and 12:59–15:01, both ends inclusive.  Holidays
    are not checked.
    """
    local = now.astimezone(BEIJING)
    if local.weekday() >= 5:
        return False
    minutes = local.hour * 60 + local.minute
    return any(start <= minutes <= end for start, end in (MORNING_SESSION, AFTERNOON_SESSION))


class RealtimeRefresher:
    """Polls today's bar for one stock while the market is open.

    At most one fetch is outstanding at a time; a tick that finds the slot
    busy does nothing.  A result that arrives after the subject changed
    or polling stopped is dropped, even if the same code was restarted
    while the fetch was outstanding.

    Args:
        fetch_bar: Coroutine returning the current bar for a ts_code.
        interval: Seconds between ticks.
        now: Clock returning an aware datetime; injectable for tests.
        on_bar: Called with every accepted bar.
    """

    def __init__(
        self,
        fetch_bar: Callable[[str], Awaitable[Optional[PriceBar]]],
        interval: float = 1.0,
        now: Callable[[], datetime] = lambda: datetime.now(BEIJING),
        on_bar: Optional[Callable[[PriceBar], None]] = None,
    ) -> None:
        self._fetch_bar = fetch_bar
        self._interval = interval
        self._now = now
        self._on_bar = on_bar
        self._ts_code: Optional[str] = None
        self._inflight: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()
        self._running = False
        # Bumped whenever the subscription changes; stale fetches compare it.
        self._generation = 0
        self.latest_bar: Optional[PriceBar] = None

    @property
    def ts_code(self) -> Optional[str]:
        return self._ts_code

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self, ts_code: str) -> None:
        """Switch polling to *ts_code*; any bar for the previous code is dropped."""
        if ts_code != self._ts_code or not self._running:
            self._generation += 1
        if ts_code != self._ts_code:
            self.latest_bar = None
        self._ts_code = ts_code
        self._running = True

    def stop(self) -> None:
        """Stop after the current tick; in-flight results are discarded."""
        self._running = False
        self._ts_code = None
        self._generation += 1

    # ── Polling ──────────────────────────────────────────────────────────

    async def tick(self) -> Optional[PriceBar]:
        """Fetch once if the market is open and no fetch is outstanding.

        Returns the accepted bar, or ``None`` when the tick was skipped, the
        fetch failed, or the result is stale.
        """
        ts_code = self._ts_code
        generation = self._generation
        if ts_code is None or not is_trading_time(self._now()):
            return None
        if self.busy:
            return None

        task = asyncio.ensure_future(self._fetch_bar(ts_code))
        self._inflight = task
        try:
            bar = await task
        except Exception as exc:
            logger.warning("Realtime fetch for %s failed: %s", ts_code, exc)
            return None
        finally:
            if self._inflight is task:
                self._inflight = None

        if bar is None or self._generation != generation:
            return None
        self.latest_bar = bar
        if self._on_bar is not None:
            self._on_bar(bar)
        return bar

    async def run(self, max_ticks: int = 0) -> None:
        """Tick every ``interval`` seconds until stopped.

        Ticks are not awaited by the loop, so a slow fetch makes later ticks
        skip instead of delaying the schedule.

        Args:
            max_ticks: Stop after this many ticks (0 = unlimited).
        """
        count = 0
        while self._running:
            task = asyncio.ensure_future(self.tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            count += 1
            if max_ticks > 0 and count >= max_ticks:
                break
            await asyncio.sleep(self._interval)

        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)
