"""Analysis data models — typed representations of bars, scores and plans."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

# An indicator series is parallel to the bar series; ``None`` marks the
# warm-up positions where the indicator is undefined.
IndicatorSeries = list[Optional[float]]


class Timeframe(str, Enum):
    """Bar granularity supported by the quote provider."""

    MIN1 = "1min"
    MIN5 = "5min"
    MIN15 = "15min"
    MIN30 = "30min"
    MIN60 = "60min"
    DAILY = "daily"

    @property
    def is_intraday(self) -> bool:
        return self is not Timeframe.DAILY


class SignalLevel(str, Enum):
    STRONG_BUY = "strong_buy"
    BUY = "buy"
    NEUTRAL = "neutral"
    SELL = "sell"
    STRONG_SELL = "strong_sell"


class SentimentLevel(str, Enum):
    FREEZING = "freezing"
    COLD = "cold"
    NEUTRAL = "neutral"
    WARM = "warm"
    HOT = "hot"


class _Serializable:
    """Mixin giving frozen records a JSON-friendly ``to_dict``."""

    def to_dict(self) -> dict:
        return _plain(asdict(self))


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# ── Price data ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceBar(_Serializable):
    """A single OHLCV bar.

    ``timestamp`` is milliseconds since the epoch.  Bars are consumed in
    ascending timestamp order with no duplicates.
    """

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    amount: Optional[float] = None


# ── Signal ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SignalScore(_Serializable):
    """Composite signal: four bounded dimensions summed into ``total``."""

    TREND_MAX = 40
    OSCILLATOR_MAX = 30
    VOLUME_MAX = 20
    SUPPORT_RESISTANCE_MAX = 10

    total: int
    trend: int
    oscillator: int
    volume: int
    support_resistance: int
    level: SignalLevel
    label: str


@dataclass(frozen=True)
class TradePlan(_Serializable):
    """Rule-based entry / stop / target derived from a directional signal."""

    entry_price: float
    stop_loss: float
    target_price: float
    risk_reward_ratio: float
    position_size_pct: float
    atr_value: float
    direction: str  # "long" or "short"


@dataclass(frozen=True)
class SRLevels(_Serializable):
    """Nearest support (descending) and resistance (ascending) levels."""

    support: list[float] = field(default_factory=list)
    resistance: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class MACDValue(_Serializable):
    dif: float
    dea: float
    histogram: float


@dataclass(frozen=True)
class KDJValue(_Serializable):
    k: float
    d: float
    j: float


@dataclass(frozen=True)
class BollingerValue(_Serializable):
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class IndicatorValues(_Serializable):
    """Latest defined value of every indicator (``None`` if never defined)."""

    ma5: Optional[float]
    ma10: Optional[float]
    ma20: Optional[float]
    ma60: Optional[float]
    macd: Optional[MACDValue]
    rsi: Optional[float]
    kdj: Optional[KDJValue]
    boll: Optional[BollingerValue]
    obv: Optional[float]
    vwap: Optional[float]
    atr: Optional[float]


@dataclass(frozen=True)
class AnalysisResult(_Serializable):
    """Everything the presentation layer needs for one instrument."""

    signal: SignalScore
    trade_plan: Optional[TradePlan]
    indicators: IndicatorValues
    support_levels: list[float]
    resistance_levels: list[float]


# ── Market overview ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class IndexQuote(_Serializable):
    """Latest daily quote of a major index plus its recent closes."""

    ts_code: str
    name: str
    close: float
    open: float
    high: float
    low: float
    pre_close: float
    change: float
    pct_chg: float
    vol: float
    amount: float
    history: list[tuple[str, float]] = field(default_factory=list)


@dataclass(frozen=True)
class MarketBreadth(_Serializable):
    date: str
    advance_count: int = 0
    decline_count: int = 0
    flat_count: int = 0
    limit_up_count: int = 0
    limit_down_count: int = 0
    total_count: int = 0


@dataclass(frozen=True)
class NorthboundFlow(_Serializable):
    """Daily northbound flow, in million yuan."""

    date: str
    hgt: float
    sgt: float
    north_money: float


@dataclass(frozen=True)
class MarginData(_Serializable):
    """Daily margin financing totals, in hundred-million yuan."""

    date: str
    rzye: float
    rzmre: float
    rzche: float
    rzjmr: float
    rqye: float
    rzrqye: float


@dataclass(frozen=True)
class MarketStats(_Serializable):
    ts_code: str
    name: str
    pe: float
    total_mv: float
    amount: float
    vol: float
    com_count: float
    tr: float


@dataclass(frozen=True)
class MarketOverview(_Serializable):
    """Market-wide snapshot for one trade date."""

    date: str
    indices: list[IndexQuote]
    breadth: MarketBreadth
    northbound: list[NorthboundFlow] = field(default_factory=list)
    margin: list[MarginData] = field(default_factory=list)
    stats: list[MarketStats] = field(default_factory=list)


# ── Sentiment ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SentimentComponent(_Serializable):
    name: str
    value: float
    weight: float


@dataclass(frozen=True)
class SentimentScore(_Serializable):
    total: int
    level: SentimentLevel
    label: str
    components: list[SentimentComponent]


# ── Stock directory & leaderboard ────────────────────────────────────────


@dataclass(frozen=True)
class StockInfo(_Serializable):
    """One listed stock from the exchange directory."""

    ts_code: str
    symbol: str
    name: str
    area: str = ""
    industry: str = ""
    list_date: str = ""


@dataclass(frozen=True)
class RealtimeQuote(_Serializable):
    """One ``rt_k`` row in provider units (vol in shares, amount in yuan)."""

    ts_code: str
    name: str
    open: float
    high: float
    low: float
    close: float
    pre_close: float
    vol: float
    amount: float


@dataclass(frozen=True)
class TopStock(_Serializable):
    """A leaderboard row scored for intraday breakout strength.

    ``volume`` is in lots and ``amount`` in ten-thousand yuan.
    """

    ts_code: str
    name: str
    close: float
    change_pct: float
    change: float
    volume: int
    amount: int
    amplitude: float
    score: int
    pre_close: float
    open: float
    high: float
    low: float
    volume_ratio: float
    breakout_tag: str
