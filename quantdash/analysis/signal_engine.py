"""Composite signal scoring — pure functions, no I/O.

Four bounded dimensions are scored independently and summed:

    trend               ±40   MA alignment + MACD crosses
    oscillator          ±30   RSI zones + KDJ crosses
    volume              ±20   OBV confirmation + VWAP position
    support/resistance  ±10   proximity to the nearest levels

The sum (±100) is classified into five signal levels.
"""

from typing import Optional, Sequence

from quantdash.analysis.atr import calculate_atr
from quantdash.analysis.indicators import (
    calculate_bollinger,
    calculate_kdj,
    calculate_ma,
    calculate_macd,
    calculate_rsi,
    last_n_valid,
    last_valid,
)
from quantdash.analysis.models import (
    AnalysisResult,
    BollingerValue,
    IndicatorValues,
    KDJValue,
    MACDValue,
    PriceBar,
    SignalLevel,
    SignalScore,
)
from quantdash.analysis.support_resistance import (
    calculate_sr_score,
    calculate_support_resistance,
)
from quantdash.analysis.volume import calculate_obv, calculate_vwap, get_obv_trend
from quantdash.risk.trade_plan import generate_trade_plan

# Analysis is not attempted on shorter histories.
MIN_BARS = 60

SIGNAL_LABELS: dict[SignalLevel, str] = {
    SignalLevel.STRONG_BUY: "强烈买入",
    SignalLevel.BUY: "建议买入",
    SignalLevel.NEUTRAL: "观望",
    SignalLevel.SELL: "建议卖出",
    SignalLevel.STRONG_SELL: "强烈卖出",
}


def _clamp(value: int, bound: int) -> int:
    return max(-bound, min(bound, value))


# ── Trend (±40) ──────────────────────────────────────────────────────────


def calculate_trend_score(bars: Sequence[PriceBar]) -> int:
    """MA alignment (±20) plus MACD cross / histogram slope (±20)."""
    score = 0
    ma = calculate_ma(bars)
    ma5 = last_valid(ma.ma5)
    ma10 = last_valid(ma.ma10)
    ma20 = last_valid(ma.ma20)

    if ma5 is not None and ma10 is not None and ma20 is not None:
        if ma5 > ma10 > ma20:
            score += 20
        elif ma5 < ma10 < ma20:
            score -= 20
        elif ma5 > ma10:
            score += 10
        elif ma5 < ma10:
            score -= 10

    macd = calculate_macd(bars)
    difs = last_n_valid(macd.dif, 3)
    deas = last_n_valid(macd.dea, 3)
    hists = last_n_valid(macd.histogram, 3)

    if len(difs) >= 2 and len(deas) >= 2:
        prev_dif, cur_dif = difs[-2], difs[-1]
        prev_dea, cur_dea = deas[-2], deas[-1]

        if prev_dif <= prev_dea and cur_dif > cur_dea:
            score += 20  # golden cross
        elif prev_dif >= prev_dea and cur_dif < cur_dea:
            score -= 20  # death cross
        elif len(hists) >= 2:
            slope = hists[-1] - hists[-2]
            if slope > 0 and cur_dif > cur_dea:
                score += 10
            elif slope < 0 and cur_dif < cur_dea:
                score -= 10

    return _clamp(score, SignalScore.TREND_MAX)


# ── Oscillator (±30) ─────────────────────────────────────────────────────


def calculate_oscillator_score(bars: Sequence[PriceBar]) -> int:
    """RSI zone reversals (±15) plus KDJ crosses (±15)."""
    score = 0

    rsi = last_n_valid(calculate_rsi(bars, 14), 3)
    if len(rsi) >= 2:
        prev, cur = rsi[-2], rsi[-1]
        if cur < 30 and cur > prev:
            score += 15
        elif cur > 70 and cur < prev:
            score -= 15
        elif cur < 40 and cur > prev:
            score += 8
        elif cur > 60 and cur < prev:
            score -= 8

    kdj = calculate_kdj(bars)
    ks = last_n_valid(kdj.k, 3)
    ds = last_n_valid(kdj.d, 3)
    if len(ks) >= 2 and len(ds) >= 2:
        prev_k, cur_k = ks[-2], ks[-1]
        prev_d, cur_d = ds[-2], ds[-1]
        golden = prev_k <= prev_d and cur_k > cur_d
        death = prev_k >= prev_d and cur_k < cur_d

        if golden and cur_k < 30:
            score += 15
        elif death and cur_k > 70:
            score -= 15
        elif golden:
            score += 8
        elif death:
            score -= 8

    return _clamp(score, SignalScore.OSCILLATOR_MAX)


# ── Volume (±20) ─────────────────────────────────────────────────────────


def calculate_volume_score(bars: Sequence[PriceBar]) -> int:
    """OBV trend vs. price direction (±10) plus close vs. VWAP(20) (±10)."""
    score = 0

    obv_trend = get_obv_trend(calculate_obv(bars))
    price_up = len(bars) >= 2 and bars[-1].close > bars[-2].close

    if obv_trend == 1:
        score += 10 if price_up else 5  # confirmation / accumulation
    elif obv_trend == -1:
        score -= 5 if price_up else 10  # distribution / confirmation

    vwap = last_valid(calculate_vwap(bars, 20))
    if vwap is not None and bars:
        close = bars[-1].close
        if close > vwap:
            score += 10
        elif close < vwap:
            score -= 10

    return _clamp(score, SignalScore.VOLUME_MAX)


def is_volume_increasing(bars: Sequence[PriceBar]) -> bool:
    """Latest volume above the mean of the two bars before it."""
    if len(bars) < 5:
        return False
    return bars[-1].volume > (bars[-2].volume + bars[-3].volume) / 2


# ── Classification ───────────────────────────────────────────────────────


def classify_signal(total: int) -> SignalLevel:
    """Map a composite total onto a level.

    Thresholds are strict: 60 is ``buy`` and 30 is ``neutral``.
    """
    if total > 60:
        return SignalLevel.STRONG_BUY
    if total > 30:
        return SignalLevel.BUY
    if total > -30:
        return SignalLevel.NEUTRAL
    if total > -60:
        return SignalLevel.SELL
    return SignalLevel.STRONG_SELL


def build_signal_score(
    trend: int,
    oscillator: int,
    volume: int,
    support_resistance: int,
) -> SignalScore:
    """Clamp each dimension to its bound and assemble the composite."""
    trend = _clamp(trend, SignalScore.TREND_MAX)
    oscillator = _clamp(oscillator, SignalScore.OSCILLATOR_MAX)
    volume = _clamp(volume, SignalScore.VOLUME_MAX)
    support_resistance = _clamp(support_resistance, SignalScore.SUPPORT_RESISTANCE_MAX)

    total = trend + oscillator + volume + support_resistance
    level = classify_signal(total)
    return SignalScore(
        total=total,
        trend=trend,
        oscillator=oscillator,
        volume=volume,
        support_resistance=support_resistance,
        level=level,
        label=SIGNAL_LABELS[level],
    )


# ── Indicator snapshot ───────────────────────────────────────────────────


def collect_indicators(bars: Sequence[PriceBar]) -> IndicatorValues:
    """Latest defined value of each indicator for display."""
    ma = calculate_ma(bars)
    macd = calculate_macd(bars)
    kdj = calculate_kdj(bars)
    boll = calculate_bollinger(bars)

    dif, dea, hist = last_valid(macd.dif), last_valid(macd.dea), last_valid(macd.histogram)
    k, d, j = last_valid(kdj.k), last_valid(kdj.d), last_valid(kdj.j)
    upper, middle, lower = last_valid(boll.upper), last_valid(boll.middle), last_valid(boll.lower)

    return IndicatorValues(
        ma5=last_valid(ma.ma5),
        ma10=last_valid(ma.ma10),
        ma20=last_valid(ma.ma20),
        ma60=last_valid(ma.ma60),
        macd=(
            MACDValue(dif=dif, dea=dea, histogram=hist)
            if dif is not None and dea is not None and hist is not None
            else None
        ),
        rsi=last_valid(calculate_rsi(bars, 14)),
        kdj=(
            KDJValue(k=k, d=d, j=j)
            if k is not None and d is not None and j is not None
            else None
        ),
        boll=(
            BollingerValue(upper=upper, middle=middle, lower=lower)
            if upper is not None and middle is not None and lower is not None
            else None
        ),
        obv=last_valid(calculate_obv(bars)),
        vwap=last_valid(calculate_vwap(bars, 20)),
        atr=last_valid(calculate_atr(bars, 14)),
    )


# ── Entry point ──────────────────────────────────────────────────────────


def run_analysis(
    bars: Sequence[PriceBar],
    risk_fraction: float = 0.02,
) -> Optional[AnalysisResult]:
    """Score the latest bar and derive a trade plan.

    Args:
        bars: Price history sorted oldest-first.
        risk_fraction: Fraction of notional risked per trade for sizing.

    Returns:
        ``AnalysisResult``, or ``None`` when fewer than ``MIN_BARS`` bars
        are supplied (analysis not yet available).
    """
    if len(bars) < MIN_BARS:
        return None

    levels = calculate_support_resistance(bars)
    sr_score = calculate_sr_score(bars[-1].close, levels, is_volume_increasing(bars))

    signal = build_signal_score(
        trend=calculate_trend_score(bars),
        oscillator=calculate_oscillator_score(bars),
        volume=calculate_volume_score(bars),
        support_resistance=sr_score,
    )

    return AnalysisResult(
        signal=signal,
        trade_plan=generate_trade_plan(bars, signal, levels, risk_fraction),
        indicators=collect_indicators(bars),
        support_levels=list(levels.support),
        resistance_levels=list(levels.resistance),
    )
