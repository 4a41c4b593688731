"""Technical indicators — EMA, RSI, ATR, S/R, CPR, Bollinger. Pure functions, no I/O."""

import math
from typing import Sequence

from cprbot.errors import IndicatorUndefined
from cprbot.strategy.models import CandleData, IndicatorSnapshot

# Bollinger width grows by 1 sigma for every 1000 units of ATR.
BOLLINGER_BASE_MULT = 2.0
BOLLINGER_ATR_SCALE = 1000.0


def _finite(value: float, name: str) -> float:
    if not math.isfinite(value):
        raise IndicatorUndefined(f"{name} is not finite ({value})")
    return value


# ── EMA ──────────────────────────────────────────────────────────────────


def calculate_ema(prices: Sequence[float], period: int) -> list[float]:
    """Calculate an Exponential Moving Average series.

    Seeded with the first price (not an SMA)::

        ema[0] = prices[0]
        ema[i] = (prices[i] - ema[i-1]) × k + ema[i-1],  k = 2 / (period + 1)

    Returns the full series, same length as *prices*.  The caller uses the
    last element as the current EMA.

    Raises ``IndicatorUndefined`` if fewer than *period* prices are given.
    """
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")
    if len(prices) < period:
        raise IndicatorUndefined(
            f"Need at least {period} prices for EMA({period}), got {len(prices)}"
        )

    k = 2.0 / (period + 1)
    ema: list[float] = [prices[0]]
    for price in prices[1:]:
        ema.append((price - ema[-1]) * k + ema[-1])
    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(prices: Sequence[float], period: int = 14) -> float:
    """Calculate RSI over the seed window only.

    Gains and losses are summed over the deltas inside the first *period*
    prices (not a rolling window) and averaged over *period*::

        RS  = avg_gain / avg_loss
        RSI = 100 - 100 / (1 + RS)

    Raises ``IndicatorUndefined`` if fewer than *period* prices are given or
    if the seed window holds no losing delta (``avg_loss == 0``).
    """
    if period < 2:
        raise ValueError(f"period must be at least 2, got {period}")
    if len(prices) < period:
        raise IndicatorUndefined(
            f"Need at least {period} prices for RSI({period}), got {len(prices)}"
        )

    gains = 0.0
    losses = 0.0
    for i in range(1, period):
        change = prices[i] - prices[i - 1]
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        raise IndicatorUndefined(
            f"RSI({period}) undefined: no losses in the seed window"
        )

    rs = avg_gain / avg_loss
    return _finite(100.0 - 100.0 / (1.0 + rs), "RSI")


# ── ATR ──────────────────────────────────────────────────────────────────


def true_ranges(candles: Sequence[CandleData]) -> list[float]:
    """True range per candle; the first candle has no previous close and is 0."""
    trs: list[float] = []
    for i, candle in enumerate(candles):
        if i == 0:
            trs.append(0.0)
            continue
        prev_close = candles[i - 1].close
        trs.append(
            max(
                candle.high - candle.low,
                abs(candle.high - prev_close),
                abs(candle.low - prev_close),
            )
        )
    return trs


def calculate_atr(candles: Sequence[CandleData], period: int = 14) -> float:
    """Calculate the Average True Range.

    The first *period* true ranges are skipped as warm-up; the ATR is the
    simple average of the last *period* true ranges after that.

    Requires more than ``2 × period`` candles.

    Raises ``IndicatorUndefined`` if insufficient data.
    """
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")
    if len(candles) <= 2 * period:
        raise IndicatorUndefined(
            f"Need more than {2 * period} candles for ATR({period}), "
            f"got {len(candles)}"
        )

    tail = true_ranges(candles)[period:][-period:]
    return _finite(sum(tail) / period, "ATR")


# ── Support / resistance and CPR ─────────────────────────────────────────


def calculate_support_resistance(
    candles: Sequence[CandleData],
) -> tuple[float, float]:
    """Return ``(support, resistance)``: lowest low and highest high of the window."""
    if not candles:
        raise IndicatorUndefined("Support/resistance needs at least one candle")
    support = min(c.low for c in candles)
    resistance = max(c.high for c in candles)
    return support, resistance


def calculate_cpr(candles: Sequence[CandleData]) -> tuple[float, float]:
    """Return ``(cpr_top, cpr_bottom)`` for the whole window.

    This is a window-wide pivot, not the prior-session central pivot range::

        top    = (max(high) + min(low) + mean(close)) / 3
        bottom = (max(high) + min(low)) / 2
    """
    if not candles:
        raise IndicatorUndefined("CPR needs at least one candle")
    pivot_high = max(c.high for c in candles)
    pivot_low = min(c.low for c in candles)
    pivot_close = sum(c.close for c in candles) / len(candles)

    cpr_top = (pivot_high + pivot_low + pivot_close) / 3
    cpr_bottom = (pivot_high + pivot_low) / 2
    return cpr_top, cpr_bottom


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_dynamic_bollinger(
    closes: Sequence[float],
    atr: float,
) -> tuple[float, float]:
    """Volatility-scaled Bollinger band over the whole window.

    ``multiplier = 2 + atr / 1000``; SMA and population σ of *closes*.

    Returns ``(upper, lower)``.
    """
    if not closes:
        raise IndicatorUndefined("Bollinger band needs at least one close")
    multiplier = BOLLINGER_BASE_MULT + atr / BOLLINGER_ATR_SCALE
    n = len(closes)
    sma = sum(closes) / n
    variance = sum((x - sma) ** 2 for x in closes) / n
    sigma = math.sqrt(variance)
    return (
        _finite(sma + multiplier * sigma, "Bollinger upper"),
        _finite(sma - multiplier * sigma, "Bollinger lower"),
    )


# ── Snapshot ─────────────────────────────────────────────────────────────


def build_snapshot(
    candles: Sequence[CandleData],
    ema_short_period: int = 9,
    ema_long_period: int = 21,
    rsi_period: int = 14,
    atr_period: int = 14,
) -> IndicatorSnapshot:
    """Compute every indicator over *candles* (oldest first).

    Raises ``IndicatorUndefined`` if any single indicator is undefined.
    """
    if not candles:
        raise IndicatorUndefined("No candles to evaluate")

    closes = [c.close for c in candles]
    atr = calculate_atr(candles, atr_period)
    ema_short = calculate_ema(closes, ema_short_period)[-1]
    ema_long = calculate_ema(closes, ema_long_period)[-1]
    rsi = calculate_rsi(closes, rsi_period)
    support, resistance = calculate_support_resistance(candles)
    cpr_top, cpr_bottom = calculate_cpr(candles)
    bb_upper, bb_lower = calculate_dynamic_bollinger(closes, atr)

    return IndicatorSnapshot(
        ema_short=_finite(ema_short, "EMA short"),
        ema_long=_finite(ema_long, "EMA long"),
        rsi=rsi,
        atr=atr,
        support=support,
        resistance=resistance,
        cpr_top=cpr_top,
        cpr_bottom=cpr_bottom,
        bb_upper=bb_upper,
        bb_lower=bb_lower,
        price=closes[-1],
    )
