"""Entry/exit signal evaluation — pure functions, no I/O.

Given a candle window and the risk budget, produces at most one trade
intent per cycle.  Gates are applied in a fixed precedence; the first one
that fails decides the skip reason:

    1. indicators defined        → ``indicator_undefined``
    2. direction (long/short)    → ``no_signal`` / ``ambiguous_signal``
    3. open position             → ``position_open`` / exit on reversal
    4. position size valid       → ``invalid_position_size``
    5. minimum risk/reward       → ``risk_reward_too_low``
    6. daily risk cap            → ``daily_risk_cap_exceeded``
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from cprbot.errors import DailyRiskCapExceeded, TradingEngineError
from cprbot.risk.daily_risk import DailyRiskAccumulator, daily_risk_gate
from cprbot.risk.parameters import RiskParameters
from cprbot.risk.position_sizer import calculate_position_size
from cprbot.risk.sl_tp import calculate_stop_and_target, risk_reward_gate
from cprbot.strategy.indicators import build_snapshot
from cprbot.strategy.models import (
    CandleData,
    Decision,
    ExitSignal,
    IndicatorSnapshot,
    PositionState,
    SignalType,
    TradeIntent,
)

logger = logging.getLogger("cprbot")

RSI_MIDLINE = 50.0


def is_long_setup(snapshot: IndicatorSnapshot) -> bool:
    """Trend up, momentum up, price above the pivot range and support."""
    return (
        snapshot.ema_short > snapshot.ema_long
        and snapshot.rsi > RSI_MIDLINE
        and snapshot.price > snapshot.cpr_top
        and snapshot.price > snapshot.support
    )


def is_short_setup(snapshot: IndicatorSnapshot) -> bool:
    """Trend down, momentum down, price below the pivot range and resistance."""
    return (
        snapshot.ema_short < snapshot.ema_long
        and snapshot.rsi < RSI_MIDLINE
        and snapshot.price < snapshot.cpr_bottom
        and snapshot.price < snapshot.resistance
    )


def evaluate_signal(snapshot: IndicatorSnapshot) -> SignalType:
    """Classify *snapshot* as ``"long"``, ``"short"`` or ``"no_trade"``.

    Both setups are checked independently.  If both were to hold the
    snapshot is treated as ``"no_trade"``.
    """
    long_ok = is_long_setup(snapshot)
    short_ok = is_short_setup(snapshot)
    if long_ok and short_ok:
        logger.warning("Long and short setups both hold — ignoring: %s", snapshot)
        return "no_trade"
    if long_ok:
        return "long"
    if short_ok:
        return "short"
    return "no_trade"


def evaluate_exit(
    position: PositionState,
    candle: CandleData,
) -> Optional[ExitSignal]:
    """Check whether *candle* traded through the position's stop or target.

    When both levels fall inside the candle's range the stop wins, since
    the intra-candle path is unknown.
    """
    if position.direction == "long":
        if candle.low <= position.stop_loss:
            return ExitSignal(reason="stop_loss", price=position.stop_loss)
        if candle.high >= position.take_profit:
            return ExitSignal(reason="take_profit", price=position.take_profit)
    else:
        if candle.high >= position.stop_loss:
            return ExitSignal(reason="stop_loss", price=position.stop_loss)
        if candle.low <= position.take_profit:
            return ExitSignal(reason="take_profit", price=position.take_profit)
    return None


def unchecked_candles(
    position: PositionState,
    candles: Sequence[CandleData],
) -> list[CandleData]:
    """Candles not yet checked against *position*, oldest first.

    The candle at ``position.checked_through`` is included again because
    it was usually still forming when it was last checked.
    """
    return [c for c in candles if c.open_time >= position.checked_through]


def decide(
    candles: Sequence[CandleData],
    params: RiskParameters,
    equity: float,
    accumulator: DailyRiskAccumulator,
    position: Optional[PositionState] = None,
    utc_now: Optional[datetime] = None,
) -> Decision:
    """Run one evaluation cycle over *candles* (oldest first).

    Args:
        candles: Recent klines; the last close is the entry price hint.
        params: Risk budget and sizing limits.
        equity: Current account equity in quote currency.
        accumulator: Today's realized-loss state.
        position: The open position, if any.
        utc_now: Current UTC time.  Defaults to ``datetime.now(UTC)``.

    Returns:
        A ``Decision``.  Recoverable engine errors never escape: they become
        a ``no_trade`` decision carrying the error's reason slug.
    """
    if utc_now is None:
        utc_now = datetime.now(timezone.utc)

    snapshot: Optional[IndicatorSnapshot] = None
    signal: SignalType = "no_trade"
    try:
        snapshot = build_snapshot(candles)
        signal = evaluate_signal(snapshot)
        if signal == "no_trade":
            ambiguous = is_long_setup(snapshot) and is_short_setup(snapshot)
            return Decision(
                signal=signal,
                action="none",
                reason="ambiguous_signal" if ambiguous else "no_signal",
                snapshot=snapshot,
            )

        if position is not None:
            if position.direction == signal:
                return Decision(
                    signal=signal,
                    action="none",
                    reason="position_open",
                    snapshot=snapshot,
                )
            return Decision(
                signal=signal,
                action="exit",
                reason="signal_reversal",
                snapshot=snapshot,
            )

        # Entry path only; sizing never blocks an exit
        quantity = calculate_position_size(
            equity * params.risk_per_trade,
            snapshot.atr,
            params.max_lot_size,
            params.min_lot_size,
        )

        levels = calculate_stop_and_target(
            snapshot.price,
            snapshot.atr,
            snapshot.support,
            snapshot.resistance,
            signal,
            params.max_target_anchor_atr,
            params.min_stop_anchor_atr,
        )
        risk_reward_gate(
            levels.sl, levels.tp, snapshot.price, snapshot.atr, signal, params,
        )

        if not daily_risk_gate(accumulator, utc_now):
            raise DailyRiskCapExceeded(
                f"Daily loss {accumulator.realized_loss:.2f} has reached the cap"
            )

    except TradingEngineError as exc:
        logger.info("No trade (%s): %s", exc.reason, exc)
        return Decision(
            signal=signal, action="none", reason=exc.reason, snapshot=snapshot,
        )

    intent = TradeIntent(
        direction=signal,
        quantity=quantity,
        stop_loss=levels.sl,
        take_profit=levels.tp,
        entry_price_hint=snapshot.price,
    )
    return Decision(
        signal=signal,
        action="enter",
        reason=f"{signal}_setup",
        intent=intent,
        snapshot=snapshot,
    )
