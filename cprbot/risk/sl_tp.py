"""Stop-loss and take-profit calculation — pure math, no I/O.

ATR approach (default):
    Long:  SL = price − 1.5 × ATR,  TP = price + 2 × ATR
    Short: SL = price + 1.5 × ATR,  TP = price − 2 × ATR

Structural substitution (explicit, per leg):
    Long trades may anchor the stop on window support and the target on
    window resistance; short trades anchor the stop on resistance and the
    target on support.  A level is used only when it is on the correct side
    of price and at a sane distance:

    - stop:   between ``min_stop_anchor_atr`` ATRs and the ATR stop, so a
              structural level can tighten the stop but never widen it;
    - target: no farther than ``max_target_anchor_atr`` ATRs.

    Each leg records which source it came from.
"""

from dataclasses import dataclass

from cprbot.errors import RiskRewardTooLow
from cprbot.risk.parameters import (
    MAX_TARGET_ANCHOR_ATR,
    MIN_STOP_ANCHOR_ATR,
    RiskParameters,
)

SL_ATR_MULT = 1.5
TP_ATR_MULT = 2.0


@dataclass(frozen=True)
class RiskLevels:
    """Computed stop-loss and take-profit for a trade."""

    sl: float
    tp: float
    sl_source: str  # "atr" or "structure"
    tp_source: str  # "atr" or "structure"


def calculate_stop_and_target(
    current_price: float,
    atr: float,
    support: float,
    resistance: float,
    direction: str,
    max_target_anchor_atr: float = MAX_TARGET_ANCHOR_ATR,
    min_stop_anchor_atr: float = MIN_STOP_ANCHOR_ATR,
) -> RiskLevels:
    """Calculate SL and TP for a prospective entry at *current_price*.

    Args:
        current_price: Expected entry price (latest close).
        atr: Current ATR.
        support: Window support (lowest low).
        resistance: Window resistance (highest high).
        direction: ``"long"`` or ``"short"``.
        max_target_anchor_atr: Farthest structural target, in ATRs.
        min_stop_anchor_atr: Closest structural stop, in ATRs.

    Returns:
        ``RiskLevels`` with sl, tp and the source of each.

    Raises:
        ValueError: If *direction* is not ``"long"`` or ``"short"``.
    """
    sl_dist = SL_ATR_MULT * atr
    min_sl_dist = min_stop_anchor_atr * atr
    max_tp_dist = max_target_anchor_atr * atr

    if direction == "long":
        sl, sl_source = current_price - sl_dist, "atr"
        tp, tp_source = current_price + TP_ATR_MULT * atr, "atr"
        if min_sl_dist <= current_price - support <= sl_dist:
            sl, sl_source = support, "structure"
        if 0 < resistance - current_price <= max_tp_dist:
            tp, tp_source = resistance, "structure"
    elif direction == "short":
        sl, sl_source = current_price + sl_dist, "atr"
        tp, tp_source = current_price - TP_ATR_MULT * atr, "atr"
        if min_sl_dist <= resistance - current_price <= sl_dist:
            sl, sl_source = resistance, "structure"
        if 0 < current_price - support <= max_tp_dist:
            tp, tp_source = support, "structure"
    else:
        raise ValueError(f"direction must be 'long' or 'short', got '{direction}'")

    return RiskLevels(sl=sl, tp=tp, sl_source=sl_source, tp_source=tp_source)


def risk_reward_ratio(
    current_price: float,
    stop_loss: float,
    take_profit: float,
    direction: str,
) -> float:
    """Reward distance divided by risk distance, measured from *current_price*.

    Returns 0.0 when the target is on the wrong side of price.

    Raises:
        RiskRewardTooLow: If the stop is not on the loss side of price
            (risk distance is zero or negative).
    """
    if direction == "long":
        risk = current_price - stop_loss
        reward = take_profit - current_price
    elif direction == "short":
        risk = stop_loss - current_price
        reward = current_price - take_profit
    else:
        raise ValueError(f"direction must be 'long' or 'short', got '{direction}'")

    if risk <= 0:
        raise RiskRewardTooLow(
            f"Stop {stop_loss} is not on the loss side of price {current_price}"
        )
    return max(reward, 0.0) / risk


def min_risk_reward(atr: float, params: RiskParameters) -> float:
    """Minimum acceptable ratio: relaxed in high volatility, base otherwise."""
    if atr > params.volatility_atr_threshold:
        return params.min_risk_reward_relaxed
    return params.min_risk_reward_base


def risk_reward_gate(
    stop_loss: float,
    take_profit: float,
    current_price: float,
    atr: float,
    direction: str,
    params: RiskParameters,
) -> float:
    """Check the stop/target pair against the minimum R:R.

    Returns:
        The minimum ratio that was required.

    Raises:
        RiskRewardTooLow: If the pair's ratio is below the minimum.
    """
    required = min_risk_reward(atr, params)
    ratio = risk_reward_ratio(current_price, stop_loss, take_profit, direction)
    if ratio < required:
        raise RiskRewardTooLow(
            f"Risk-to-reward {ratio:.2f} is below minimum {required:.2f}"
        )
    return required
