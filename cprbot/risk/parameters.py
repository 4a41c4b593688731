"""Risk parameters — process-wide, read-only after startup."""

from dataclasses import dataclass

# ── Policy knobs ─────────────────────────────────────────────────────────
# Exchange-imposed quantity floor for BTCUSDT perpetuals.
MIN_LOT_SIZE = 0.001
# Minimum reward:risk ratio in normal conditions.
MIN_RISK_REWARD_BASE = 2.0
# Relaxed minimum once ATR exceeds the volatility threshold.
MIN_RISK_REWARD_RELAXED = 1.5
# ATR level (quote currency) above which the market counts as volatile.
VOLATILITY_ATR_THRESHOLD = 500.0
# A structural target farther than this many ATRs is ignored.
MAX_TARGET_ANCHOR_ATR = 5.0
# A structural stop closer than this many ATRs is ignored.
MIN_STOP_ANCHOR_ATR = 0.5


@dataclass(frozen=True)
class RiskParameters:
    """Account-level risk budget and sizing limits.

    Fractions are expressed as 0–1 (``0.01`` = 1 %).

    Raises ``ValueError`` on construction when the invariant
    ``0 < risk_per_trade <= daily_risk_cap <= 1`` does not hold, or the lot
    limits are inconsistent.
    """

    leverage: int = 10
    risk_per_trade: float = 0.01
    max_lot_size: float = 0.01
    daily_risk_cap: float = 0.05
    min_risk_reward_base: float = MIN_RISK_REWARD_BASE
    min_risk_reward_relaxed: float = MIN_RISK_REWARD_RELAXED
    volatility_atr_threshold: float = VOLATILITY_ATR_THRESHOLD
    min_lot_size: float = MIN_LOT_SIZE
    max_target_anchor_atr: float = MAX_TARGET_ANCHOR_ATR
    min_stop_anchor_atr: float = MIN_STOP_ANCHOR_ATR

    def __post_init__(self) -> None:
        if not 0 < self.risk_per_trade <= self.daily_risk_cap <= 1:
            raise ValueError(
                "Require 0 < risk_per_trade <= daily_risk_cap <= 1, got "
                f"risk_per_trade={self.risk_per_trade}, "
                f"daily_risk_cap={self.daily_risk_cap}"
            )
        if not 0 < self.min_lot_size < self.max_lot_size:
            raise ValueError(
                "Require 0 < min_lot_size < max_lot_size, got "
                f"min_lot_size={self.min_lot_size}, "
                f"max_lot_size={self.max_lot_size}"
            )
        if self.leverage < 1:
            raise ValueError(f"leverage must be at least 1, got {self.leverage}")
        if self.min_risk_reward_relaxed > self.min_risk_reward_base:
            raise ValueError(
                "min_risk_reward_relaxed must not exceed min_risk_reward_base"
            )
