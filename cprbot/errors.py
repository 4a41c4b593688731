"""Error kinds raised by the signal-and-risk engine and the execution gateway.

The first four are cycle-scoped: the engine turns them into a ``no_trade``
decision and moves on to the next cycle.  Gateway errors mean the intent was
not realized; they are never retried by the engine.
"""


class TradingEngineError(ValueError):
    """Base for recoverable, cycle-scoped engine errors."""

    reason = "engine_error"


class IndicatorUndefined(TradingEngineError):
    """Insufficient or degenerate candle history."""

    reason = "indicator_undefined"


class InvalidPositionSize(TradingEngineError):
    """Computed size is non-positive or at/below the exchange minimum."""

    reason = "invalid_position_size"


class RiskRewardTooLow(TradingEngineError):
    """Stop/target pair does not meet the minimum risk/reward ratio."""

    reason = "risk_reward_too_low"


class DailyRiskCapExceeded(TradingEngineError):
    """Realized loss for the trading day has reached the cap."""

    reason = "daily_risk_cap_exceeded"


class ExecutionError(RuntimeError):
    """The gateway could not realize an order intent."""


class PrecisionUnavailable(ExecutionError):
    """Quantity precision for the symbol is unknown; orders fail closed."""
