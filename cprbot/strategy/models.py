"""Strategy data models — typed representations for engine inputs and outputs."""

from dataclasses import dataclass
from typing import Literal, Optional

Direction = Literal["long", "short"]
SignalType = Literal["long", "short", "no_trade"]
DecisionAction = Literal["enter", "exit", "none"]

# Binance order side for each direction (entry side; exits use the opposite).
ENTRY_SIDE: dict[str, str] = {"long": "BUY", "short": "SELL"}
EXIT_SIDE: dict[str, str] = {"long": "SELL", "short": "BUY"}


@dataclass(frozen=True)
class CandleData:
    """A single kline bar for strategy consumption."""

    high: float
    low: float
    close: float
    open_time: int = 0  # exchange open time, ms since epoch


@dataclass(frozen=True)
class IndicatorSnapshot:
    """All indicator readings for one candle window.

    Recomputed from scratch every cycle; never mutated.
    """

    ema_short: float
    ema_long: float
    rsi: float
    atr: float
    support: float
    resistance: float
    cpr_top: float
    cpr_bottom: float
    bb_upper: float
    bb_lower: float
    price: float  # close of the latest candle


@dataclass(frozen=True)
class TradeIntent:
    """A finalized entry decision handed to the execution gateway.

    ``quantity`` is unrounded; precision rounding belongs to the gateway.
    """

    direction: Direction
    quantity: float
    stop_loss: float
    take_profit: float
    entry_price_hint: float


@dataclass
class PositionState:
    """The currently open position, owned by the engine.

    ``entry_price`` is the fill price reported by the gateway, never the
    price of the cycle that happens to be evaluating it.
    """

    direction: Direction
    entry_price: float
    quantity: float
    stop_loss: float
    take_profit: float
    order_id: str = ""
    opened_at: str = ""
    trade_id: Optional[int] = None  # row id in the trade repo
    # open_time of the newest candle already checked for exits; that candle
    # is checked again since it may still have been forming
    checked_through: int = 0

    def unrealized_pnl(self, price: float) -> float:
        """Mark-to-market PnL in quote currency at *price*."""
        if self.direction == "long":
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity


@dataclass(frozen=True)
class ExitSignal:
    """An exit triggered by the stop or the target."""

    reason: str  # "stop_loss", "take_profit" or "signal_reversal"
    price: float


@dataclass(frozen=True)
class Decision:
    """Outcome of one evaluation cycle.

    ``action`` is ``"enter"`` when ``intent`` is set, ``"exit"`` when the
    open position should be closed, ``"none"`` otherwise.  ``reason`` is a
    short slug (``"no_signal"``, ``"risk_reward_too_low"``, ...).
    """

    signal: SignalType
    action: DecisionAction
    reason: str
    intent: Optional[TradeIntent] = None
    snapshot: Optional[IndicatorSnapshot] = None
