"""Broker data models — typed representations of Binance futures API objects."""

from dataclasses import dataclass


@dataclass(frozen=True)
class AccountSummary:
    """Summary of a USDⓈ-M futures account."""

    balance: float  # totalWalletBalance
    equity: float  # totalMarginBalance (wallet + unrealized PnL)
    available_balance: float
    currency: str = "USDT"


@dataclass(frozen=True)
class OrderRequest:
    """A market order request payload.

    ``quantity`` is already rounded to the symbol's quantity precision.
    """

    symbol: str
    side: str  # "BUY" or "SELL"
    quantity: str
    reduce_only: bool = False


@dataclass(frozen=True)
class OrderResponse:
    """Response from placing an order."""

    order_id: str
    symbol: str
    side: str
    quantity: float  # executed quantity
    price: float  # average fill price
    status: str
    time: int  # update time, ms since epoch


@dataclass(frozen=True)
class Position:
    """An open position as reported by the exchange."""

    symbol: str
    direction: str  # "long" or "short"
    quantity: float  # absolute size
    entry_price: float
    unrealized_pnl: float
