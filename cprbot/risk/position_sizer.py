"""Position sizing — pure math, no I/O.

Converts a currency risk budget and the current ATR into a quantity of the
base asset, clamped to the exchange lot limits.
"""

import math

from cprbot.errors import InvalidPositionSize
from cprbot.risk.parameters import MIN_LOT_SIZE


def calculate_position_size(
    account_risk_amount: float,
    atr: float,
    max_lot_size: float,
    min_lot_size: float = MIN_LOT_SIZE,
) -> float:
    """Calculate position size in base-asset units.

    Formula::

        raw  = account_risk_amount / atr
        size = clamp(raw, min_lot_size, max_lot_size)

    Args:
        account_risk_amount: Currency amount risked on the trade
            (equity × risk_per_trade).
        atr: Current ATR in quote currency.
        max_lot_size: Upper bound on the quantity.
        min_lot_size: Exchange quantity floor (default 0.001).

    Returns:
        Unrounded quantity, strictly above *min_lot_size*.

    Raises:
        InvalidPositionSize: If *atr* or *account_risk_amount* is not
            positive, or the clamped size is at or below *min_lot_size*.
            The caller must skip the trade.
    """
    if not math.isfinite(atr) or atr <= 0:
        raise InvalidPositionSize(f"atr must be positive, got {atr}")
    if not math.isfinite(account_risk_amount) or account_risk_amount <= 0:
        raise InvalidPositionSize(
            f"account_risk_amount must be positive, got {account_risk_amount}"
        )

    raw = account_risk_amount / atr
    size = min(max(raw, min_lot_size), max_lot_size)
    if size <= min_lot_size:
        raise InvalidPositionSize(
            f"Position size {raw:.6f} is at or below the minimum lot "
            f"{min_lot_size}"
        )
    return size
