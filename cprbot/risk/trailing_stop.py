"""Trailing stop — ratchets the SL of an open position toward price.

Rule: once price is beyond entry, the stop trails at half the open profit
behind price.  The stop only ever tightens.
"""

from cprbot.strategy.models import PositionState

TRAIL_FRACTION = 0.5


def adjust_trailing_stop(
    current_price: float,
    entry_price: float,
    stop_loss: float,
    direction: str,
) -> float:
    """Return the new stop for a position opened at *entry_price*.

    - **Long**, price above entry:  ``max(sl, price − 0.5 × (price − entry))``
    - **Short**, price below entry: ``min(sl, price + 0.5 × (entry − price))``

    Otherwise the stop is returned unchanged.

    *entry_price* must be the position's fill price.  Passing the current
    price makes the rule a no-op.
    """
    if direction == "long" and current_price > entry_price:
        return max(
            stop_loss,
            current_price - (current_price - entry_price) * TRAIL_FRACTION,
        )
    if direction == "short" and current_price < entry_price:
        return min(
            stop_loss,
            current_price + (entry_price - current_price) * TRAIL_FRACTION,
        )
    if direction not in ("long", "short"):
        raise ValueError(f"direction must be 'long' or 'short', got '{direction}'")
    return stop_loss


def trail_position(position: PositionState, current_price: float) -> float | None:
    """Apply the trailing rule to *position* in place.

    Returns:
        The new SL if it moved, ``None`` if no change.
    """
    new_sl = adjust_trailing_stop(
        current_price,
        position.entry_price,
        position.stop_loss,
        position.direction,
    )
    if new_sl == position.stop_loss:
        return None
    position.stop_loss = new_sl
    return new_sl
