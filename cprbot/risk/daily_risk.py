"""Daily risk cap — realized-loss accumulator, pure state, no I/O.

Tracks realized loss for the current UTC trading day against a fraction of
the day's reference equity.  The gate is observe-only: once breached it
blocks new entries but never flattens an open position.  The accumulator
resets at UTC midnight.
"""

from datetime import date, datetime, timezone
from typing import Optional


def trading_day(utc_now: datetime) -> date:
    """UTC calendar day that *utc_now* belongs to."""
    if utc_now.tzinfo is None:
        raise ValueError("utc_now must be timezone-aware")
    return utc_now.astimezone(timezone.utc).date()


def day_start(utc_now: datetime) -> datetime:
    """UTC midnight that opened the trading day of *utc_now*."""
    day = trading_day(utc_now)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


class DailyRiskAccumulator:
    """Accumulates realized losses for one trading day.

    Args:
        daily_risk_cap: Fraction of reference equity that may be lost in a
                        day (e.g. 0.05 for 5 %).
        reference_equity: Equity the cap is measured against.
        utc_now: Current time; decides which trading day is open.
    """

    def __init__(
        self,
        daily_risk_cap: float,
        reference_equity: float,
        utc_now: Optional[datetime] = None,
    ) -> None:
        if not 0 < daily_risk_cap <= 1:
            raise ValueError(
                f"daily_risk_cap must be in (0, 1], got {daily_risk_cap}"
            )
        if reference_equity <= 0:
            raise ValueError(
                f"reference_equity must be positive, got {reference_equity}"
            )
        self._cap = daily_risk_cap
        self._reference_equity = reference_equity
        self._day = trading_day(utc_now or datetime.now(timezone.utc))
        self._realized_loss = 0.0

    # ── Mutation ─────────────────────────────────────────────────────────

    def roll(self, utc_now: datetime, equity: Optional[float] = None) -> bool:
        """Reset the accumulator if *utc_now* falls on a new trading day.

        *equity*, when given and positive, becomes the new day's reference.

        Returns ``True`` if a reset happened.
        """
        day = trading_day(utc_now)
        if day == self._day:
            return False
        self._day = day
        self._realized_loss = 0.0
        if equity is not None and equity > 0:
            self._reference_equity = equity
        return True

    def record_pnl(self, pnl: float, utc_now: datetime) -> None:
        """Record a closed trade's realized PnL.  Only losses accumulate."""
        self.roll(utc_now)
        if pnl < 0:
            self._realized_loss += -pnl

    def restore(self, realized_loss: float) -> None:
        """Seed today's realized loss, e.g. from persisted trades after a restart."""
        self._realized_loss = max(0.0, realized_loss)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def day(self) -> date:
        """Trading day currently being accumulated."""
        return self._day

    @property
    def realized_loss(self) -> float:
        """Realized loss so far today, in quote currency (non-negative)."""
        return self._realized_loss

    @property
    def reference_equity(self) -> float:
        return self._reference_equity

    @property
    def loss_fraction(self) -> float:
        """Today's realized loss as a fraction of reference equity."""
        return self._realized_loss / self._reference_equity

    @property
    def remaining_budget(self) -> float:
        """Currency that may still be lost today before the cap is hit."""
        return max(0.0, self._cap * self._reference_equity - self._realized_loss)

    @property
    def breached(self) -> bool:
        """``True`` when today's loss has reached or exceeded the cap."""
        return self.loss_fraction >= self._cap


def daily_risk_gate(accumulator: DailyRiskAccumulator, utc_now: datetime) -> bool:
    """Return whether a new trade may be opened at *utc_now*."""
    accumulator.roll(utc_now)
    return not accumulator.breached
