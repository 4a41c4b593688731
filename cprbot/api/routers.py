"""Internal API routers — /status, /decisions and /trades endpoints.

No business logic.  The engine pushes its state here; the endpoints only
read it (and the trade repo).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

logger = logging.getLogger("cprbot")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_DEFAULT_STATUS: dict = {
    "mode": "idle",
    "running": False,
    "symbol": None,
    "interval": None,
    "equity": None,
    "balance": None,
    "daily_realized_loss": 0.0,
    "daily_risk_cap_breached": False,
    "position": None,
    "started_at": None,
    "cycle_count": 0,
    "last_cycle_at": None,
    "last_order_time": None,
}

_bot_status: dict = {**_DEFAULT_STATUS}
_decision_history: list = []  # Recent decisions (max 50 entries)
_trade_repo = None  # Set via configure_routers()

_MAX_DECISIONS = 50


def configure_routers(trade_repo=None, bot_status: Optional[dict] = None) -> None:
    """Inject dependencies from the application startup.

    Args:
        trade_repo: A ``TradeRepo`` instance (or duck-type for tests).
        bot_status: Optional dict merged into the status state.
    """
    global _trade_repo  # noqa: PLW0603
    _trade_repo = trade_repo
    if bot_status is not None:
        _bot_status.update(bot_status)


def reset_state() -> None:
    """Restore the default status and clear the decision log."""
    _bot_status.clear()
    _bot_status.update(_DEFAULT_STATUS)
    _decision_history.clear()


def update_bot_status(**fields) -> None:
    """Update individual fields of the status dict."""
    _bot_status.update(fields)


def record_decision(decision: dict) -> None:
    """Append a cycle outcome to the decision log, capped at 50 entries."""
    _decision_history.append(decision)
    if len(_decision_history) > _MAX_DECISIONS:
        del _decision_history[0]


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status() -> dict:
    """Current bot status."""
    return dict(_bot_status)


@router.get("/decisions")
async def get_decisions(limit: int = Query(20, ge=1, le=_MAX_DECISIONS)) -> dict:
    """Most recent cycle outcomes, newest first."""
    recent = list(reversed(_decision_history))[:limit]
    return {"decisions": recent, "total": len(_decision_history)}


@router.get("/trades")
async def get_trades(
    limit: int = Query(20, ge=1, le=500),
    status: Optional[str] = Query(None, pattern="^(open|closed)$"),
) -> dict:
    """Recent trades from the repository."""
    if _trade_repo is None:
        return {"trades": [], "total": 0}
    return _trade_repo.get_trades(limit=limit, status_filter=status)
