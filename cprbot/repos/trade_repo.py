"""Trade repository — SQLite CRUD for the trades table."""

from datetime import datetime, timezone
from typing import Optional

from cprbot.repos.db import get_connection


class TradeRepo:
    """Data access layer for trade records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_trade(
        self,
        mode: str,
        symbol: str,
        direction: str,
        quantity: float,
        entry_price: float,
        stop_loss: float,
        take_profit: float,
        entry_order_id: str,
        entry_reason: str,
        opened_at: str,
    ) -> int:
        """Insert a new open trade and return its ``id``."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO trades
                    (mode, symbol, direction, quantity, entry_price,
                     stop_loss, take_profit, entry_order_id, entry_reason,
                     opened_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    mode, symbol, direction, quantity, entry_price,
                    stop_loss, take_profit, entry_order_id, entry_reason,
                    opened_at,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def update_stop(self, trade_id: int, stop_loss: float) -> None:
        """Record a trailed stop-loss on an open trade."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                "UPDATE trades SET stop_loss = ? WHERE id = ? AND status = 'open'",
                (stop_loss, trade_id),
            )
            conn.commit()
        finally:
            conn.close()

    def close_trade(
        self,
        trade_id: int,
        exit_price: float,
        exit_reason: str,
        pnl: float,
        exit_order_id: str = "",
        closed_at: Optional[str] = None,
    ) -> None:
        """Close an open trade by setting exit fields."""
        if closed_at is None:
            closed_at = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                UPDATE trades
                SET exit_price = ?, exit_reason = ?, pnl = ?,
                    exit_order_id = ?, status = 'closed', closed_at = ?
                WHERE id = ?
                """,
                (exit_price, exit_reason, pnl, exit_order_id, closed_at, trade_id),
            )
            conn.commit()
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_trades(
        self,
        limit: int = 20,
        status_filter: Optional[str] = None,
    ) -> dict:
        """Return recent trades, newest first.

        Returns:
            ``{"trades": [...], "total": int}``
        """
        conn = get_connection(self._db_path)
        try:
            where_clause = ""
            params: list = []
            if status_filter:
                where_clause = "WHERE status = ?"
                params.append(status_filter)

            rows = conn.execute(
                f"SELECT * FROM trades {where_clause} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM trades {where_clause}",
                params,
            ).fetchone()[0]

            return {"trades": [dict(row) for row in rows], "total": total}
        finally:
            conn.close()

    def get_open_trade(self, symbol: str) -> Optional[dict]:
        """Return the most recent open trade for *symbol*, if any."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                """
                SELECT * FROM trades
                WHERE symbol = ? AND status = 'open'
                ORDER BY id DESC LIMIT 1
                """,
                (symbol,),
            ).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def realized_loss_since(self, since: datetime) -> float:
        """Sum of losses (as a positive number) on trades closed at or after *since*."""
        conn = get_connection(self._db_path)
        try:
            value = conn.execute(
                """
                SELECT COALESCE(SUM(-pnl), 0.0) FROM trades
                WHERE status = 'closed' AND pnl < 0 AND closed_at >= ?
                """,
                (since.isoformat(),),
            ).fetchone()[0]
            return float(value)
        finally:
            conn.close()
