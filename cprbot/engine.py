"""CprBot — Trading engine (orchestration loop).

Connects market data, the signal-and-risk core, and the execution gateway
into a single polling loop.  Each cycle is fetch → decide → act and runs to
completion before the next one starts.
"""

import asyncio
import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from cprbot.api.routers import record_decision, update_bot_status
from cprbot.broker.binance_client import BinanceFuturesClient
from cprbot.broker.gateway import ExecutionGateway
from cprbot.broker.models import Position
from cprbot.config import Config
from cprbot.errors import ExecutionError, IndicatorUndefined
from cprbot.notify.telegram import TelegramNotifier
from cprbot.repos.trade_repo import TradeRepo
from cprbot.risk.daily_risk import DailyRiskAccumulator, day_start
from cprbot.risk.sl_tp import calculate_stop_and_target
from cprbot.risk.trailing_stop import trail_position
from cprbot.strategy.indicators import calculate_atr, calculate_support_resistance
from cprbot.strategy.models import CandleData, Decision, PositionState
from cprbot.strategy.signals import decide, evaluate_exit, unchecked_candles

logger = logging.getLogger("cprbot")


class TradingEngine:
    """Orchestrates one evaluation-and-execution cycle per call.

    Args:
        config: Application configuration.
        broker: A ``BinanceFuturesClient`` (or compatible duck-type / mock).
        gateway: Execution gateway.  Defaults to one wrapping *broker*.
        notifier: Chat notifier.  Defaults to Telegram from *config*.
        trade_repo: Optional trade repository for persistence.
        mode: ``"testnet"`` or ``"live"``; recorded with each trade.
    """

    def __init__(
        self,
        config: Config,
        broker: BinanceFuturesClient,
        gateway: Optional[ExecutionGateway] = None,
        notifier: Optional[TelegramNotifier] = None,
        trade_repo: Optional[TradeRepo] = None,
        mode: str = "testnet",
    ) -> None:
        self._config = config
        self._params = config.risk_parameters
        self._broker = broker
        self._gateway = gateway or ExecutionGateway(broker, config.symbol)
        self._notifier = notifier or TelegramNotifier(
            config.telegram_bot_token, config.telegram_chat_id,
        )
        self._trade_repo = trade_repo
        self._mode = mode
        self._daily: Optional[DailyRiskAccumulator] = None
        self._position: Optional[PositionState] = None
        self._running: bool = False
        self._cycle_count: int = 0
        self._last_time_sync: float = 0.0
        self._cap_notified_day = None

    @property
    def symbol(self) -> str:
        return self._config.symbol

    @property
    def position(self) -> Optional[PositionState]:
        """The open position, if any."""
        return self._position

    @property
    def daily_risk(self) -> Optional[DailyRiskAccumulator]:
        return self._daily

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self, utc_now: Optional[datetime] = None) -> None:
        """Prepare exchange state and the daily risk accumulator.

        Clock sync, precision and leverage failures are logged and the
        engine still starts: orders fail closed until precision is loaded.
        An unreachable account endpoint is fatal, since nothing can be sized
        without equity.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)

        await self._sync_time()

        try:
            await self._gateway.load_precision()
        except Exception as exc:
            logger.error("Failed to fetch quantity precision: %s", exc)
            await self._notifier.send(f"Failed to fetch asset precision: {exc}")

        try:
            leverage = await self._broker.set_leverage(
                self.symbol, self._params.leverage,
            )
            logger.info("Leverage for %s set to %dx", self.symbol, leverage)
        except Exception as exc:
            logger.warning("Could not set leverage for %s: %s", self.symbol, exc)

        summary = await self._broker.get_account_summary()
        self._daily = DailyRiskAccumulator(
            daily_risk_cap=self._params.daily_risk_cap,
            reference_equity=summary.equity,
            utc_now=utc_now,
        )
        if self._trade_repo is not None:
            self._daily.restore(
                self._trade_repo.realized_loss_since(day_start(utc_now))
            )

        exchange_position = await self._broker.get_position(self.symbol)
        if exchange_position is not None:
            await self._adopt_position(exchange_position, utc_now)
        elif self._trade_repo is not None:
            stale = self._trade_repo.get_open_trade(self.symbol)
            if stale is not None:
                self._supersede_trade(stale, utc_now)

        self._running = True
        update_bot_status(
            mode=self._mode,
            running=True,
            symbol=self.symbol,
            interval=self._config.interval,
            equity=summary.equity,
            balance=summary.balance,
            daily_realized_loss=self._daily.realized_loss,
            daily_risk_cap_breached=self._daily.breached,
            position=asdict(self._position) if self._position else None,
            started_at=utc_now.isoformat(),
        )

    async def _adopt_position(
        self,
        exchange_position: Position,
        utc_now: datetime,
        candles: Optional[list[CandleData]] = None,
    ) -> None:
        """Resume tracking a position the bot holds on the exchange but not locally.

        This happens at startup, and when an entry filled although its
        submission reported an error.  Stop and target come from the trade
        repo when it has a matching open row, otherwise they are recomputed
        from the current ATR and a new row is recorded.  An open row in the
        other direction is closed as ``superseded``.
        """
        if candles is None:
            candles = await self._broker.fetch_candles(
                self.symbol, self._config.interval, self._config.candle_limit,
            )
        row = (
            self._trade_repo.get_open_trade(self.symbol)
            if self._trade_repo is not None else None
        )
        if row is not None and row["direction"] != exchange_position.direction:
            self._supersede_trade(row, utc_now)
            row = None

        if row is not None:
            stop_loss, take_profit = row["stop_loss"], row["take_profit"]
            trade_id = row["id"]
        else:
            try:
                atr = calculate_atr(candles)
                support, resistance = calculate_support_resistance(candles)
            except IndicatorUndefined as exc:
                logger.error("Cannot adopt open %s position: %s", self.symbol, exc)
                raise
            levels = calculate_stop_and_target(
                exchange_position.entry_price, atr, support, resistance,
                exchange_position.direction,
            )
            stop_loss, take_profit = levels.sl, levels.tp
            trade_id = None
            if self._trade_repo is not None:
                trade_id = self._trade_repo.insert_trade(
                    mode=self._mode,
                    symbol=self.symbol,
                    direction=exchange_position.direction,
                    quantity=exchange_position.quantity,
                    entry_price=exchange_position.entry_price,
                    stop_loss=stop_loss,
                    take_profit=take_profit,
                    entry_order_id="",
                    entry_reason="adopted",
                    opened_at=utc_now.isoformat(),
                )

        self._position = PositionState(
            direction=exchange_position.direction,
            entry_price=exchange_position.entry_price,
            quantity=exchange_position.quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            opened_at=utc_now.isoformat(),
            trade_id=trade_id,
            checked_through=candles[-1].open_time if candles else 0,
        )
        update_bot_status(position=asdict(self._position))
        logger.warning(
            "Adopted open %s position: %s %s @ %.2f (SL %.2f, TP %.2f)",
            exchange_position.direction, exchange_position.quantity,
            self.symbol, exchange_position.entry_price, stop_loss, take_profit,
        )

    def _supersede_trade(self, row: dict, utc_now: datetime) -> None:
        """Close a repo row the exchange no longer backs.  PnL is unknown and booked as 0."""
        logger.warning(
            "Open %s trade %s has no matching exchange position; marking superseded",
            row["direction"], row["id"],
        )
        self._trade_repo.close_trade(
            row["id"],
            exit_price=row["entry_price"],
            exit_reason="superseded",
            pnl=0.0,
            closed_at=utc_now.isoformat(),
        )

    def stop(self) -> None:
        """Signal the engine to stop after the current cycle."""
        self._running = False

    async def _sync_time(self) -> None:
        try:
            await self._broker.sync_time()
        except Exception as exc:
            logger.error("Failed to synchronize server time: %s", exc)
            await self._notifier.send(f"Failed to synchronize server time: {exc}")
        else:
            self._last_time_sync = time.monotonic()

    # ── Polling loop ─────────────────────────────────────────────────────

    async def run(
        self,
        poll_interval: int | None = None,
        max_cycles: int = 0,
    ) -> list[dict]:
        """Run the trading loop until stopped.

        Args:
            poll_interval: Seconds between cycles.  Defaults to config.
            max_cycles: Stop after this many cycles (0 = unlimited).

        Returns:
            List of per-cycle result dicts.
        """
        if poll_interval is None:
            poll_interval = self._config.poll_interval_seconds
        results: list[dict] = []
        cycle = 0

        while self._running:
            cycle += 1
            self._cycle_count += 1

            if (
                time.monotonic() - self._last_time_sync
                >= self._config.time_sync_interval_seconds
            ):
                await self._sync_time()

            try:
                result = await self.run_once()
            except Exception as exc:
                logger.error("Cycle %d error: %s", cycle, exc)
                await self._notifier.send(f"Error in strategy cycle: {exc}")
                result = {"action": "error", "reason": str(exc)}
            results.append(result)
            logger.info("Cycle %d: %s", cycle, result.get("action", "unknown"))
            update_bot_status(
                cycle_count=self._cycle_count,
                last_cycle_at=datetime.now(timezone.utc).isoformat(),
            )

            if max_cycles > 0 and cycle >= max_cycles:
                break

            # Interruptible sleep — checks _running every second
            for _ in range(poll_interval):
                if not self._running:
                    break
                await asyncio.sleep(1)

        update_bot_status(running=False)
        return results

    # ── Single cycle ─────────────────────────────────────────────────────

    async def run_once(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one trading cycle.

        Returns a dict describing the action taken:

        - ``{"action": "skipped", "reason": "..."}``
        - ``{"action": "order_placed", ...}``
        - ``{"action": "position_closed", ...}``
        - ``{"action": "error", "reason": "..."}``

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
                     Accepting it as a parameter makes the engine testable
                     without mocking ``datetime``.
        """
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)
        if self._daily is None:
            raise RuntimeError("TradingEngine.initialize() must be called first")

        if self._gateway.quantity_precision is None:
            try:
                await self._gateway.load_precision()
            except Exception as exc:
                logger.warning("Quantity precision still unavailable: %s", exc)

        candles = await self._broker.fetch_candles(
            self.symbol, self._config.interval, self._config.candle_limit,
        )
        if not candles:
            return {"action": "skipped", "reason": "no_data"}
        latest = candles[-1]

        summary = await self._broker.get_account_summary()
        self._daily.roll(utc_now, equity=summary.equity)
        update_bot_status(equity=summary.equity, balance=summary.balance)

        # 1 ── Reconcile with the exchange
        exchange_position = await self._broker.get_position(self.symbol)
        if self._position is None and exchange_position is not None:
            logger.warning("Exchange holds a %s position the engine did not record",
                           exchange_position.direction)
            await self._adopt_position(exchange_position, utc_now, candles)
            await self._notifier.send(
                f"Adopted untracked {exchange_position.direction} position: "
                f"{exchange_position.quantity} {self.symbol} "
                f"@ {exchange_position.entry_price:.2f}"
            )

        # 2 ── Manage the open position
        if self._position is not None:
            if exchange_position is None:
                return self._forget_position("external_close", latest.close, utc_now)

            # Every candle since the last check, oldest first; the stop
            # trails on each close that did not hit a level
            moved = None
            for candle in unchecked_candles(self._position, candles):
                exit_signal = evaluate_exit(self._position, candle)
                if exit_signal is not None:
                    return await self._close_position(
                        exit_signal.reason, exit_signal.price, utc_now,
                    )
                new_sl = trail_position(self._position, candle.close)
                if new_sl is not None:
                    moved = new_sl
            self._position.checked_through = latest.open_time

            if moved is not None:
                logger.info("Trailing stop moved to %.2f", moved)
                if self._trade_repo is not None and self._position.trade_id:
                    self._trade_repo.update_stop(self._position.trade_id, moved)

        # 3 ── Signal-and-risk core
        decision = decide(
            candles,
            self._params,
            summary.equity,
            self._daily,
            position=self._position,
            utc_now=utc_now,
        )
        self._publish(decision, utc_now)

        if decision.action == "exit":
            return await self._close_position(decision.reason, latest.close, utc_now)

        if decision.action == "none":
            if decision.reason == "daily_risk_cap_exceeded":
                await self._notify_cap_breach()
            return {"action": "skipped", "reason": decision.reason}

        # 4 ── Execute the entry
        return await self._enter(decision, latest, utc_now)

    async def _enter(
        self, decision: Decision, entry_candle: CandleData, utc_now: datetime,
    ) -> dict:
        intent = decision.intent
        try:
            resp = await self._gateway.submit(intent)
        except ExecutionError as exc:
            logger.error("Failed to place %s order: %s", intent.direction, exc)
            await self._notifier.send(f"Failed to place order: {exc}")
            return {"action": "error", "reason": "execution_failed", "detail": str(exc)}

        entry_price = resp.price
        if entry_price <= 0:
            logger.warning(
                "Order %s reported no fill price — using %.2f",
                resp.order_id, intent.entry_price_hint,
            )
            entry_price = intent.entry_price_hint
        quantity = resp.quantity if resp.quantity > 0 else intent.quantity

        self._position = PositionState(
            direction=intent.direction,
            entry_price=entry_price,
            quantity=quantity,
            stop_loss=intent.stop_loss,
            take_profit=intent.take_profit,
            order_id=resp.order_id,
            opened_at=utc_now.isoformat(),
            checked_through=entry_candle.open_time,
        )
        if self._trade_repo is not None:
            self._position.trade_id = self._trade_repo.insert_trade(
                mode=self._mode,
                symbol=self.symbol,
                direction=intent.direction,
                quantity=quantity,
                entry_price=entry_price,
                stop_loss=intent.stop_loss,
                take_profit=intent.take_profit,
                entry_order_id=resp.order_id,
                entry_reason=decision.reason,
                opened_at=utc_now.isoformat(),
            )

        await self._notifier.send(
            f"{resp.side} order placed: {quantity} {self.symbol} @ {entry_price:.2f} "
            f"SL {intent.stop_loss:.2f} TP {intent.take_profit:.2f}"
        )
        update_bot_status(
            last_order_time=utc_now.isoformat(),
            position=asdict(self._position),
        )

        return {
            "action": "order_placed",
            "order_id": resp.order_id,
            "direction": intent.direction,
            "quantity": quantity,
            "entry": entry_price,
            "sl": intent.stop_loss,
            "tp": intent.take_profit,
            "reason": decision.reason,
        }

    async def _close_position(self, reason: str, hint_price: float, utc_now: datetime) -> dict:
        position = self._position
        try:
            resp = await self._gateway.close(position, reason)
        except ExecutionError as exc:
            logger.error("Failed to close %s position: %s", position.direction, exc)
            await self._notifier.send(f"Failed to close position: {exc}")
            return {"action": "error", "reason": "close_failed", "detail": str(exc)}

        exit_price = resp.price if resp.price > 0 else hint_price
        result = self._forget_position(reason, exit_price, utc_now, resp.order_id)
        await self._notifier.send(
            f"Closed {position.direction} {self.symbol} @ {exit_price:.2f} "
            f"({reason}), PnL {result['pnl']:.2f}"
        )
        return result

    def _forget_position(
        self,
        reason: str,
        exit_price: float,
        utc_now: datetime,
        exit_order_id: str = "",
    ) -> dict:
        """Book the realized PnL of the open position and drop it."""
        position = self._position
        pnl = position.unrealized_pnl(exit_price)
        self._daily.record_pnl(pnl, utc_now)
        if self._trade_repo is not None and position.trade_id:
            self._trade_repo.close_trade(
                position.trade_id,
                exit_price=exit_price,
                exit_reason=reason,
                pnl=pnl,
                exit_order_id=exit_order_id,
                closed_at=utc_now.isoformat(),
            )
        self._position = None
        if reason == "external_close":
            logger.warning(
                "%s position closed outside the bot; PnL estimated at %.2f",
                position.direction, pnl,
            )
        update_bot_status(
            position=None,
            daily_realized_loss=self._daily.realized_loss,
            daily_risk_cap_breached=self._daily.breached,
        )
        return {
            "action": "position_closed",
            "direction": position.direction,
            "entry": position.entry_price,
            "exit": exit_price,
            "pnl": pnl,
            "reason": reason,
        }

    def _publish(self, decision: Decision, utc_now: datetime) -> None:
        snapshot = decision.snapshot
        record_decision({
            "evaluated_at": utc_now.isoformat(),
            "symbol": self.symbol,
            "signal": decision.signal,
            "action": decision.action,
            "reason": decision.reason,
            "price": snapshot.price if snapshot else None,
            "atr": snapshot.atr if snapshot else None,
            "rsi": snapshot.rsi if snapshot else None,
        })
        update_bot_status(
            daily_realized_loss=self._daily.realized_loss,
            daily_risk_cap_breached=self._daily.breached,
            position=asdict(self._position) if self._position else None,
        )

    async def _notify_cap_breach(self) -> None:
        """Notify once per trading day that the daily cap blocks entries."""
        if self._cap_notified_day == self._daily.day:
            return
        self._cap_notified_day = self._daily.day
        await self._notifier.send(
            f"Daily risk cap reached ({self._daily.realized_loss:.2f} lost today) "
            f"— no new entries until UTC midnight"
        )
