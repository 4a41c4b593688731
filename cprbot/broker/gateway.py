"""Execution gateway — turns a finalized ``TradeIntent`` into an exchange order.

Owns quantity precision.  Orders are submitted once; a failed submission is
reported as ``ExecutionError`` and the intent is considered not realized.
"""

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Optional

import httpx

from cprbot.broker.binance_client import BinanceFuturesClient
from cprbot.broker.models import OrderRequest, OrderResponse
from cprbot.errors import ExecutionError, PrecisionUnavailable
from cprbot.strategy.models import ENTRY_SIDE, EXIT_SIDE, PositionState, TradeIntent

logger = logging.getLogger("cprbot")


def round_quantity(quantity: float, precision: int) -> str:
    """Round *quantity* down to *precision* decimals, as an order string.

    Rounding down keeps the realized risk at or below the sized risk.
    """
    if precision < 0:
        raise PrecisionUnavailable(f"Invalid quantity precision {precision}")
    step = Decimal(1).scaleb(-precision)
    return str(Decimal(str(quantity)).quantize(step, rounding=ROUND_DOWN))


class ExecutionGateway:
    """Submits entries and exits for a single symbol.

    Args:
        broker: A ``BinanceFuturesClient`` (or compatible duck-type / mock).
        symbol: Symbol traded, e.g. ``"BTCUSDT"``.
        quantity_precision: Decimals allowed in quantities.  ``None`` until
            ``load_precision()`` succeeds; orders fail closed meanwhile.
    """

    def __init__(
        self,
        broker: BinanceFuturesClient,
        symbol: str,
        quantity_precision: Optional[int] = None,
    ) -> None:
        self._broker = broker
        self._symbol = symbol
        self._precision = quantity_precision

    @property
    def quantity_precision(self) -> Optional[int]:
        return self._precision

    async def load_precision(self) -> int:
        """Fetch and cache the symbol's quantity precision."""
        self._precision = await self._broker.get_quantity_precision(self._symbol)
        logger.info("Quantity precision for %s: %d", self._symbol, self._precision)
        return self._precision

    def _rounded(self, quantity: float) -> str:
        if self._precision is None:
            raise PrecisionUnavailable(
                f"Quantity precision for {self._symbol} has not been loaded"
            )
        rounded = round_quantity(quantity, self._precision)
        if Decimal(rounded) <= 0:
            raise ExecutionError(
                f"Quantity {quantity} rounds to zero at precision {self._precision}"
            )
        return rounded

    async def _send(self, order: OrderRequest) -> OrderResponse:
        try:
            return await self._broker.place_market_order(order)
        except httpx.HTTPError as exc:
            raise ExecutionError(
                f"{order.side} {order.quantity} {order.symbol} failed: {exc}"
            ) from exc
        except (KeyError, ValueError) as exc:
            # Malformed order response; the order state is unknown
            raise ExecutionError(
                f"{order.side} {order.quantity} {order.symbol} returned an "
                f"unreadable response: {exc!r}"
            ) from exc

    async def submit(self, intent: TradeIntent) -> OrderResponse:
        """Place the market entry for *intent*.

        Raises:
            PrecisionUnavailable: If precision was never loaded.
            ExecutionError: If the quantity rounds to zero or the exchange
                rejects / fails the request.
        """
        order = OrderRequest(
            symbol=self._symbol,
            side=ENTRY_SIDE[intent.direction],
            quantity=self._rounded(intent.quantity),
        )
        resp = await self._send(order)
        logger.info(
            "%s order filled: %s %s @ %.2f (order %s)",
            order.side, resp.quantity, self._symbol, resp.price, resp.order_id,
        )
        return resp

    async def close(self, position: PositionState, reason: str) -> OrderResponse:
        """Flatten *position* with a reduce-only market order."""
        order = OrderRequest(
            symbol=self._symbol,
            side=EXIT_SIDE[position.direction],
            quantity=self._rounded(position.quantity),
            reduce_only=True,
        )
        resp = await self._send(order)
        logger.info(
            "Closed %s %s %s @ %.2f (%s)",
            position.direction, resp.quantity, self._symbol, resp.price, reason,
        )
        return resp
