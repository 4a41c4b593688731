"""Binance USDⓈ-M futures REST API async client.

Handles all communication with the exchange: server-time sync, candle
fetching, symbol metadata, account queries, leverage, order placement and
position queries.  Signed endpoints use HMAC-SHA256 over the query string.
"""

import asyncio
import hashlib
import hmac
import logging
import time
from typing import Optional
from urllib.parse import urlencode

import httpx

from cprbot.broker.models import AccountSummary, OrderRequest, OrderResponse, Position
from cprbot.config import Config
from cprbot.errors import PrecisionUnavailable
from cprbot.strategy.models import CandleData

logger = logging.getLogger("cprbot")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


class ServerClock:
    """Offset between the exchange clock and the local clock, in ms."""

    def __init__(self) -> None:
        self.offset_ms: int = 0
        self.synced_at: Optional[float] = None

    def now_ms(self) -> int:
        """Local time corrected to exchange time."""
        return int(time.time() * 1000) + self.offset_ms

    def update(self, server_time_ms: int, local_time_ms: int) -> None:
        self.offset_ms = server_time_ms - local_time_ms
        self.synced_at = time.time()


class BinanceFuturesClient:
    """Async client wrapping the Binance USDⓈ-M futures REST API."""

    def __init__(self, config: Config, clock: Optional[ServerClock] = None) -> None:
        self._config = config
        self._base_url = config.binance_base_url
        self._api_secret = config.binance_api_secret.encode()
        self._recv_window = config.recv_window_ms
        self._headers = {"X-MBX-APIKEY": config.binance_api_key}
        self.clock = clock or ServerClock()

    # ── Signing ──────────────────────────────────────────────────────────

    def _sign(self, params: dict) -> dict:
        """Return *params* with timestamp, recvWindow and signature added."""
        signed = {
            **params,
            "recvWindow": self._recv_window,
            "timestamp": self.clock.now_ms(),
        }
        query = urlencode(signed)
        signed["signature"] = hmac.new(
            self._api_secret, query.encode(), hashlib.sha256,
        ).hexdigest()
        return signed

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        *,
        signed: bool = False,
        retry: bool = True,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.  With
        ``retry=False`` exactly one attempt is made; order placement uses
        this so a market order is never submitted twice.

        Signed requests are re-signed on every attempt so the timestamp
        stays inside ``recvWindow``.
        """
        url = f"{self._base_url}{path}"
        attempts = _MAX_RETRIES if retry else 1
        last_exc: Optional[Exception] = None

        for attempt in range(attempts):
            query = self._sign(params or {}) if signed else dict(params or {})
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        params=query,
                        timeout=30.0,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES and retry:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Binance %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), path, resp.status_code,
                        attempt + 1, attempts, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                if resp.is_error:
                    logger.error(
                        "Binance %s %s failed (%d): %s",
                        method.upper(), path, resp.status_code, resp.text,
                    )
                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                last_exc = exc
                if not retry:
                    raise
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Binance %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), path, exc,
                    attempt + 1, attempts, delay,
                )
                await asyncio.sleep(delay)

        # All retries exhausted — raise the last error
        raise last_exc  # type: ignore[misc]

    # ── Server time ──────────────────────────────────────────────────────

    async def sync_time(self) -> int:
        """Synchronize the local clock offset with the exchange.

        Returns the new offset in ms.
        """
        resp = await self._request_with_retry("get", "/fapi/v1/time")
        local_ms = int(time.time() * 1000)
        self.clock.update(int(resp.json()["serverTime"]), local_ms)
        logger.info("Server time offset updated: %dms", self.clock.offset_ms)
        return self.clock.offset_ms

    # ── Market data ──────────────────────────────────────────────────────

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        limit: int = 100,
    ) -> list[CandleData]:
        """Fetch klines for *symbol*.

        Args:
            symbol: e.g. ``"BTCUSDT"``
            interval: e.g. ``"3m"``, ``"1h"``
            limit: number of klines to request (max 1500)

        Returns:
            List of ``CandleData`` ordered oldest-first.  The last kline is
            the one still forming.
        """
        params = {"symbol": symbol, "interval": interval, "limit": limit}
        resp = await self._request_with_retry("get", "/fapi/v1/klines", params)

        return [
            CandleData(
                high=float(k[2]),
                low=float(k[3]),
                close=float(k[4]),
                open_time=int(k[0]),
            )
            for k in resp.json()
        ]

    async def get_quantity_precision(self, symbol: str) -> int:
        """Return the number of decimals allowed in order quantities.

        Raises ``PrecisionUnavailable`` if *symbol* is not listed.
        """
        resp = await self._request_with_retry("get", "/fapi/v1/exchangeInfo")

        for info in resp.json().get("symbols", []):
            if info.get("symbol") == symbol:
                return int(info["quantityPrecision"])
        raise PrecisionUnavailable(f"Symbol {symbol} not found in exchange info")

    # ── Account ──────────────────────────────────────────────────────────

    async def get_account_summary(self) -> AccountSummary:
        """Query wallet balance, margin balance and available balance."""
        resp = await self._request_with_retry(
            "get", "/fapi/v2/account", signed=True,
        )

        acct = resp.json()
        return AccountSummary(
            balance=float(acct["totalWalletBalance"]),
            equity=float(acct["totalMarginBalance"]),
            available_balance=float(acct["availableBalance"]),
        )

    async def set_leverage(self, symbol: str, leverage: int) -> int:
        """Set initial leverage for *symbol*.  Returns the leverage applied."""
        resp = await self._request_with_retry(
            "post",
            "/fapi/v1/leverage",
            {"symbol": symbol, "leverage": leverage},
            signed=True,
        )
        return int(resp.json()["leverage"])

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_market_order(self, order: OrderRequest) -> OrderResponse:
        """Place a market order.  Never retried.

        Args:
            order: ``OrderRequest`` with symbol, side and rounded quantity.

        Returns:
            ``OrderResponse`` with the fill details.
        """
        params = {
            "symbol": order.symbol,
            "side": order.side,
            "type": "MARKET",
            "quantity": order.quantity,
            "newOrderRespType": "RESULT",
        }
        if order.reduce_only:
            params["reduceOnly"] = "true"

        resp = await self._request_with_retry(
            "post", "/fapi/v1/order", params, signed=True, retry=False,
        )

        data = resp.json()
        return OrderResponse(
            order_id=str(data["orderId"]),
            symbol=data["symbol"],
            side=data["side"],
            quantity=float(data.get("executedQty", order.quantity)),
            price=float(data.get("avgPrice", 0.0)),
            status=data.get("status", ""),
            time=int(data.get("updateTime", 0)),
        )

    # ── Positions ────────────────────────────────────────────────────────

    async def get_position(self, symbol: str) -> Optional[Position]:
        """Return the open position for *symbol*, or ``None`` if flat."""
        resp = await self._request_with_retry(
            "get", "/fapi/v2/positionRisk", {"symbol": symbol}, signed=True,
        )

        for p in resp.json():
            if p.get("symbol") != symbol:
                continue
            amount = float(p.get("positionAmt", "0"))
            if amount == 0:
                continue
            return Position(
                symbol=symbol,
                direction="long" if amount > 0 else "short",
                quantity=abs(amount),
                entry_price=float(p.get("entryPrice", "0")),
                unrealized_pnl=float(p.get("unRealizedProfit", "0")),
            )
        return None
