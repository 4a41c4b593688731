"""Tests for cprbot.broker — Binance futures client with mocked HTTP responses."""

import hashlib
import hmac
from urllib.parse import urlencode

import httpx
import pytest

from cprbot.broker.binance_client import BinanceFuturesClient, ServerClock
from cprbot.broker.models import AccountSummary, OrderRequest, OrderResponse, Position
from cprbot.config import Config
from cprbot.errors import PrecisionUnavailable
from cprbot.strategy.models import CandleData


def _make_config(environment: str = "testnet") -> Config:
    return Config(
        binance_api_key="test-key",
        binance_api_secret="test-secret",
        binance_environment=environment,
        symbol="BTCUSDT",
        interval="3m",
        candle_limit=100,
        leverage=10,
        risk_per_trade=0.01,
        max_lot_size=0.01,
        min_lot_size=0.001,
        daily_risk_cap=0.05,
        poll_interval_seconds=180,
        time_sync_interval_seconds=3600,
        recv_window_ms=5000,
        telegram_bot_token=None,
        telegram_chat_id=None,
        db_path=":memory:",
        log_level="INFO",
        health_port=8080,
    )


# ── Mock Binance responses ───────────────────────────────────────────────

MOCK_KLINES_RESPONSE = [
    [1741600800000, "83000.10", "83150.00", "82950.50", "83100.20", "120.5",
     1741600979999, "0", 1500, "60.1", "0", "0"],
    [1741600980000, "83100.20", "83300.00", "83050.00", "83280.70", "98.2",
     1741601159999, "0", 1300, "50.0", "0", "0"],
]

MOCK_EXCHANGE_INFO_RESPONSE = {
    "symbols": [
        {"symbol": "ETHUSDT", "quantityPrecision": 3, "pricePrecision": 2},
        {"symbol": "BTCUSDT", "quantityPrecision": 3, "pricePrecision": 1},
    ]
}

MOCK_ACCOUNT_RESPONSE = {
    "totalWalletBalance": "1000.00",
    "totalMarginBalance": "1012.50",
    "availableBalance": "950.25",
}

MOCK_ORDER_RESPONSE = {
    "orderId": 4045,
    "symbol": "BTCUSDT",
    "status": "FILLED",
    "side": "BUY",
    "executedQty": "0.010",
    "avgPrice": "83280.70",
    "updateTime": 1741601000123,
}

MOCK_POSITION_RISK_RESPONSE = [
    {
        "symbol": "BTCUSDT",
        "positionAmt": "-0.010",
        "entryPrice": "83300.0",
        "unRealizedProfit": "0.25",
    }
]


def _ok(method: str, url: str, payload) -> httpx.Response:
    return httpx.Response(200, json=payload, request=httpx.Request(method, url))


# ── Tests ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_parse_candles(monkeypatch):
    """CandleData fields populated from the kline arrays."""
    client = BinanceFuturesClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured["url"] = url
        captured["params"] = params
        return _ok("GET", url, MOCK_KLINES_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    candles = await client.fetch_candles("BTCUSDT", "3m", limit=2)
    assert len(candles) == 2
    c = candles[0]
    assert isinstance(c, CandleData)
    assert c.high == pytest.approx(83150.0)
    assert c.low == pytest.approx(82950.5)
    assert c.close == pytest.approx(83100.2)
    assert c.open_time == 1741600800000
    assert captured["url"].endswith("/fapi/v1/klines")
    assert captured["params"] == {"symbol": "BTCUSDT", "interval": "3m", "limit": 2}
    assert "signature" not in captured["params"]


@pytest.mark.asyncio
async def test_quantity_precision(monkeypatch):
    client = BinanceFuturesClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _ok("GET", url, MOCK_EXCHANGE_INFO_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.get_quantity_precision("BTCUSDT") == 3
    with pytest.raises(PrecisionUnavailable, match="DOGEUSDT"):
        await client.get_quantity_precision("DOGEUSDT")


@pytest.mark.asyncio
async def test_account_summary_is_signed(monkeypatch):
    """Balances parsed; request carries API key header and signature."""
    client = BinanceFuturesClient(_make_config())
    captured = {}

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        captured["headers"] = headers
        captured["params"] = params
        return _ok("GET", url, MOCK_ACCOUNT_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    summary = await client.get_account_summary()
    assert isinstance(summary, AccountSummary)
    assert summary.balance == pytest.approx(1000.0)
    assert summary.equity == pytest.approx(1012.5)
    assert summary.available_balance == pytest.approx(950.25)

    assert captured["headers"]["X-MBX-APIKEY"] == "test-key"
    params = dict(captured["params"])
    signature = params.pop("signature")
    assert params["recvWindow"] == 5000
    expected = hmac.new(
        b"test-secret", urlencode(params).encode(), hashlib.sha256,
    ).hexdigest()
    assert signature == expected


@pytest.mark.asyncio
async def test_market_order_payload(monkeypatch):
    """Market order params match the futures order endpoint."""
    client = BinanceFuturesClient(_make_config())
    captured = {}

    async def _mock_post(self, url, *, headers=None, params=None, timeout=None):
        captured["url"] = url
        captured["params"] = params
        return _ok("POST", url, MOCK_ORDER_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    resp = await client.place_market_order(
        OrderRequest(symbol="BTCUSDT", side="BUY", quantity="0.010")
    )

    assert isinstance(resp, OrderResponse)
    assert resp.order_id == "4045"
    assert resp.quantity == pytest.approx(0.01)
    assert resp.price == pytest.approx(83280.7)
    assert resp.status == "FILLED"

    params = captured["params"]
    assert captured["url"].endswith("/fapi/v1/order")
    assert params["type"] == "MARKET"
    assert params["side"] == "BUY"
    assert params["quantity"] == "0.010"
    assert "reduceOnly" not in params
    assert "signature" in params


@pytest.mark.asyncio
async def test_reduce_only_order(monkeypatch):
    client = BinanceFuturesClient(_make_config())
    captured = {}

    async def _mock_post(self, url, *, headers=None, params=None, timeout=None):
        captured.update(params)
        return _ok("POST", url, {**MOCK_ORDER_RESPONSE, "side": "SELL"})

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    await client.place_market_order(
        OrderRequest(symbol="BTCUSDT", side="SELL", quantity="0.010", reduce_only=True)
    )
    assert captured["reduceOnly"] == "true"


@pytest.mark.asyncio
async def test_order_never_retried(monkeypatch):
    """A 503 on order placement is raised after a single attempt."""
    client = BinanceFuturesClient(_make_config())
    calls = []

    async def _mock_post(self, url, *, headers=None, params=None, timeout=None):
        calls.append(url)
        return httpx.Response(503, text="busy", request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    with pytest.raises(httpx.HTTPStatusError):
        await client.place_market_order(
            OrderRequest(symbol="BTCUSDT", side="BUY", quantity="0.010")
        )
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_reads_are_retried(monkeypatch):
    """Transient 503 on a GET is retried with backoff."""
    client = BinanceFuturesClient(_make_config())
    calls = []
    delays = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls.append(url)
        if len(calls) == 1:
            return httpx.Response(503, request=httpx.Request("GET", url))
        return _ok("GET", url, MOCK_EXCHANGE_INFO_RESPONSE)

    async def _no_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    monkeypatch.setattr("cprbot.broker.binance_client.asyncio.sleep", _no_sleep)

    assert await client.get_quantity_precision("BTCUSDT") == 3
    assert len(calls) == 2
    assert delays == [2.0]


@pytest.mark.asyncio
async def test_client_error_not_retried(monkeypatch):
    client = BinanceFuturesClient(_make_config())
    calls = []

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        calls.append(url)
        return httpx.Response(
            400, json={"code": -1021, "msg": "Timestamp outside recvWindow"},
            request=httpx.Request("GET", url),
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    with pytest.raises(httpx.HTTPStatusError):
        await client.get_account_summary()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_get_position(monkeypatch):
    client = BinanceFuturesClient(_make_config())

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _ok("GET", url, MOCK_POSITION_RISK_RESPONSE)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    pos = await client.get_position("BTCUSDT")
    assert isinstance(pos, Position)
    assert pos.direction == "short"
    assert pos.quantity == pytest.approx(0.01)
    assert pos.entry_price == pytest.approx(83300.0)
    assert pos.unrealized_pnl == pytest.approx(0.25)


@pytest.mark.asyncio
async def test_flat_position_is_none(monkeypatch):
    client = BinanceFuturesClient(_make_config())
    flat = [{**MOCK_POSITION_RISK_RESPONSE[0], "positionAmt": "0.000"}]

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _ok("GET", url, flat)

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    assert await client.get_position("BTCUSDT") is None


@pytest.mark.asyncio
async def test_sync_time_sets_offset(monkeypatch):
    clock = ServerClock()
    client = BinanceFuturesClient(_make_config(), clock=clock)

    async def _mock_get(self, url, *, headers=None, params=None, timeout=None):
        return _ok("GET", url, {"serverTime": 4_102_444_800_000})

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    offset = await client.sync_time()
    assert offset == clock.offset_ms
    assert offset > 0
    assert clock.synced_at is not None
    assert abs(clock.now_ms() - 4_102_444_800_000) < 60_000


@pytest.mark.asyncio
async def test_set_leverage(monkeypatch):
    client = BinanceFuturesClient(_make_config())
    captured = {}

    async def _mock_post(self, url, *, headers=None, params=None, timeout=None):
        captured.update(params)
        return _ok("POST", url, {"symbol": "BTCUSDT", "leverage": 10})

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)

    assert await client.set_leverage("BTCUSDT", 10) == 10
    assert captured["leverage"] == 10


def test_environment_switching():
    """Testnet URL for testnet, production URL for live."""
    assert BinanceFuturesClient(_make_config("testnet"))._base_url == (
        "https://testnet.binancefuture.com"
    )
    assert BinanceFuturesClient(_make_config("live"))._base_url == (
        "https://fapi.binance.com"
    )
