"""CprBot — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from cprbot.risk.parameters import RiskParameters


_REQUIRED_VARS = [
    "BINANCE_API_KEY",
    "BINANCE_API_SECRET",
]


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    binance_api_key: str
    binance_api_secret: str
    binance_environment: str  # "testnet" or "live"
    symbol: str
    interval: str
    candle_limit: int
    leverage: int
    risk_per_trade: float
    max_lot_size: float
    min_lot_size: float
    daily_risk_cap: float
    poll_interval_seconds: int
    time_sync_interval_seconds: int
    recv_window_ms: int
    telegram_bot_token: Optional[str]
    telegram_chat_id: Optional[str]
    db_path: str
    log_level: str
    health_port: int

    @property
    def binance_base_url(self) -> str:
        """Return the USDⓈ-M futures REST base URL for the environment."""
        if self.binance_environment == "live":
            return "https://fapi.binance.com"
        return "https://testnet.binancefuture.com"

    @property
    def risk_parameters(self) -> RiskParameters:
        """Validated risk parameters.  Raises ``ValueError`` if inconsistent."""
        return RiskParameters(
            leverage=self.leverage,
            risk_per_trade=self.risk_per_trade,
            max_lot_size=self.max_lot_size,
            daily_risk_cap=self.daily_risk_cap,
            min_lot_size=self.min_lot_size,
        )


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent, or when the risk settings are inconsistent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    environment = os.environ.get("BINANCE_ENVIRONMENT", "testnet")
    if environment not in ("testnet", "live"):
        raise ValueError(
            f"BINANCE_ENVIRONMENT must be 'testnet' or 'live', got '{environment}'"
        )

    config = Config(
        binance_api_key=os.environ["BINANCE_API_KEY"],
        binance_api_secret=os.environ["BINANCE_API_SECRET"],
        binance_environment=environment,
        symbol=os.environ.get("SYMBOL", "BTCUSDT"),
        interval=os.environ.get("INTERVAL", "3m"),
        candle_limit=int(os.environ.get("CANDLE_LIMIT", "100")),
        leverage=int(os.environ.get("LEVERAGE", "10")),
        risk_per_trade=float(os.environ.get("RISK_PER_TRADE", "0.01")),
        max_lot_size=float(os.environ.get("MAX_LOT_SIZE", "0.01")),
        min_lot_size=float(os.environ.get("MIN_LOT_SIZE", "0.001")),
        daily_risk_cap=float(os.environ.get("DAILY_RISK_CAP", "0.05")),
        poll_interval_seconds=int(os.environ.get("POLL_INTERVAL_SECONDS", "180")),
        time_sync_interval_seconds=int(
            os.environ.get("TIME_SYNC_INTERVAL_SECONDS", "3600")
        ),
        recv_window_ms=int(os.environ.get("RECV_WINDOW_MS", "5000")),
        telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID") or None,
        db_path=os.environ.get("DB_PATH", "data/cprbot.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
    )
    # Fail at startup rather than on the first cycle
    _ = config.risk_parameters
    return config
