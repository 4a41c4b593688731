"""CprBot — application entry point.

Boots the FastAPI internal status server and provides the CLI entry point
for testnet and live modes.
"""

import logging

from fastapi import FastAPI

from cprbot.api.routers import router

app = FastAPI(title="CprBot Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("cprbot")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE — Real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and start the bot."""
    import argparse
    import asyncio
    import signal
    import time

    from cprbot.api.routers import configure_routers
    from cprbot.broker.binance_client import BinanceFuturesClient
    from cprbot.config import load_config
    from cprbot.engine import TradingEngine
    from cprbot.notify.telegram import TelegramNotifier
    from cprbot.repos.db import init_db
    from cprbot.repos.trade_repo import TradeRepo

    parser = argparse.ArgumentParser(description="CprBot futures trading bot")
    parser.add_argument(
        "--mode",
        choices=["testnet", "live"],
        default=None,
        help="Trading mode (default: BINANCE_ENVIRONMENT, else testnet)",
    )
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the trading engine without the status API server",
    )
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env_file)
    mode = args.mode or config.binance_environment
    if mode != config.binance_environment:
        parser.error(
            f"--mode {mode} does not match BINANCE_ENVIRONMENT="
            f"{config.binance_environment}"
        )

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)

    if warn_if_live(mode):
        time.sleep(5)

    broker = BinanceFuturesClient(config)
    notifier = TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id)
    trade_repo = TradeRepo(config.db_path)
    engine = TradingEngine(
        config=config,
        broker=broker,
        notifier=notifier,
        trade_repo=trade_repo,
        mode=mode,
    )
    configure_routers(trade_repo=trade_repo)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping gracefully.")
        engine.stop()

    signal.signal(signal.SIGINT, handle_shutdown)

    if args.engine_only:
        asyncio.run(_run_engine_only(engine, notifier, mode))
    else:
        asyncio.run(_run_with_api(engine, notifier, mode, config.health_port))


async def _start_engine(engine, notifier) -> list[dict]:
    try:
        await engine.initialize()
    except Exception as exc:
        logger.critical("Critical error during startup: %s", exc)
        await notifier.send(f"Critical Error: {exc}")
        raise
    return await engine.run()


async def _run_with_api(engine, notifier, mode: str, port: int) -> None:
    """Start the status API server and the trading engine concurrently."""
    import asyncio

    import uvicorn

    logger.info("Starting CprBot in %s mode.", mode)

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    # uvicorn takes over SIGINT while serving; stopping either side stops both
    async def _serve():
        try:
            await server.serve()
        finally:
            engine.stop()

    async def _run_engine():
        try:
            return await _start_engine(engine, notifier)
        finally:
            server.should_exit = True

    logger.info("Status API available at http://localhost:%d/status", port)
    results = await asyncio.gather(
        _serve(),
        _run_engine(),
        return_exceptions=True,
    )
    logger.info("CprBot stopped. Results: %s", results)


async def _run_engine_only(engine, notifier, mode: str) -> None:
    """Run the trading engine without starting the API server."""
    logger.info("Starting CprBot engine (no API) in %s mode.", mode)
    await _start_engine(engine, notifier)
    logger.info("CprBot engine stopped.")


if __name__ == "__main__":
    _run_cli()
