"""
Process entry point.

Loads configuration, initialises the database, starts one ExchangeMonitor
per configured exchange and runs until SIGINT/SIGTERM.

Exit codes: 0 after a signal-driven shutdown, 1 on a start-up failure.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

import logfire

from config import settings
from config.monitors import ConfigError, MonitorsConfig, load_monitor_config
from data_engine.database import DatabaseManager, PersistenceError
from data_engine.exchange import ExchangeClient
from data_engine.notifier import LarkNotifier
from monitoring.supervisor import ExchangeMonitor

logger = logging.getLogger("monitoring")


def configure_observability():
    """Configure stdlib logging and, when a token is set, Logfire."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        stream=sys.stdout,
    )

    if settings.logfire_token:
        logfire.configure(
            service_name=settings.logfire_service_name,
            token=settings.logfire_token,
            environment=settings.logfire_environment,
            scrubbing=logfire.ScrubbingOptions(
                extra_patterns=[r'lark_?webhook', r'hook/[a-zA-Z0-9-]+']
            ),
            console=logfire.ConsoleOptions(
                min_log_level=settings.logfire_console_level
            )
        )
        # Webhook deliveries and ccxt both go through aiohttp
        logfire.instrument_aiohttp_client()
        logger.info("Logfire observability initialized.")


async def run(
    config_path: Optional[str] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """
    Run every configured monitor until `stop_event` is set.

    SIGINT/SIGTERM set the event from the start, so a signal that arrives
    during start-up still ends in an orderly shutdown.

    Returns:
        Process exit code
    """
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()

    def _shutdown(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown, sig)
        except (NotImplementedError, RuntimeError):
            # Windows or a non-main thread; rely on stop_event
            pass

    try:
        return await _serve(config_path, stop_event)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


async def _serve(config_path: Optional[str], stop_event: asyncio.Event) -> int:
    logger.info("Starting exchange liquidity watch...")
    try:
        config = load_monitor_config(config_path or settings.monitors_config_path)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        async with DatabaseManager() as db:
            return await _monitor(config, db, stop_event)
    except PersistenceError as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1


async def _monitor(config: MonitorsConfig, db: DatabaseManager, stop_event: asyncio.Event) -> int:
    clients: List[ExchangeClient] = []
    for exchange_id in config.exchanges:
        try:
            clients.append(ExchangeClient(exchange_id))
        except ValueError as e:
            logger.error(f"Failed to initialize monitor for {exchange_id}: {e}")
            for client in clients:
                await client.close()
            return 1

    notifier = LarkNotifier()
    monitors: List[ExchangeMonitor] = []
    for client in clients:
        monitor = ExchangeMonitor(client.exchange_id, client, db, notifier)
        monitor.start(config.for_exchange(client.exchange_id))
        monitors.append(monitor)
        logger.info(f"Initialized monitor for {client.exchange_id}")

    try:
        await stop_event.wait()
    finally:
        await asyncio.gather(*(monitor.stop() for monitor in monitors))
        await notifier.close()

    logger.info("All monitors stopped")
    return 0


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Watch order book depth and trade silence across exchanges")
    parser.add_argument("--config", default=None, help="Path to the monitors JSON file")
    args = parser.parse_args(argv)

    configure_observability()
    sys.exit(asyncio.run(run(args.config)))


if __name__ == "__main__":
    main()
