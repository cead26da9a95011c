"""
Trade silence watching.

A fetch loop keeps `last_trade_time` current while a one-second timer checks
how long the symbol has gone without trading. Only the fetch loop writes
`last_trade_time`; the timer only reads it.
"""

import asyncio
import logging
from typing import Callable

from config import settings
from data_engine.exchange import ExchangeClient, TransientFetchError
from data_engine.models import AlertKind
from monitoring.alerting import AlertPublisher, EpisodeState
from monitoring.depth_watcher import FETCH_FAILURE_COUNTER, WATCHER_TERMINATED_COUNTER
from monitoring.retry import FatalWatcherError, trade_retry
from monitoring.throttle import NotificationGate, now_ms

logger = logging.getLogger(__name__)

SILENCE_CHECK_INTERVAL_SECONDS = 1.0


class TradeSilenceWatcher:
    """Tracks time since the last trade of one symbol and alerts on silence."""

    def __init__(
        self,
        exchange_id: str,
        symbol: str,
        source: ExchangeClient,
        publisher: AlertPublisher,
        gate: NotificationGate,
        max_silence_time: float,
        notification_interval: float = 0,
        is_running: Callable[[], bool] = lambda: True,
        clock: Callable[[], int] = now_ms,
        poll_interval: float = 0.0,
        check_interval: float = SILENCE_CHECK_INTERVAL_SECONDS,
    ):
        self.exchange_id = exchange_id
        self.symbol = symbol
        self.source = source
        self.publisher = publisher
        self.gate = gate
        self.max_silence_time = max_silence_time
        self.notification_interval = notification_interval
        self.is_running = is_running
        self.clock = clock
        self.poll_interval = poll_interval
        self.check_interval = check_interval

        self.retry = trade_retry(f"[{exchange_id}] trades {symbol}")
        self.episode = EpisodeState()
        self.last_trade_time = clock()
        self.terminated = False

    @property
    def silence_ms(self) -> int:
        return self.clock() - self.last_trade_time

    async def run(self):
        """Fetch loop: advance last_trade_time on every non-empty batch."""
        logger.info(f"[{self.exchange_id}] Starting trade watch for {self.symbol}")

        while self.is_running():
            try:
                trades = await self.source.fetch_trades(self.symbol)
            except TransientFetchError as e:
                if settings.logfire_token:
                    FETCH_FAILURE_COUNTER.add(1, {"exchange": self.exchange_id, "watcher": "trades"})
                try:
                    delay_ms = self.retry.record_failure()
                except FatalWatcherError as fatal:
                    self.terminated = True
                    logger.error(f"[{self.exchange_id}] Trade watch for {self.symbol} terminated: {fatal} (last error: {e})")
                    if settings.logfire_token:
                        WATCHER_TERMINATED_COUNTER.add(1, {"exchange": self.exchange_id, "watcher": "trades"})
                    return
                logger.warning(
                    f"[{self.exchange_id}] Error watching trades for {self.symbol}: {e} "
                    f"(attempt {self.retry.attempts}/{self.retry.max_attempts}, retrying in {delay_ms}ms)"
                )
                await asyncio.sleep(delay_ms / 1000)
                continue

            self.retry.reset()
            if trades:
                self.last_trade_time = trades[-1].timestamp or self.clock()

            if self.poll_interval:
                await asyncio.sleep(self.poll_interval)

        logger.info(f"[{self.exchange_id}] Trade watch for {self.symbol} stopped")

    async def run_timer(self):
        """Periodic silence check; ends when cancelled or the monitor stops."""
        while self.is_running():
            await asyncio.sleep(self.check_interval)
            if not self.is_running():
                break
            await self.check_silence()

    async def check_silence(self) -> bool:
        """
        Compare current silence with the threshold.

        Returns:
            True if an alert was published
        """
        now = self.clock()
        silence_ms = now - self.last_trade_time

        if silence_ms <= self.max_silence_time * 1000:
            if self.episode.active:
                logger.info(
                    f"[{self.exchange_id}] {self.symbol}: trading resumed after "
                    f"{self.episode.elapsed(now) / 1000:.0f}s of silence past threshold"
                )
                self.episode.clear()
            return False

        self.episode.begin(now)
        if not self.gate.should_notify(self.symbol, AlertKind.SILENCE, self.notification_interval):
            return False

        message = (
            f"[{self.exchange_id.upper()} {self.symbol}] No trades for {silence_ms / 1000:.0f}s "
            f"(Threshold: {self.max_silence_time:g}s)"
        )
        await self.publisher.publish(self.symbol, AlertKind.SILENCE, message)
        return True
