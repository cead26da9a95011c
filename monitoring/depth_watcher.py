"""
Order book depth watching.

Each DepthWatcher measures the quote value resting within a percentage band
around mid price on both sides of one symbol's book, persists every sample,
and alerts when a side stays below its minimum for long enough.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

import logfire

from config import settings
from data_engine.database import DatabaseManager
from data_engine.exchange import ExchangeClient, TransientFetchError
from data_engine.models import AlertKind, DepthSample, OrderBook
from monitoring.alerting import AlertPublisher, EpisodeState
from monitoring.retry import FatalWatcherError, depth_retry
from monitoring.throttle import NotificationGate, now_ms

logger = logging.getLogger(__name__)

# Wait before re-fetching a book with an empty side; not counted as a failure
EMPTY_BOOK_WAIT_SECONDS = 1.0

FETCH_FAILURE_COUNTER = logfire.metric_counter(
    "watcher_fetch_failures_total",
    unit="1",
    description="Failed market data fetches seen by watchers"
)
WATCHER_TERMINATED_COUNTER = logfire.metric_counter(
    "watchers_terminated_total",
    unit="1",
    description="Watchers stopped permanently after repeated fetch failures"
)


def compute_depth_sample(
    exchange_id: str,
    symbol: str,
    order_book: OrderBook,
    percentage: float,
    timestamp: int,
) -> Optional[DepthSample]:
    """
    Measure bid and ask depth within `percentage` of mid price.

    Returns:
        DepthSample, or None when either side of the book is empty
    """
    if not order_book.is_two_sided:
        return None

    bid_quantity, bid_value = order_book.get_liquidity_at_percentage("bids", percentage)
    ask_quantity, ask_value = order_book.get_liquidity_at_percentage("asks", percentage)

    return DepthSample(
        exchange=exchange_id,
        symbol=symbol,
        timestamp=timestamp,
        bid_depth_value=bid_value,
        ask_depth_value=ask_value,
        mid_price=order_book.mid_price,
        bid_quantity=bid_quantity,
        ask_quantity=ask_quantity,
    )


class DepthWatcher:
    """
    Watch loop for one symbol's order book depth.

    Iterations are strictly sequential. Episode state is owned by this
    watcher alone; the NotificationGate is shared with the rest of the
    exchange monitor.
    """

    def __init__(
        self,
        exchange_id: str,
        symbol: str,
        source: ExchangeClient,
        persistence: DatabaseManager,
        publisher: AlertPublisher,
        gate: NotificationGate,
        percentage: float,
        min_value: float,
        notification_interval: float = 0,
        duration: float = 0,
        is_running: Callable[[], bool] = lambda: True,
        clock: Callable[[], int] = now_ms,
        poll_interval: float = 0.0,
    ):
        """
        Args:
            percentage: Band around mid price, in percent
            min_value: Minimum quote value per side inside the band
            notification_interval: Minutes between alerts of the same side (0 = unthrottled)
            duration: Seconds a breach must persist before the first alert
            is_running: Checked at the top of every iteration
            poll_interval: Seconds to pause after each sample (REST polling)
        """
        self.exchange_id = exchange_id
        self.symbol = symbol
        self.source = source
        self.persistence = persistence
        self.publisher = publisher
        self.gate = gate
        self.percentage = percentage
        self.min_value = min_value
        self.notification_interval = notification_interval
        self.duration = duration
        self.is_running = is_running
        self.clock = clock
        self.poll_interval = poll_interval

        self.retry = depth_retry(f"[{exchange_id}] depth {symbol}")
        self.episodes: Dict[AlertKind, EpisodeState] = {
            AlertKind.DEPTH_BID: EpisodeState(),
            AlertKind.DEPTH_ASK: EpisodeState(),
        }
        self.terminated = False

    async def run(self):
        """Loop until the monitor stops or the failure limit is reached."""
        logger.info(f"[{self.exchange_id}] Starting depth watch for {self.symbol}")

        while self.is_running():
            try:
                order_book = await self.source.fetch_order_book(self.symbol)
            except TransientFetchError as e:
                if not await self._back_off(e):
                    return
                continue

            self.retry.reset()
            sample = compute_depth_sample(
                self.exchange_id, self.symbol, order_book, self.percentage, self.clock()
            )
            if sample is None:
                logger.debug(f"[{self.exchange_id}] {self.symbol}: empty book side, waiting")
                await asyncio.sleep(EMPTY_BOOK_WAIT_SECONDS)
                continue

            await self.persistence.record_depth(sample)
            await self._evaluate(AlertKind.DEPTH_BID, sample.bid_depth_value, sample.bid_quantity, sample)
            await self._evaluate(AlertKind.DEPTH_ASK, sample.ask_depth_value, sample.ask_quantity, sample)

            if self.poll_interval:
                await asyncio.sleep(self.poll_interval)

        logger.info(f"[{self.exchange_id}] Depth watch for {self.symbol} stopped")

    async def _back_off(self, error: TransientFetchError) -> bool:
        """Wait out a failed fetch. Returns False when the watcher must end."""
        if settings.logfire_token:
            FETCH_FAILURE_COUNTER.add(1, {"exchange": self.exchange_id, "watcher": "depth"})
        try:
            delay_ms = self.retry.record_failure()
        except FatalWatcherError as fatal:
            self.terminated = True
            logger.error(f"[{self.exchange_id}] Depth watch for {self.symbol} terminated: {fatal} (last error: {error})")
            if settings.logfire_token:
                WATCHER_TERMINATED_COUNTER.add(1, {"exchange": self.exchange_id, "watcher": "depth"})
            return False

        logger.warning(
            f"[{self.exchange_id}] Error watching depth for {self.symbol}: {error} "
            f"(attempt {self.retry.attempts}/{self.retry.max_attempts}, retrying in {delay_ms}ms)"
        )
        await asyncio.sleep(delay_ms / 1000)
        return True

    async def _evaluate(self, kind: AlertKind, value: float, quantity: float, sample: DepthSample):
        episode = self.episodes[kind]
        label = "Bid" if kind == AlertKind.DEPTH_BID else "Ask"

        if value >= self.min_value:
            if episode.active:
                logger.info(
                    f"[{self.exchange_id}] {self.symbol}: {label.lower()} depth recovered "
                    f"after {episode.elapsed(sample.timestamp) / 1000:.0f}s"
                )
            episode.clear()
            # Next breach may alert as soon as its own duration gate passes
            self.gate.clear(self.symbol, kind)
            return

        if episode.begin(sample.timestamp):
            logger.info(f"[{self.exchange_id}] {self.symbol}: {label.lower()} depth {value:.2f} below {self.min_value:g}")

        elapsed_ms = episode.elapsed(sample.timestamp)
        if elapsed_ms < self.duration * 1000:
            return
        if not self.gate.should_notify(self.symbol, kind, self.notification_interval):
            return

        sign = "-" if kind == AlertKind.DEPTH_BID else "+"
        message = (
            f"[{self.exchange_id.upper()} {self.symbol}] Low {label} Depth ({sign}{self.percentage:g}%): "
            f"{value:.2f} < {self.min_value:g} for {elapsed_ms / 1000:.0f}s | "
            f"Qty: {quantity:.4f} | Mid: {sample.mid_price:.2f}"
        )
        await self.publisher.publish(self.symbol, kind, message)
