"""
Exchange monitor: owns every watcher of one exchange.

Manages:
- Spawning depth and trade watchers per configured symbol
- The notification throttle shared by those watchers
- Cooperative, bounded-wait shutdown followed by closing the data source
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, Optional, Union

from config import settings
from config.monitors import MonitorEntry
from data_engine.database import DatabaseManager
from data_engine.exchange import ExchangeClient
from data_engine.notifier import LarkNotifier
from monitoring.alerting import AlertPublisher
from monitoring.depth_watcher import DepthWatcher
from monitoring.throttle import NotificationGate, now_ms
from monitoring.trade_watcher import TradeSilenceWatcher

logger = logging.getLogger(__name__)

SHUTDOWN_POLL_SECONDS = 0.05


class ExchangeMonitor:
    """
    Supervisor for all watchers of a single exchange.

    Watchers that hit their failure limit are not restarted; `status`
    reports them as "terminated".
    """

    def __init__(
        self,
        exchange_id: str,
        source: ExchangeClient,
        persistence: DatabaseManager,
        notifier: LarkNotifier,
        shutdown_timeout_ms: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.exchange_id = exchange_id
        self.source = source
        self.persistence = persistence
        self.notifier = notifier
        self.shutdown_timeout_ms = (
            settings.shutdown_timeout_ms if shutdown_timeout_ms is None else shutdown_timeout_ms
        )
        self.clock = clock

        self.running = False
        self.gate = NotificationGate(clock)
        self.publisher = AlertPublisher(exchange_id, notifier, persistence, clock)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._watchers: Dict[str, Union[DepthWatcher, TradeSilenceWatcher]] = {}

    def is_running(self) -> bool:
        return self.running

    @property
    def poll_interval(self) -> float:
        return getattr(self.source, "poll_interval", 0.0) or 0.0

    @property
    def tasks(self) -> Dict[str, asyncio.Task]:
        return dict(self._tasks)

    @property
    def status(self) -> Dict[str, str]:
        """Watcher key -> running / stopped / terminated / crashed / cancelled."""
        result = {}
        for key, task in self._tasks.items():
            watcher = self._watchers.get(key)
            if not task.done():
                result[key] = "running"
            elif task.cancelled():
                result[key] = "cancelled"
            elif task.exception() is not None:
                result[key] = "crashed"
            elif watcher is not None and watcher.terminated:
                result[key] = "terminated"
            else:
                result[key] = "stopped"
        return result

    def start(self, entries: Iterable[MonitorEntry]):
        """Spawn one depth and/or one trade watcher per configured symbol."""
        entries = [entry for entry in entries if entry.exchange == self.exchange_id]
        self.running = True

        # Synthetic markets must be known before the first fetch
        for entry in entries:
            if entry.market:
                self.source.register_market({"symbol": entry.symbol, **entry.market.model_dump(exclude_none=True)})

        for entry in entries:
            if entry.depth:
                self._spawn(
                    f"depth:{entry.symbol}",
                    self.watch_depth(
                        entry.symbol,
                        entry.depth.percentage,
                        entry.depth.min_value,
                        entry.notification_interval,
                        entry.depth.duration,
                    ),
                )
            if entry.trade_silence:
                self._spawn(
                    f"trades:{entry.symbol}",
                    self.watch_trades(
                        entry.symbol,
                        entry.trade_silence.max_silence_time,
                        entry.notification_interval,
                    ),
                )

        logger.info(f"[{self.exchange_id}] Started {len(self._tasks)} watchers")

    async def watch_depth(
        self,
        symbol: str,
        percentage: float,
        min_value: float,
        notification_interval: float = 0,
        duration: float = 0,
    ):
        """Run a depth watcher for `symbol` until the monitor stops."""
        watcher = DepthWatcher(
            self.exchange_id,
            symbol,
            self.source,
            self.persistence,
            self.publisher,
            self.gate,
            percentage=percentage,
            min_value=min_value,
            notification_interval=notification_interval,
            duration=duration,
            is_running=self.is_running,
            clock=self.clock,
            poll_interval=self.poll_interval,
        )
        self._watchers[f"depth:{symbol}"] = watcher
        await watcher.run()

    async def watch_trades(self, symbol: str, max_silence_time: float, notification_interval: float = 0):
        """Run a trade silence watcher and its check timer until the monitor stops."""
        watcher = TradeSilenceWatcher(
            self.exchange_id,
            symbol,
            self.source,
            self.publisher,
            self.gate,
            max_silence_time=max_silence_time,
            notification_interval=notification_interval,
            is_running=self.is_running,
            clock=self.clock,
            poll_interval=self.poll_interval,
        )
        self._watchers[f"trades:{symbol}"] = watcher
        timer = asyncio.create_task(watcher.run_timer(), name=f"{self.exchange_id}:silence:{symbol}")
        self._timers[symbol] = timer
        try:
            await watcher.run()
        finally:
            # A dead fetch loop must not keep alerting on stale silence
            timer.cancel()
            self._timers.pop(symbol, None)

    async def stop(self) -> bool:
        """
        Stop all watchers.

        Returns:
            True if every watcher finished within the shutdown timeout
        """
        logger.info(f"[{self.exchange_id}] Stopping monitor...")
        self.running = False

        for timer in list(self._timers.values()):
            timer.cancel()

        deadline = time.monotonic() + self.shutdown_timeout_ms / 1000
        while not all(task.done() for task in self._tasks.values()):
            if time.monotonic() >= deadline:
                pending = [key for key, task in self._tasks.items() if not task.done()]
                logger.warning(
                    f"[{self.exchange_id}] Shutdown timed out after {self.shutdown_timeout_ms}ms; "
                    f"still running: {', '.join(pending)}"
                )
                break
            await asyncio.sleep(SHUTDOWN_POLL_SECONDS)

        finished = all(task.done() for task in self._tasks.values())

        try:
            await self.source.close()
        except Exception as e:
            logger.error(f"[{self.exchange_id}] Error closing exchange connection: {e}")

        logger.info(f"[{self.exchange_id}] Monitor stopped")
        return finished

    def _spawn(self, key: str, coro):
        if key in self._tasks:
            logger.warning(f"[{self.exchange_id}] Duplicate watcher {key} ignored")
            coro.close()
            return
        task = asyncio.create_task(coro, name=f"{self.exchange_id}:{key}")
        task.add_done_callback(self._on_task_done)
        self._tasks[key] = task

    def _on_task_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[{self.exchange_id}] Watcher {task.get_name()} crashed: {error!r}", exc_info=error)
