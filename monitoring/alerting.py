"""
Alert publication and breach episode state shared by the watchers.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import logfire

from config import settings
from data_engine.database import DatabaseManager
from data_engine.models import AlertKind, AlertRecord
from data_engine.notifier import LarkNotifier
from monitoring.throttle import now_ms

logger = logging.getLogger(__name__)

ALERTS_COUNTER = logfire.metric_counter(
    "liquidity_alerts_total",
    unit="1",
    description="Total number of alerts fired by watchers"
)


@dataclass
class EpisodeState:
    """Start of the current breach episode, or None when the metric is healthy."""

    breach_start: Optional[int] = None

    @property
    def active(self) -> bool:
        return self.breach_start is not None

    def begin(self, timestamp: int) -> bool:
        """Start an episode if none is active. Returns True if one was started."""
        if self.breach_start is None:
            self.breach_start = timestamp
            return True
        return False

    def elapsed(self, now: int) -> int:
        return 0 if self.breach_start is None else now - self.breach_start

    def clear(self):
        self.breach_start = None


class AlertPublisher:
    """Delivers an alert message and records it."""

    def __init__(
        self,
        exchange_id: str,
        notifier: LarkNotifier,
        persistence: DatabaseManager,
        clock: Callable[[], int] = now_ms,
    ):
        self.exchange_id = exchange_id
        self.notifier = notifier
        self.persistence = persistence
        self.clock = clock

    async def publish(self, symbol: str, kind: AlertKind, message: str) -> bool:
        """
        Send and persist one alert.

        Returns:
            Whether the notification sink accepted the message
        """
        timestamp = self.clock()
        logger.warning(message)
        if settings.logfire_token:
            label = AlertKind(kind).value
            ALERTS_COUNTER.add(1, {"exchange": self.exchange_id, "kind": label})
            logfire.warn(
                "alert_fired",
                exchange=self.exchange_id,
                symbol=symbol,
                kind=label,
                message=message,
            )

        delivered = await self.notifier.send(message)
        if not delivered:
            logger.warning(f"[{self.exchange_id}] {symbol}: alert not delivered, dropped")

        await self.persistence.record_alert(
            AlertRecord(exchange=self.exchange_id, symbol=symbol, timestamp=timestamp, message=message)
        )
        return delivered
