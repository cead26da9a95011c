"""
Notification throttling.

One NotificationGate is shared by every watcher of an exchange monitor. It
remembers when each (symbol, alert kind) was last notified. All access happens
on the event loop between awaits, so the table needs no lock.
"""

import time
from typing import Callable, Dict, Optional, Tuple


def now_ms() -> int:
    """Wall clock in milliseconds since epoch."""
    return int(time.time() * 1000)


class NotificationGate:
    """Per-(symbol, kind) throttle deciding whether an alert may be sent now."""

    def __init__(self, clock: Callable[[], int] = now_ms):
        self.clock = clock
        self._last_notified: Dict[Tuple[str, str], int] = {}

    def should_notify(self, symbol: str, kind: str, interval_minutes: float) -> bool:
        """
        Decide whether an alert may be sent, recording the send if so.

        Args:
            symbol: Trading pair
            kind: Alert kind ('depth_bid', 'depth_ask', 'silence')
            interval_minutes: Minimum minutes between alerts; <= 0 disables throttling

        Returns:
            True if the alert may be sent now
        """
        if interval_minutes <= 0:
            return True

        key = (symbol, kind)
        now = self.clock()
        last = self._last_notified.get(key)
        if last is None or now - last > interval_minutes * 60000:
            self._last_notified[key] = now
            return True
        return False

    def clear(self, symbol: str, kind: str):
        """Forget the last notification time, typically when an episode ends."""
        self._last_notified.pop((symbol, kind), None)

    def last_notified(self, symbol: str, kind: str) -> Optional[int]:
        return self._last_notified.get((symbol, kind))
