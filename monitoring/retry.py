"""
Exponential backoff for watcher fetch loops.

Each watcher owns one controller. Consecutive failures double the wait up to
a cap; reaching the failure limit ends the watcher for good.
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELAY_MS = 60000
DEFAULT_MAX_ATTEMPTS = 10
DEPTH_BASE_DELAY_MS = 1000
TRADE_BASE_DELAY_MS = 5000


class FatalWatcherError(Exception):
    """Raised when a watcher has failed too many times in a row."""

    def __init__(self, name: str, attempts: int):
        self.name = name
        self.attempts = attempts
        super().__init__(f"{name} gave up after {attempts} consecutive failures")


class RetryController:
    """
    Consecutive-failure counter with capped exponential delay.

    delay(n) = min(base * 2 ** (n - 1), cap)
    """

    def __init__(
        self,
        name: str,
        base_delay_ms: int,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.name = name
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.max_attempts = max_attempts
        self.attempts = 0

    def compute_delay(self, attempts: int) -> int:
        """Delay in milliseconds before retry number `attempts`."""
        attempts = max(attempts, 1)
        return min(self.base_delay_ms * 2 ** (attempts - 1), self.max_delay_ms)

    def record_failure(self) -> int:
        """
        Count a failure.

        Returns:
            Milliseconds to wait before the next attempt

        Raises:
            FatalWatcherError: When the consecutive failure limit is reached
        """
        self.attempts += 1
        if self.attempts >= self.max_attempts:
            raise FatalWatcherError(self.name, self.attempts)
        return self.compute_delay(self.attempts)

    def reset(self):
        """Forget previous failures after a successful fetch."""
        if self.attempts:
            logger.debug(f"{self.name} recovered after {self.attempts} failures")
        self.attempts = 0


def depth_retry(name: str) -> RetryController:
    return RetryController(name, DEPTH_BASE_DELAY_MS)


def trade_retry(name: str) -> RetryController:
    return RetryController(name, TRADE_BASE_DELAY_MS)
