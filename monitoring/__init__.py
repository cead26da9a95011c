"""Monitoring engine: watchers, throttling, retry and supervision."""

from monitoring.retry import FatalWatcherError, RetryController, depth_retry, trade_retry
from monitoring.throttle import NotificationGate
from monitoring.alerting import AlertPublisher, EpisodeState
from monitoring.depth_watcher import DepthWatcher, compute_depth_sample
from monitoring.trade_watcher import TradeSilenceWatcher
from monitoring.supervisor import ExchangeMonitor

__all__ = [
    "FatalWatcherError",
    "RetryController",
    "depth_retry",
    "trade_retry",
    "NotificationGate",
    "AlertPublisher",
    "EpisodeState",
    "DepthWatcher",
    "compute_depth_sample",
    "TradeSilenceWatcher",
    "ExchangeMonitor",
]
