"""Data engine module: market data, persistence and notifications."""

from data_engine.exchange import ExchangeClient, TransientFetchError
from data_engine.database import DatabaseManager, PersistenceError
from data_engine.notifier import LarkNotifier, NotificationError
from data_engine.models import (
    AlertKind,
    AlertRecord,
    DepthSample,
    OrderBook,
    OrderBookLevel,
    Trade,
)

__all__ = [
    "ExchangeClient",
    "TransientFetchError",
    "DatabaseManager",
    "PersistenceError",
    "LarkNotifier",
    "NotificationError",
    "AlertKind",
    "AlertRecord",
    "DepthSample",
    "OrderBook",
    "OrderBookLevel",
    "Trade",
]
