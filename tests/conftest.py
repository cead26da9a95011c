import os
import sys
from typing import List, Optional

import pytest

# Ensure package is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data_engine.exchange import TransientFetchError
from data_engine.models import OrderBook, OrderBookLevel, Trade


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: float):
        self.now += int(ms)


class CountdownSwitch:
    """is_running() replacement that allows a fixed number of iterations."""

    def __init__(self, iterations: int):
        self.remaining = iterations

    def __call__(self) -> bool:
        if self.remaining <= 0:
            return False
        self.remaining -= 1
        return True


class ScriptedSource:
    """
    Market data source replaying scripted results.

    Each item is either a value to return or an exception to raise. The last
    item repeats once the script runs out. Every call advances the clock by
    `step_ms` when a clock is attached.
    """

    def __init__(self, books=(), trades=(), clock: Optional[FakeClock] = None, step_ms: int = 0):
        self.books = list(books)
        self.trades = list(trades)
        self.clock = clock
        self.step_ms = step_ms
        self.book_calls = 0
        self.trade_calls = 0
        self.closed = False
        self.markets: List[dict] = []

    def _next(self, script):
        item = script.pop(0) if len(script) > 1 else script[0]
        if self.clock is not None:
            self.clock.advance(self.step_ms)
        if isinstance(item, BaseException):
            raise item
        return item

    async def fetch_order_book(self, symbol: str) -> OrderBook:
        self.book_calls += 1
        return self._next(self.books)

    async def fetch_trades(self, symbol: str) -> List[Trade]:
        self.trade_calls += 1
        return self._next(self.trades)

    def register_market(self, market: dict):
        self.markets.append(market)

    async def close(self):
        self.closed = True


class RecordingSink:
    """Persistence sink keeping everything in memory."""

    def __init__(self):
        self.samples = []
        self.alerts = []

    async def record_depth(self, sample):
        self.samples.append(sample)

    async def record_alert(self, record):
        self.alerts.append(record)


class RecordingNotifier:
    def __init__(self, result: bool = True):
        self.result = result
        self.messages: List[str] = []

    async def send(self, text: str) -> bool:
        self.messages.append(text)
        return self.result

    async def close(self):
        pass


def make_book(bids, asks, symbol="BTC/USDT", exchange="binance") -> OrderBook:
    return OrderBook(
        symbol=symbol,
        exchange=exchange,
        bids=[OrderBookLevel(price=p, amount=a) for p, a in bids],
        asks=[OrderBookLevel(price=p, amount=a) for p, a in asks],
    )


def fetch_error(symbol="BTC/USDT") -> TransientFetchError:
    return TransientFetchError("binance", symbol, "fetch_order_book", ConnectionError("connection reset"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def notifier():
    return RecordingNotifier()
