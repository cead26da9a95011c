import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import (
    RecordingNotifier,
    RecordingSink,
    ScriptedSource,
    fetch_error,
    make_book,
)
from config.monitors import MonitorEntry
from monitoring.supervisor import ExchangeMonitor

DEEP_BOOK = make_book(bids=[(100, 10)], asks=[(101, 10)])


class PacedSource(ScriptedSource):
    """Scripted source that yields to the loop like a real network call."""

    async def fetch_order_book(self, symbol):
        await asyncio.sleep(0.01)
        return await super().fetch_order_book(symbol)

    async def fetch_trades(self, symbol):
        await asyncio.sleep(0.01)
        return await super().fetch_trades(symbol)


class HangingSource(ScriptedSource):
    """Fetch never returns."""

    async def fetch_order_book(self, symbol):
        self.book_calls += 1
        await asyncio.Event().wait()


def entry(symbol="BTC/USDT", exchange="binance", depth=True, trades=True, **extra):
    data = {"exchange": exchange, "symbol": symbol, "notificationInterval": 5}
    if depth:
        data["depth"] = {"percentage": 2, "minValue": 100, "duration": 0}
    if trades:
        data["tradeSilence"] = {"maxSilenceTime": 60}
    data.update(extra)
    return MonitorEntry.model_validate(data)


def make_monitor(source, **kwargs):
    return ExchangeMonitor("binance", source, RecordingSink(), RecordingNotifier(), **kwargs)


@pytest.mark.asyncio
async def test_start_spawns_requested_watchers():
    source = PacedSource(books=[DEEP_BOOK], trades=[[]])
    monitor = make_monitor(source)
    monitor.start([
        entry("BTC/USDT"),
        entry("ETH/USDT", trades=False),
        entry("SOL/USDT", exchange="okx"),
    ])

    assert monitor.running is True
    assert set(monitor.tasks) == {"depth:BTC/USDT", "trades:BTC/USDT", "depth:ETH/USDT"}

    await asyncio.sleep(0.05)
    assert len(monitor.persistence.samples) > 0
    assert set(monitor.status.values()) == {"running"}

    finished = await monitor.stop()
    assert finished is True
    assert source.closed is True
    assert all(task.done() for task in monitor.tasks.values())
    assert set(monitor.status.values()) == {"stopped"}
    assert monitor._timers == {}


@pytest.mark.asyncio
async def test_stop_cancels_silence_timers_immediately():
    source = PacedSource(books=[DEEP_BOOK], trades=[[]])
    monitor = make_monitor(source)
    monitor.start([entry(depth=False)])
    await asyncio.sleep(0.02)

    timers = list(monitor._timers.values())
    assert len(timers) == 1

    await monitor.stop()
    assert timers[0].cancelled()
    assert monitor.notifier.messages == []


@pytest.mark.asyncio
async def test_stop_gives_up_after_timeout_and_still_closes():
    source = HangingSource(books=[DEEP_BOOK])
    monitor = make_monitor(source, shutdown_timeout_ms=100)
    monitor.start([entry(trades=False)])
    await asyncio.sleep(0.01)

    finished = await monitor.stop()
    assert finished is False
    assert source.closed is True
    assert monitor.status == {"depth:BTC/USDT": "running"}

    for task in monitor.tasks.values():
        task.cancel()
    await asyncio.gather(*monitor.tasks.values(), return_exceptions=True)


@pytest.mark.asyncio
async def test_fatal_watcher_is_not_restarted():
    source = ScriptedSource(books=[fetch_error()])
    monitor = make_monitor(source)
    with patch("asyncio.sleep", new_callable=AsyncMock):
        monitor.start([entry(trades=False)])
        await asyncio.gather(*monitor.tasks.values())
        assert source.book_calls == 10
        assert monitor.status == {"depth:BTC/USDT": "terminated"}
        assert monitor.persistence.samples == []

        await monitor.stop()
    assert source.book_calls == 10


@pytest.mark.asyncio
async def test_crashed_watcher_is_reported():
    source = ScriptedSource(books=[RuntimeError("unexpected payload")])
    monitor = make_monitor(source)
    monitor.start([entry(trades=False)])
    await asyncio.gather(*monitor.tasks.values(), return_exceptions=True)

    assert monitor.status == {"depth:BTC/USDT": "crashed"}
    await monitor.stop()


@pytest.mark.asyncio
async def test_synthetic_markets_registered_before_watchers():
    source = PacedSource(books=[DEEP_BOOK], trades=[[]])
    monitor = make_monitor(source)
    monitor.start([entry("FOO/USDT", trades=False, market={"base": "FOO", "quote": "USDT", "type": "spot"})])

    assert source.markets == [{"symbol": "FOO/USDT", "base": "FOO", "quote": "USDT", "type": "spot"}]
    assert source.book_calls == 0
    await monitor.stop()


@pytest.mark.asyncio
async def test_duplicate_entries_spawn_one_watcher():
    source = PacedSource(books=[DEEP_BOOK], trades=[[]])
    monitor = make_monitor(source)
    monitor.start([entry(trades=False), entry(trades=False)])
    assert list(monitor.tasks) == ["depth:BTC/USDT"]
    await monitor.stop()


@pytest.mark.asyncio
async def test_watchers_share_the_monitor_gate():
    source = PacedSource(books=[DEEP_BOOK], trades=[[]])
    monitor = make_monitor(source)
    monitor.start([entry()])
    await asyncio.sleep(0.02)

    gates = {id(watcher.gate) for watcher in monitor._watchers.values()}
    assert gates == {id(monitor.gate)}
    await monitor.stop()
