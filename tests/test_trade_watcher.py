import unittest
from unittest.mock import AsyncMock, patch

from conftest import (
    CountdownSwitch,
    FakeClock,
    RecordingNotifier,
    RecordingSink,
    ScriptedSource,
    fetch_error,
)
from data_engine.models import AlertKind, Trade
from monitoring.alerting import AlertPublisher
from monitoring.throttle import NotificationGate
from monitoring.trade_watcher import TradeSilenceWatcher


class TestTradeSilenceWatcher(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.start = self.clock.now
        self.sink = RecordingSink()
        self.notifier = RecordingNotifier()
        self.gate = NotificationGate(self.clock)
        self.publisher = AlertPublisher("binance", self.notifier, self.sink, self.clock)

        self.patcher_sleep = patch("asyncio.sleep", new_callable=AsyncMock)
        self.mock_sleep = self.patcher_sleep.start()
        self.mock_sleep.side_effect = lambda seconds: self.clock.advance(seconds * 1000)

    async def asyncTearDown(self):
        self.patcher_sleep.stop()

    def make_watcher(self, source=None, iterations=0, max_silence_time=60, notification_interval=0):
        return TradeSilenceWatcher(
            "binance",
            "BTC/USDT",
            source or ScriptedSource(trades=[[]]),
            self.publisher,
            self.gate,
            max_silence_time=max_silence_time,
            notification_interval=notification_interval,
            is_running=CountdownSwitch(iterations),
            clock=self.clock,
        )

    def test_last_trade_time_starts_at_construction(self):
        watcher = self.make_watcher()
        self.assertEqual(watcher.last_trade_time, self.start)
        self.clock.advance(1500)
        self.assertEqual(watcher.silence_ms, 1500)

    async def test_no_alert_at_threshold(self):
        watcher = self.make_watcher()
        self.clock.advance(60000)
        self.assertFalse(await watcher.check_silence())
        self.assertEqual(self.notifier.messages, [])

    async def test_alert_past_threshold(self):
        watcher = self.make_watcher()
        self.clock.advance(61000)
        self.assertTrue(await watcher.check_silence())

        self.assertEqual(self.notifier.messages, ["[BINANCE BTC/USDT] No trades for 61s (Threshold: 60s)"])
        self.assertEqual(len(self.sink.alerts), 1)
        self.assertEqual(self.sink.alerts[0].symbol, "BTC/USDT")
        self.assertEqual(self.sink.alerts[0].timestamp, self.clock.now)

    async def test_silence_alerts_are_throttled(self):
        watcher = self.make_watcher(notification_interval=1)
        self.clock.advance(61000)
        self.assertTrue(await watcher.check_silence())
        self.clock.advance(1000)
        self.assertFalse(await watcher.check_silence())
        self.clock.advance(60000)
        self.assertTrue(await watcher.check_silence())
        self.assertEqual(len(self.notifier.messages), 2)
        self.assertIn("No trades for 122s", self.notifier.messages[1])

    async def test_fetch_advances_last_trade_time(self):
        trades = [
            [],
            [Trade(symbol="BTC/USDT", timestamp=self.start + 100), Trade(symbol="BTC/USDT", timestamp=self.start + 900)],
            [],
        ]
        watcher = self.make_watcher(ScriptedSource(trades=trades), iterations=3)
        await watcher.run()
        self.assertEqual(watcher.last_trade_time, self.start + 900)
        self.assertEqual(watcher.retry.attempts, 0)

    async def test_trade_without_timestamp_uses_now(self):
        source = ScriptedSource(trades=[[Trade(symbol="BTC/USDT")]], clock=self.clock, step_ms=2500)
        watcher = self.make_watcher(source, iterations=1)
        await watcher.run()
        self.assertEqual(watcher.last_trade_time, self.start + 2500)

    async def test_trade_resets_silence_episode(self):
        source = ScriptedSource(trades=[[Trade(symbol="BTC/USDT")]])
        watcher = self.make_watcher(source, iterations=1)
        self.clock.advance(61000)
        await watcher.check_silence()
        self.assertTrue(watcher.episode.active)

        await watcher.run()
        self.assertFalse(await watcher.check_silence())
        self.assertFalse(watcher.episode.active)

    async def test_backoff_then_terminate_after_ten_failures(self):
        source = ScriptedSource(trades=[fetch_error()])
        watcher = self.make_watcher(source, iterations=50)
        await watcher.run()

        self.assertTrue(watcher.terminated)
        self.assertEqual(source.trade_calls, 10)
        delays = [c.args[0] for c in self.mock_sleep.await_args_list]
        self.assertEqual(delays, [5.0, 10.0, 20.0, 40.0, 60.0, 60.0, 60.0, 60.0, 60.0])

    async def test_timer_checks_every_second(self):
        watcher = self.make_watcher(max_silence_time=1)
        # Each timer loop consults is_running twice: two checks, at 1s and 2s
        watcher.is_running = CountdownSwitch(5)
        await watcher.run_timer()

        self.assertEqual([c.args[0] for c in self.mock_sleep.await_args_list], [1.0, 1.0, 1.0])
        self.assertEqual(len(self.notifier.messages), 1)
        self.assertIn("No trades for 2s (Threshold: 1s)", self.notifier.messages[0])
        self.assertEqual(self.gate.last_notified("BTC/USDT", AlertKind.SILENCE), None)


if __name__ == '__main__':
    unittest.main()
