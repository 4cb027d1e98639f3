"""
Tests for the heartbeat thread and keep-alive hooks.
"""
import time
import unittest

from shard_output.indexer.keep_alive import Heartbeat, ProgressKeepAliveHook
from index_fixtures import RecordingHook, RecordingProgress


class TestKeepAlive(unittest.TestCase):
    def test_progress_hook_calls_progress(self):
        progress = RecordingProgress()
        hook = ProgressKeepAliveHook(progress)
        hook.keep_alive()
        hook.keep_alive()
        self.assertEqual(progress.count, 2)

    def test_progress_hook_requires_callback(self):
        with self.assertRaises(ValueError):
            ProgressKeepAliveHook(None)

    def test_heartbeat_calls_hook_periodically(self):
        hook = RecordingHook()
        with Heartbeat(hook, interval=0.05):
            time.sleep(0.4)
        self.assertGreaterEqual(hook.progress.count, 3)

    def test_no_calls_after_stop(self):
        hook = RecordingHook()
        heartbeat = Heartbeat(hook, interval=0.02).start()
        time.sleep(0.1)
        heartbeat.stop()
        self.assertFalse(heartbeat.is_alive())

        stopped_count = hook.progress.count
        time.sleep(0.1)
        self.assertEqual(hook.progress.count, stopped_count)

    def test_failing_hook_keeps_beating(self):
        hook = RecordingHook(fail=True)
        with Heartbeat(hook, interval=0.02) as heartbeat:
            time.sleep(0.2)
        self.assertGreaterEqual(hook.progress.count, 2)
        self.assertEqual(heartbeat.beats, 0)

    def test_stop_returns_promptly(self):
        hook = RecordingHook()
        heartbeat = Heartbeat(hook, interval=30).start()
        start = time.monotonic()
        heartbeat.stop()
        self.assertLess(time.monotonic() - start, 5)
        self.assertLessEqual(hook.progress.count, 1)

    def test_interval_must_be_positive(self):
        for interval in (0, -1):
            with self.subTest(interval=interval):
                with self.assertRaises(ValueError):
                    Heartbeat(RecordingHook(), interval=interval)


if __name__ == '__main__':
    unittest.main()
