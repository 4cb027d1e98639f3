"""
Liveness signalling for long, record-free phases of an index build.
"""
import logging
import threading
import traceback

from shard_output.common.config import HEARTBEAT_INTERVAL

logger = logging.getLogger("indexer")


class KeepAliveHook:
    """Tells the job framework the task is still making progress."""
    def keep_alive(self):
        raise NotImplementedError


class ProgressKeepAliveHook(KeepAliveHook):
    """Keep-alive hook backed by the job framework's progress callback."""
    def __init__(self, progress):
        if progress is None:
            raise ValueError("A progress callback is required")
        self._progress = progress

    def keep_alive(self):
        self._progress()


def send_keep_alive(keep_alive_hook):
    """Call the hook once. Failures are logged, never raised; returns True on success."""
    try:
        keep_alive_hook.keep_alive()
        return True
    except Exception as e:
        logger.warning(f"Error sending keep-alive: {e}")
        logger.debug(traceback.format_exc())
        return False


class Heartbeat:
    """
    Calls a keep-alive hook every `interval` seconds on a background thread.

    The first call happens as soon as the thread starts. stop() sets a
    one-shot event and joins the thread, so the hook is never called after
    stop() returns. Use as a context manager around a blocking operation:

        with Heartbeat(hook, interval=10):
            copy_everything()
    """
    def __init__(self, keep_alive_hook, interval=HEARTBEAT_INTERVAL, name="keep-alive"):
        if interval <= 0:
            raise ValueError(f"Heartbeat interval must be positive, got {interval}")
        self._hook = keep_alive_hook
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._send_heartbeats, name=name)
        self._thread.daemon = True
        self.beats = 0

    def _send_heartbeats(self):
        logger.debug(f"Starting heartbeat thread, interval {self._interval}s")
        while not self._stop_event.is_set():
            if send_keep_alive(self._hook):
                self.beats += 1
            self._stop_event.wait(self._interval)
        logger.debug(f"Heartbeat thread stopped after {self.beats} beats")

    def start(self):
        self._thread.start()
        return self

    def stop(self):
        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join()

    def is_alive(self):
        return self._thread.is_alive()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
