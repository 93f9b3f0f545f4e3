"""Periodic background sync.

:class:`AutoSync` owns one timer thread that calls
``SyncEngine.sync_all(silent=True)`` every ``interval`` minutes. Overlap with
a manual pass is handled by the engine, which skips a pass while another
one is running.
"""

import logging
import threading
from typing import Optional

from .sync import SyncEngine

logger = logging.getLogger(__name__)


class AutoSync:
    """Recurring timer driving silent whole-vault syncs."""

    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self.interval_minutes = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_minutes: int) -> None:
        """Install the timer. An interval of 0 (or less) installs nothing."""
        self.stop()
        if interval_minutes <= 0:
            logger.debug("Auto sync interval is 0, timer not installed")
            return

        self.interval_minutes = interval_minutes
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(interval_minutes * 60, self._stop_event),
            name="vaultsync-auto-sync",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Auto sync every {interval_minutes} minute(s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel the timer. Waits briefly for an in-flight pass to finish."""
        if self._thread is None:
            return
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        self.interval_minutes = 0
        logger.debug("Auto sync stopped")

    def reconfigure(self, enabled: bool, interval_minutes: int) -> None:
        """Tear down the current timer and install one for the new settings."""
        self.stop()
        if enabled:
            self.start(interval_minutes)

    def _run(self, interval_seconds: float, stop_event: threading.Event) -> None:
        while not stop_event.wait(interval_seconds):
            self.run_once()

    def run_once(self) -> None:
        """Run one silent pass, logging instead of raising on failure."""
        try:
            result = self.engine.sync_all(silent=True)
        except Exception as e:
            logger.warning(f"Auto sync failed: {e}")
            return
        if result.skipped:
            logger.info("Auto sync skipped: previous pass still running")
        elif result.total or result.archived:
            logger.info(f"Auto sync: {result.summary()}")
