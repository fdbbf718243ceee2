"""Periodic removal of expired and idle session records."""

import threading
from typing import Callable, Optional

import structlog

from .cache import SessionCache

logger = structlog.get_logger(__name__)


class SessionReaper:
    """
    Background thread calling ``SessionCache.reap_expired`` on a fixed period.

    An optional ``retention_sweep`` (for example the observation retention
    purge) runs on the same period after the session reap.
    """

    def __init__(
        self,
        cache: SessionCache,
        interval_seconds: Optional[float] = None,
        retention_sweep: Optional[Callable[[], int]] = None
    ):
        self.cache = cache
        self.retention_sweep = retention_sweep
        self.interval_seconds = (
            cache.params.reap_interval_seconds if interval_seconds is None else interval_seconds
        )
        self.logger = logger
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                self.logger.warning("Session reaper already running")
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="session-reaper", daemon=True
            )
            self._thread.start()

        self.logger.info("Session reaper started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()

        if thread is not None:
            thread.join(timeout)
            self.logger.info("Session reaper stopped", runs=self.runs)

    def run_once(self) -> None:
        """One maintenance pass; failures are logged, never raised."""
        try:
            self.cache.reap_expired()
        except Exception as e:
            self.logger.error(
                "Session reap failed",
                error=str(e),
                error_type=type(e).__name__,
            )

        if self.retention_sweep is not None:
            try:
                self.retention_sweep()
            except Exception as e:
                self.logger.error(
                    "Retention sweep failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
        self.runs += 1

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.run_once()
