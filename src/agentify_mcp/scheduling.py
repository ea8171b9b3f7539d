"""Cancellable scheduled-callback primitive backing idle timers and periodic ticks."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Schedules ``callback`` to run once after ``delay`` seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class ThreadingScheduler:
    """Scheduler backed by daemon :class:`threading.Timer` threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(max(delay, 0.0), callback)
        timer.daemon = True
        timer.start()
        return timer


class PeriodicTask:
    """Re-arms a callback on a fixed interval until stopped.

    Exceptions raised by the callback are logged and the next tick is still
    scheduled.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], None],
        scheduler: Scheduler,
    ) -> None:
        if interval <= 0:
            raise ValueError("Periodic interval must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._handle: TimerHandle | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._handle = self._scheduler.call_later(self.interval, self._fire)

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def _fire(self) -> None:
        if not self._running:
            return
        try:
            self._callback()
        except Exception:
            logger.exception("Periodic task failed", extra={"task": self.name})
        with self._lock:
            if self._running:
                self._handle = self._scheduler.call_later(self.interval, self._fire)


__all__ = ["PeriodicTask", "Scheduler", "ThreadingScheduler", "TimerHandle"]
