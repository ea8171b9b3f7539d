"""Poll an external process and report when it exits."""

from __future__ import annotations

import logging
import threading
from typing import Callable

import psutil

from ..errors import NotFound
from ..scheduling import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class ProcessWatch:
    """Calls ``on_exit(exit_code, process_name)`` once when the watched pid terminates.

    The exit code is only known for child processes of this server; for any
    other process ``None`` is reported.
    """

    def __init__(
        self,
        pid: int,
        on_exit: Callable[[int | None, str | None], object],
        *,
        scheduler: Scheduler,
        poll_interval: float = 5.0,
        process: psutil.Process | None = None,
    ) -> None:
        if process is None:
            try:
                process = psutil.Process(pid)
            except psutil.NoSuchProcess as exc:
                raise NotFound(f"Process {pid} not found") from exc
        self.pid = pid
        self._process = process
        self._on_exit = on_exit
        self._scheduler = scheduler
        self._poll_interval = poll_interval
        self._lock = threading.Lock()
        self._handle: TimerHandle | None = None
        self._closed = False
        try:
            self.name: str | None = process.name()
        except psutil.Error:
            self.name = None

    def start(self) -> "ProcessWatch":
        with self._lock:
            if not self._closed and self._handle is None:
                self._handle = self._scheduler.call_later(self._poll_interval, self._poll)
        return self

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def _poll(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._handle = None
        try:
            exit_code = self._process.wait(timeout=0)
        except psutil.TimeoutExpired:
            with self._lock:
                if not self._closed:
                    self._handle = self._scheduler.call_later(self._poll_interval, self._poll)
            return
        except psutil.NoSuchProcess:
            exit_code = None
        except psutil.Error as exc:
            logger.warning("Process poll failed", extra={"pid": self.pid, "error": str(exc)})
            exit_code = None

        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.debug("Watched process exited", extra={"pid": self.pid, "exit_code": exit_code})
        self._on_exit(exit_code, self.name)


__all__ = ["ProcessWatch"]
