"""File-activity watcher adapter built on watchdog."""

from __future__ import annotations

import fnmatch
import logging
import os
import threading
from collections import defaultdict
from pathlib import Path
from typing import Callable, Iterable, Protocol, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import WatcherFailure

logger = logging.getLogger(__name__)

ADDED = "added"
CHANGED = "changed"
REMOVED = "removed"
EVENT_KINDS = frozenset({ADDED, CHANGED, REMOVED})

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    "*/node_modules/*",
    "*/.git/*",
    "*/dist/*",
    "*/build/*",
    "*/__pycache__/*",
    "*/.venv/*",
)

FileCallback = Callable[[str], None]


class WatchSubscription(Protocol):
    def on(self, kind: str, callback: FileCallback) -> "WatchSubscription":
        ...

    def close(self) -> None:
        ...


class FileWatchService(Protocol):
    """File-system change notification capability consumed by the detector."""

    def watch(self, paths: Sequence[str], ignore_patterns: Sequence[str]) -> WatchSubscription:
        ...


def is_ignored(path: str, ignore_patterns: Iterable[str]) -> bool:
    normalized = path.replace(os.sep, "/")
    return any(fnmatch.fnmatch(normalized, pattern) for pattern in ignore_patterns)


class CallbackRegistry:
    """Per-kind callback lists shared by watcher subscriptions.

    Dispatch treats paths as untrusted: malformed values are dropped and a
    failing callback is logged without affecting the others.
    """

    def __init__(self, ignore_patterns: Sequence[str] = ()) -> None:
        self._ignore = tuple(ignore_patterns)
        self._callbacks: dict[str, list[FileCallback]] = defaultdict(list)
        self._lock = threading.Lock()

    def add(self, kind: str, callback: FileCallback) -> None:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown file event kind '{kind}'")
        with self._lock:
            self._callbacks[kind].append(callback)

    def clear(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def dispatch(self, kind: str, raw_path: object) -> None:
        try:
            path = os.fsdecode(raw_path)  # type: ignore[arg-type]
        except TypeError:
            logger.debug("Dropping malformed file event path", extra={"path": repr(raw_path)})
            return
        if not path or "\x00" in path or is_ignored(path, self._ignore):
            return

        with self._lock:
            callbacks = list(self._callbacks.get(kind, ()))
        for callback in callbacks:
            try:
                callback(path)
            except Exception:
                logger.exception("File event callback failed", extra={"kind": kind, "path": path})


class _WatchdogHandler(FileSystemEventHandler):
    def __init__(self, registry: CallbackRegistry) -> None:
        super().__init__()
        self._registry = registry

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._registry.dispatch(ADDED, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._registry.dispatch(CHANGED, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._registry.dispatch(REMOVED, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._registry.dispatch(REMOVED, event.src_path)
            self._registry.dispatch(ADDED, event.dest_path)


class WatchdogSubscription:
    """One observer thread watching a set of paths."""

    def __init__(self, observer: Observer, registry: CallbackRegistry, paths: Sequence[str]) -> None:
        self._observer = observer
        self._registry = registry
        self.paths = tuple(paths)
        self._closed = False
        self._lock = threading.Lock()

    def on(self, kind: str, callback: FileCallback) -> "WatchdogSubscription":
        self._registry.add(kind, callback)
        return self

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._registry.clear()
        self._observer.stop()
        # Closing from inside a callback runs on the observer thread itself.
        if threading.current_thread() is not self._observer:
            self._observer.join(timeout=2.0)


class WatchdogFileWatchService:
    """:class:`FileWatchService` implementation backed by a watchdog observer."""

    def __init__(self, observer_factory: Callable[[], Observer] | None = None) -> None:
        self._observer_factory = observer_factory or Observer

    def watch(self, paths: Sequence[str], ignore_patterns: Sequence[str]) -> WatchdogSubscription:
        if not paths:
            raise WatcherFailure("No paths to watch")

        registry = CallbackRegistry(ignore_patterns)
        handler = _WatchdogHandler(registry)
        observer = self._observer_factory()
        resolved: list[str] = []
        try:
            for raw in paths:
                path = Path(raw).expanduser().resolve()
                if not path.exists():
                    raise WatcherFailure(f"Watch path does not exist: {path}")
                observer.schedule(handler, str(path), recursive=True)
                resolved.append(str(path))
            observer.daemon = True
            observer.start()
        except WatcherFailure:
            raise
        except (OSError, RuntimeError, ValueError) as exc:
            raise WatcherFailure(f"Failed to start file watcher: {exc}") from exc

        logger.debug("File watcher started", extra={"paths": resolved})
        return WatchdogSubscription(observer, registry, resolved)


__all__ = [
    "ADDED",
    "CHANGED",
    "DEFAULT_IGNORE_PATTERNS",
    "EVENT_KINDS",
    "REMOVED",
    "CallbackRegistry",
    "FileWatchService",
    "WatchSubscription",
    "WatchdogFileWatchService",
    "WatchdogSubscription",
    "is_ignored",
]
