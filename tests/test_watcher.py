from __future__ import annotations

import threading
import time

import pytest

from agentify_mcp.errors import WatcherFailure
from agentify_mcp.watcher import (
    ADDED,
    CHANGED,
    DEFAULT_IGNORE_PATTERNS,
    REMOVED,
    CallbackRegistry,
    WatchdogFileWatchService,
    is_ignored,
)


def test_is_ignored_matches_default_patterns():
    assert is_ignored("/repo/node_modules/pkg/index.js", DEFAULT_IGNORE_PATTERNS)
    assert is_ignored("/repo/.git/HEAD", DEFAULT_IGNORE_PATTERNS)
    assert not is_ignored("/repo/src/app.py", DEFAULT_IGNORE_PATTERNS)
    assert not is_ignored("/repo/build.log", DEFAULT_IGNORE_PATTERNS)


def test_registry_dispatches_by_kind():
    registry = CallbackRegistry()
    added: list[str] = []
    changed: list[str] = []
    registry.add(ADDED, added.append)
    registry.add(CHANGED, changed.append)

    registry.dispatch(ADDED, "/repo/a.py")
    registry.dispatch(CHANGED, b"/repo/b.py")
    registry.dispatch(REMOVED, "/repo/c.py")

    assert added == ["/repo/a.py"]
    assert changed == ["/repo/b.py"]


def test_registry_drops_malformed_and_ignored_paths():
    registry = CallbackRegistry(["*/dist/*"])
    seen: list[str] = []
    registry.add(CHANGED, seen.append)

    registry.dispatch(CHANGED, None)
    registry.dispatch(CHANGED, "")
    registry.dispatch(CHANGED, "/repo/bad\x00name.log")
    registry.dispatch(CHANGED, "/repo/dist/out.js")

    assert seen == []


def test_registry_isolates_failing_callbacks():
    registry = CallbackRegistry()
    seen: list[str] = []

    def broken(path: str) -> None:
        raise RuntimeError(path)

    registry.add(CHANGED, broken)
    registry.add(CHANGED, seen.append)

    registry.dispatch(CHANGED, "/repo/a.py")

    assert seen == ["/repo/a.py"]


def test_registry_rejects_unknown_kind():
    with pytest.raises(ValueError):
        CallbackRegistry().add("renamed", print)


def test_watch_rejects_missing_paths(tmp_path):
    service = WatchdogFileWatchService()

    with pytest.raises(WatcherFailure):
        service.watch([], ())
    with pytest.raises(WatcherFailure):
        service.watch([str(tmp_path / "missing")], ())


def test_watchdog_reports_created_files(tmp_path):
    service = WatchdogFileWatchService()
    seen: list[str] = []
    arrived = threading.Event()

    def on_added(path: str) -> None:
        seen.append(path)
        arrived.set()

    subscription = service.watch([str(tmp_path)], DEFAULT_IGNORE_PATTERNS)
    try:
        subscription.on(ADDED, on_added)
        time.sleep(0.2)
        (tmp_path / "result.log").write_text("done", encoding="utf-8")
        assert arrived.wait(5.0)
    finally:
        subscription.close()

    assert any(path.endswith("result.log") for path in seen)
    assert subscription.closed is True
    subscription.close()
