"""Heuristics that inspect changed files for completion indicators."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

MAX_INSPECT_BYTES = 1024 * 1024


def compile_patterns(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    return [re.compile(pattern) for pattern in patterns]


def matches_completion_file(path: str, patterns: Sequence[re.Pattern[str]]) -> bool:
    normalized = path.replace("\\", "/")
    return any(pattern.search(normalized) for pattern in patterns)


def find_keywords(content: str, keywords: Iterable[str]) -> list[str]:
    """Return every keyword found in ``content`` (case-insensitive substring)."""

    haystack = content.lower()
    return [keyword for keyword in keywords if keyword.lower() in haystack]


def read_tail(path: str, limit: int = MAX_INSPECT_BYTES) -> str:
    """Read up to ``limit`` trailing bytes of ``path``.

    Any failure is reported as empty content so callers treat it as "no
    match". Large logs are only inspected at their end, where completion
    lines are written.
    """

    try:
        with Path(path).open("rb") as handle:
            handle.seek(0, 2)
            size = handle.tell()
            handle.seek(max(size - limit, 0))
            return handle.read().decode("utf-8", errors="replace")
    except (OSError, ValueError) as exc:
        logger.debug("Could not read changed file", extra={"path": path, "error": str(exc)})
        return ""


__all__ = [
    "MAX_INSPECT_BYTES",
    "compile_patterns",
    "find_keywords",
    "matches_completion_file",
    "read_tail",
]
