"""Notification rule loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import NotificationChannels, NotificationConfig, NotificationRule


class NotificationLoadError(RuntimeError):
    """Raised when one or more notification files cannot be parsed."""


class NotificationRuleLoader:
    """Loads notification channels and rules from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load(self) -> NotificationConfig:
        """Merge every YAML document found in the search paths.

        Later files override earlier ones: rules are replaced by id and
        channel sections are replaced as a whole.
        """

        if not self._search_paths:
            return NotificationConfig()

        rules: dict[str, NotificationRule] = {}
        channels: dict[str, object] = {}
        errors: list[str] = []

        for base in self._search_paths:
            files = [base] if base.is_file() else sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml"))
            for path in files:
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    config = NotificationConfig.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Notification config error in {path}: {exc}")
                    continue

                for name, channel in config.channels:
                    if channel is not None:
                        channels[name] = channel
                for rule in config.rules:
                    rules[rule.id] = rule

        if errors:
            raise NotificationLoadError("; ".join(errors))

        return NotificationConfig(
            channels=NotificationChannels(**channels),
            rules=list(rules.values()),
        )


def load_notification_config(search_paths: Iterable[Path] | None = None) -> NotificationConfig:
    """Convenience wrapper for loading notification config from the provided paths."""

    return NotificationRuleLoader(search_paths).load()


__all__ = ["NotificationLoadError", "NotificationRuleLoader", "load_notification_config"]
