"""Configuration management for Agentify MCP."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated
from pathlib import Path
import os

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .watcher import DEFAULT_IGNORE_PATTERNS


def _split_paths(value: str) -> list[str]:
    return [part.strip() for part in value.split(os.pathsep) if part.strip()]


class AgentifySettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    log_level: str = Field(
        default="INFO", validation_alias=AliasChoices("AGENTIFY_LOG_LEVEL", "LOG_LEVEL")
    )
    webhook_url: str | None = Field(
        default=None, validation_alias=AliasChoices("AGENTIFY_WEBHOOK_URL", "WEBHOOK_URL")
    )
    default_client_id: str = Field(default="local", validation_alias="AGENTIFY_DEFAULT_CLIENT_ID")
    idle_timeout_ms: int | None = Field(default=None, validation_alias="AGENTIFY_IDLE_TIMEOUT_MS")
    monitor_file_changes: bool = Field(default=False, validation_alias="AGENTIFY_MONITOR_FILE_CHANGES")
    watch_paths: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(".",), validation_alias="AGENTIFY_WATCH_PATHS"
    )
    ignore_patterns: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_IGNORE_PATTERNS, validation_alias="AGENTIFY_IGNORE_PATTERNS"
    )
    metrics_interval_seconds: float = Field(
        default=5.0, validation_alias="AGENTIFY_METRICS_INTERVAL_SECONDS"
    )
    inactivity_timeout_ms: int = Field(
        default=300_000, validation_alias="AGENTIFY_INACTIVITY_TIMEOUT_MS"
    )
    cleanup_interval_seconds: float = Field(
        default=60.0, validation_alias="AGENTIFY_CLEANUP_INTERVAL_SECONDS"
    )
    history_limit: int = Field(default=100, validation_alias="AGENTIFY_HISTORY_LIMIT")
    notification_rule_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("notifications"),), validation_alias="AGENTIFY_NOTIFICATION_RULE_PATHS"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized == "WARN":
            normalized = "WARNING"
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "AGENTIFY_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("webhook_url", mode="before")
    @classmethod
    def _blank_webhook(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("watch_paths", "ignore_patterns", mode="before")
    @classmethod
    def _parse_string_lists(cls, value):
        if isinstance(value, str):
            return tuple(_split_paths(value))
        return value

    @field_validator("notification_rule_paths", mode="before")
    @classmethod
    def _parse_rule_paths(cls, value):
        if value is None or value == "":
            return (Path("notifications"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            return tuple(Path(part) for part in _split_paths(value)) or (Path("notifications"),)
        raise TypeError(
            "AGENTIFY_NOTIFICATION_RULE_PATHS must be a list of paths or a path-separated string"
        )

    @field_validator(
        "idle_timeout_ms",
        "inactivity_timeout_ms",
        "history_limit",
    )
    @classmethod
    def _validate_positive_int(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("Timeouts and limits must be >= 1")
        return value

    @field_validator("metrics_interval_seconds", "cleanup_interval_seconds")
    @classmethod
    def _validate_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Intervals must be > 0 seconds")
        return value


@lru_cache(maxsize=1)
def get_settings() -> AgentifySettings:
    """Return cached settings instance."""

    settings = AgentifySettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.notification_rule_paths = tuple(
        path.expanduser().resolve() for path in settings.notification_rule_paths
    )
    return settings


__all__ = ["AgentifySettings", "get_settings"]
