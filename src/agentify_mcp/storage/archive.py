"""Chroma-based archive of bus events."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections import defaultdict
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..events import BusEvent, EventBus, EventType, Subscription
from .models import ArchivedEvent, CompletionRecord

logger = logging.getLogger(__name__)


class ArchiveUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the archive."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


def _where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    """Chroma requires an explicit ``$and`` when filtering on several keys."""

    if not filters:
        return None
    if len(filters) == 1:
        return dict(filters)
    return {"$and": [{key: value} for key, value in filters.items()]}


def _scalar_metadata(values: dict[str, Any]) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            metadata[key] = value
        else:
            metadata[key] = json.dumps(value, default=str)
    return metadata


class EventArchive:
    """Persist bus events in a Chroma collection and query them back."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "agentify_events",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
        executor: Executor | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()
        self._subscription: Subscription | None = None
        # One worker keeps each client's archived events in publish order.
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="agentify-archive")

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ArchiveUnavailableError(
                "chromadb package is not installed; install agentify-mcp with persistence extras"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        with self._lock:
            if self._collection is None:
                client = self._client or self._client_factory()
                self._client = client
                self._collection = client.get_or_create_collection(self._collection_name)
            return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ArchivedEvent]:
        events: list[ArchivedEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ArchivedEvent(
                    id=event_id,
                    client_id=metadata.get("client_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        client_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> ArchivedEvent:
        collection = self._ensure_collection()
        with self._lock:
            counter = self._counters[client_id] = self._counters[client_id] + 1
        event_id = f"{client_id}:{uuid.uuid4().hex}"
        timestamp = timestamp or self._clock()

        document = body if isinstance(body, str) else json.dumps(body, default=str)
        record_metadata = {
            "client_id": client_id,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            record_metadata.update(_scalar_metadata(metadata))

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return ArchivedEvent(
            id=event_id,
            client_id=client_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def record_bus_event(self, event: BusEvent) -> ArchivedEvent:
        metadata: dict[str, Any] = {}
        if event.type is EventType.TASK_COMPLETED:
            metadata["trigger"] = event.payload.get("trigger")
        elif event.type is EventType.CLIENT_STATUS_CHANGED:
            metadata["status"] = event.payload.get("to")
        return self.record_event(
            client_id=event.client_id or "system",
            event_type=event.type.value,
            body=event.to_dict(),
            metadata=metadata,
            timestamp=event.timestamp,
        )

    def submit_bus_event(self, event: BusEvent) -> Future:
        """Queue ``event`` for recording off the publishing thread."""

        return self._executor.submit(self._record_quietly, event)

    def _record_quietly(self, event: BusEvent) -> ArchivedEvent | None:
        try:
            return self.record_bus_event(event)
        except Exception:
            logger.exception(
                "Failed to archive event",
                extra={"client_id": event.client_id, "event_type": event.type.value},
            )
            return None

    def attach(self, bus: EventBus, event_types: Iterable[EventType] | None = None) -> Subscription:
        """Record bus events as they are published."""

        self._subscription = bus.subscribe(self.submit_bus_event, event_types)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def close(self) -> None:
        self.detach()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def fetch_client_events(self, client_id: str, *, limit: int | None = None) -> list[ArchivedEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"client_id": client_id}, limit=limit)
        return self._convert_result(result)

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ArchivedEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=_where(filters), limit=None if query else limit)
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events

    def list_completions(self, client_id: str | None = None, *, limit: int | None = None) -> list[CompletionRecord]:
        filters: dict[str, Any] = {"event_type": EventType.TASK_COMPLETED.value}
        if client_id:
            filters["client_id"] = client_id
        completions: list[CompletionRecord] = []
        for event in self.search_events(filters=filters, limit=limit):
            doc = json.loads(event.document)
            payload = doc.get("payload", {}) if isinstance(doc, dict) else {}
            completions.append(
                CompletionRecord(
                    client_id=event.client_id,
                    trigger=payload.get("trigger", event.metadata.get("trigger", "unknown")),
                    details=payload.get("details", {}),
                    completed_at=event.timestamp,
                )
            )
        return completions


__all__ = [
    "ArchiveUnavailableError",
    "ClientProtocol",
    "CollectionProtocol",
    "EventArchive",
]
