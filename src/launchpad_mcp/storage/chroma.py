"""Chroma-based run journal."""

from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from ..events import (
    WILDCARD,
    CliCompleted,
    CliError,
    CliProgress,
    CliStarted,
    CliStopped,
    EventBus,
    ExecutionEvent,
    StateChanged,
    Subscription,
)
from ..models import ExecutionStatus
from .models import RunRecord

logger = logging.getLogger(__name__)

RUN_RESET_EVENT = "run-reset"
_ACTIVE_STATUSES = {ExecutionStatus.RUNNING.value, ExecutionStatus.PAUSED.value}


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the journal."""

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
    """Protocol for the minimal Chroma client API used by the journal."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    run_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _describe(event: ExecutionEvent) -> tuple[str | None, dict[str, Any], dict[str, Any]]:
    """Return ``(run_id, body, metadata)`` for a bus event."""

    payload = event.payload
    if isinstance(payload, CliStarted):
        body = {
            "run_id": payload.run_id,
            "project_path": payload.project_path,
            "scope_file_path": payload.scope_file_path,
            "progress_file_path": payload.progress_file_path,
            "command": list(payload.command),
        }
        return payload.run_id, body, {"status": ExecutionStatus.RUNNING.value, "project_path": payload.project_path}
    if isinstance(payload, CliProgress):
        body = {
            "status": payload.status.value,
            "raw_status": payload.raw_status,
            "total_progress": payload.total_progress,
            "current_item": payload.current_item,
            "message": payload.message,
            "trigger": payload.trigger,
        }
        return payload.run_id, body, {"status": payload.status.value, "progress": float(payload.total_progress)}
    if isinstance(payload, CliCompleted):
        body = {"total_progress": payload.total_progress, "items": [item.id for item in payload.items]}
        return payload.run_id, body, {"status": ExecutionStatus.COMPLETED.value, "progress": payload.total_progress}
    if isinstance(payload, CliError):
        return payload.run_id, {"error": payload.error.error_text}, {"status": ExecutionStatus.FAILED.value}
    if isinstance(payload, CliStopped):
        body = {"project_path": payload.project_path, "reason": payload.reason}
        return payload.run_id, body, {"status": ExecutionStatus.IDLE.value, "reason": payload.reason}
    if isinstance(payload, StateChanged):
        state = payload.state
        metadata = {
            "status": state.status.value,
            "previous_status": payload.previous.value,
            "progress": state.progress_percent,
        }
        return state.run_id, state.to_dict(), metadata
    return None, {}, {}


class ChromaStore:
    """Journal execution events per run via ChromaDB."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "launchpad_runs",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install launchpad-mcp with persistence extras"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
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
                ChromaEvent(
                    id=event_id,
                    run_id=metadata.get("run_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        # Sequence counters restart with the host, so order by time first.
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        run_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        counter = self._counters[run_id] = self._counters[run_id] + 1
        event_id = f"{run_id}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata: dict[str, Any] = {
            "run_id": run_id,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            # Chroma metadata values must be scalars.
            record_metadata.update({key: value for key, value in metadata.items() if value is not None})

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return ChromaEvent(
            id=event_id,
            run_id=run_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def record_execution_event(self, event: ExecutionEvent) -> ChromaEvent | None:
        """Store a bus event under its run id. Events without a run id are skipped."""

        run_id, body, metadata = _describe(event)
        if not run_id:
            return None
        metadata["source"] = event.source
        return self.record_event(run_id=run_id, event_type=event.type.value, body=body, metadata=metadata)

    def attach(self, bus: EventBus) -> Subscription:
        """Subscribe to every bus event and journal it."""

        return bus.on(WILDCARD, self.record_execution_event)

    def fetch_run_events(self, run_id: str, *, limit: int | None = None) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"run_id": run_id}, limit=limit)
        return self._convert_result(result)

    def record_reset(self, run_id: str, previous_status: str) -> ChromaEvent:
        return self.record_event(
            run_id=run_id,
            event_type=RUN_RESET_EVENT,
            body={"previous_status": previous_status, "reason": "host_restart"},
            metadata={"status": ExecutionStatus.IDLE.value, "previous_status": previous_status},
        )

    def replay_runs(self) -> list[RunRecord]:
        """Reconstruct the latest known state of every journaled run."""

        started_events = self.search_events(filters={"event_type": "cli-started"})
        runs: dict[str, RunRecord] = {}

        for started in started_events:
            run_id = started.run_id
            if not run_id:
                continue
            doc = json.loads(started.document)
            history = self.fetch_run_events(run_id) or [started]
            latest = history[-1]

            progress = 0.0
            error_message: str | None = None
            for event in history:
                if "progress" in event.metadata:
                    progress = float(event.metadata["progress"])
                if event.event_type == "cli-error":
                    error_message = json.loads(event.document).get("error")

            runs[run_id] = RunRecord(
                run_id=run_id,
                status=latest.metadata.get("status", ExecutionStatus.RUNNING.value),
                project_path=doc.get("project_path"),
                progress_percent=progress,
                started_at=started.timestamp,
                updated_at=latest.timestamp,
                last_event=latest.event_type,
                error_message=error_message,
                metadata={"command": doc.get("command", []), "events": len(history)},
            )

        return sorted(runs.values(), key=lambda record: record.started_at)

    def reset_stale_runs(self) -> list[RunRecord]:
        """Record a reset for every run last seen RUNNING or PAUSED and return those runs."""

        stale = [record for record in self.replay_runs() if record.status in _ACTIVE_STATUSES]
        for record in stale:
            self.record_reset(record.run_id, record.status)
        return stale

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where=filters, limit=limit)
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


__all__ = ["ChromaEvent", "ChromaStore", "ChromaUnavailableError", "RUN_RESET_EVENT"]
