"""Event types and their payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from ..errors import ExternalProcessReportedFailure
from ..models import ExecutionState, ExecutionStatus, ImplementationItem, ProgressItem


class EventType(str, Enum):
    CLI_STARTED = "cli-started"
    CLI_PROGRESS = "cli-progress"
    CLI_COMPLETED = "cli-completed"
    CLI_ERROR = "cli-error"
    CLI_STOPPED = "cli-stopped"
    STATE_CHANGED = "state-changed"


@dataclass(slots=True, frozen=True)
class CliStarted:
    run_id: str
    project_path: str
    scope_file_path: str
    progress_file_path: str
    command: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class CliProgress:
    run_id: str
    status: ExecutionStatus
    total_progress: float
    raw_status: str
    current_item: str | None = None
    message: str | None = None
    items: tuple[ProgressItem, ...] = ()
    trigger: str = "poll"


@dataclass(slots=True, frozen=True)
class CliCompleted:
    run_id: str
    total_progress: float
    items: tuple[ImplementationItem, ...] = ()


@dataclass(slots=True, frozen=True)
class CliError:
    run_id: str
    error: ExternalProcessReportedFailure

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass(slots=True, frozen=True)
class CliStopped:
    run_id: str | None
    project_path: str | None
    reason: str = "stopped"


@dataclass(slots=True, frozen=True)
class StateChanged:
    previous: ExecutionStatus
    state: ExecutionState


EventPayload = Union[CliStarted, CliProgress, CliCompleted, CliError, CliStopped, StateChanged]

PAYLOAD_TYPES: dict[EventType, type] = {
    EventType.CLI_STARTED: CliStarted,
    EventType.CLI_PROGRESS: CliProgress,
    EventType.CLI_COMPLETED: CliCompleted,
    EventType.CLI_ERROR: CliError,
    EventType.CLI_STOPPED: CliStopped,
    EventType.STATE_CHANGED: StateChanged,
}


@dataclass(slots=True, frozen=True)
class ExecutionEvent:
    """Envelope delivered to subscribers."""

    type: EventType
    payload: EventPayload
    source: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


__all__ = [
    "CliCompleted",
    "CliError",
    "CliProgress",
    "CliStarted",
    "CliStopped",
    "EventPayload",
    "EventType",
    "ExecutionEvent",
    "PAYLOAD_TYPES",
    "StateChanged",
]
