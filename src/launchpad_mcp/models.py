"""Data model shared by the orchestrator, watcher, and state machine."""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExecutionStatus(str, Enum):
    """Lifecycle status of a supervised run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"

    @property
    def is_terminal(self) -> bool:
        return self in {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}

    @property
    def is_active(self) -> bool:
        return self in {ExecutionStatus.RUNNING, ExecutionStatus.PAUSED}


_EXTERNAL_STATUS_MAP = {
    "started": ExecutionStatus.RUNNING,
    "in-progress": ExecutionStatus.RUNNING,
    "completed": ExecutionStatus.COMPLETED,
    "failed": ExecutionStatus.FAILED,
}


def map_progress_status(raw: str | None) -> ExecutionStatus:
    """Map the external status vocabulary onto :class:`ExecutionStatus`.

    Unknown strings fail open to ``RUNNING``.
    """

    if raw is None:
        return ExecutionStatus.RUNNING
    return _EXTERNAL_STATUS_MAP.get(raw.strip().lower(), ExecutionStatus.RUNNING)


def clamp_percent(value: float) -> float:
    number = float(value)
    if math.isnan(number):
        return 0.0
    return max(0.0, min(100.0, number))


class ScopeItem(BaseModel):
    """One requested unit of work handed to the external process."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable identifier for the unit of work.")
    title: str = Field(..., description="Human-friendly title.")
    selected: bool = Field(default=True, description="Whether the unit is requested in this run.")

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Scope item id must not be empty")
        return normalized


class ScopeDescriptor(BaseModel):
    """Immutable input written to ``<run-store>/scopes/<id>.json``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    project_path: str = Field(..., alias="projectPath")
    items: tuple[ScopeItem, ...] = ()
    updated: int = Field(default_factory=lambda: int(time.time() * 1000))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class LaunchRequest(BaseModel):
    """What the caller asks to run: a project directory and the items to work on."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    project_path: str = Field(..., alias="projectPath")
    items: tuple[ScopeItem, ...] = ()
    label: str | None = Field(default=None, description="Preset id or other caller-facing name for logs.")

    @field_validator("project_path")
    @classmethod
    def _require_project_path(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("projectPath must not be empty")
        return value.strip()


def new_scope_id() -> str:
    """Return a fresh run/scope id such as ``scope-1712345678901-1a2b3c4d5``."""

    return f"scope-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class ProgressItem(BaseModel):
    """Per-item progress optionally reported by the external process."""

    model_config = ConfigDict(extra="ignore")

    id: str
    progress: float = 0.0
    status: str | None = None


class ProgressDescriptor(BaseModel):
    """Externally-owned progress record, parsed leniently."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    status: str | None = "in-progress"
    completed: float = 0.0
    current_task: str | None = Field(default=None, alias="currentTask")
    error: str | None = None
    items: list[ProgressItem] = Field(default_factory=list)

    @field_validator("completed", mode="before")
    @classmethod
    def _coerce_completed(cls, value: Any) -> Any:
        if value is None:
            return 0.0
        return value

    @property
    def mapped_status(self) -> ExecutionStatus:
        return map_progress_status(self.status)


@dataclass(slots=True)
class ImplementationItem:
    """Scope item annotated with live progress."""

    id: str
    title: str
    selected: bool = True
    progress: float = 0.0
    status: str = "pending"

    @classmethod
    def from_scope_item(cls, item: ScopeItem) -> "ImplementationItem":
        return cls(id=item.id, title=item.title, selected=item.selected)


@dataclass(slots=True)
class ExecutionState:
    """Snapshot of the canonical run state."""

    status: ExecutionStatus = ExecutionStatus.IDLE
    progress_percent: float = 0.0
    items: list[ImplementationItem] = field(default_factory=list)
    run_id: str | None = None
    current_task: str | None = None
    error_message: str | None = None
    updated_at: datetime | None = None

    def copy(self) -> "ExecutionState":
        return replace(self, items=[replace(item) for item in self.items])

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "progress_percent": self.progress_percent,
            "run_id": self.run_id,
            "current_task": self.current_task,
            "error_message": self.error_message,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "items": [
                {
                    "id": item.id,
                    "title": item.title,
                    "selected": item.selected,
                    "progress": item.progress,
                    "status": item.status,
                }
                for item in self.items
            ],
        }


__all__ = [
    "ExecutionStatus",
    "ExecutionState",
    "ImplementationItem",
    "LaunchRequest",
    "ProgressDescriptor",
    "ProgressItem",
    "ScopeDescriptor",
    "ScopeItem",
    "clamp_percent",
    "map_progress_status",
    "new_scope_id",
]
