"""Data models for the persisted run journal."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class RunRecord:
    run_id: str
    status: str
    project_path: str | None
    progress_percent: float
    started_at: datetime
    updated_at: datetime
    last_event: str
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "project_path": self.project_path,
            "progress_percent": self.progress_percent,
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_event": self.last_event,
            "error_message": self.error_message,
            "metadata": self.metadata,
        }


__all__ = ["RunRecord"]
