"""Scope preset models for reusable launch definitions."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..errors import ScopeLoadError
from ..models import LaunchRequest, ScopeItem


class ScopePreset(BaseModel):
    """A named set of work items, optionally bound to a project directory."""

    id: str = Field(..., description="Unique identifier for the preset.")
    title: str = Field(..., description="Display title for the preset.")
    description: str = Field(default="", description="Free-form notes shown by list_scopes.")
    project_path: str | None = Field(
        default=None,
        description="Project directory to launch in; callers may override it per launch.",
    )
    items: list[ScopeItem] = Field(
        default_factory=list,
        description="Ordered work items handed to the CLI.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata, returned verbatim by list_scopes.",
    )
    source: str | None = Field(default=None, description="Preset file this definition was read from.")

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Scope preset id must not be empty")
        return normalized

    @field_validator("items", mode="before")
    @classmethod
    def _ensure_list(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        raise TypeError("Scope preset items must be a sequence")

    @model_validator(mode="after")
    def _unique_item_ids(self) -> "ScopePreset":
        # Progress reports are merged into items by id.
        seen: set[str] = set()
        repeated: list[str] = []
        for item in self.items:
            if item.id in seen and item.id not in repeated:
                repeated.append(item.id)
            seen.add(item.id)
        if repeated:
            raise ValueError(f"Scope preset '{self.id}' repeats item ids: {', '.join(repeated)}")
        return self

    @classmethod
    def from_file(cls, path: Path) -> "ScopePreset | None":
        """Read one preset file. Empty files yield ``None``.

        A relative ``project_path`` resolves against the file's directory so
        presets can travel with the repository they describe.
        """

        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ScopeLoadError(f"Failed to parse YAML in {path}: {exc}") from exc

        if document is None:
            return None
        if not isinstance(document, dict):
            raise ScopeLoadError(f"Scope preset {path} must be a mapping, got {type(document).__name__}")

        try:
            preset = cls.model_validate({**document, "source": str(path)})
        except ValidationError as exc:
            raise ScopeLoadError(f"Scope validation error in {path}: {exc}") from exc

        if preset.project_path and not Path(preset.project_path).expanduser().is_absolute():
            resolved = (path.parent / preset.project_path).resolve()
            preset = preset.model_copy(update={"project_path": str(resolved)})
        return preset

    def to_request(self, project_path: str | None = None) -> LaunchRequest:
        """Build a launch request, preferring ``project_path`` over the preset's own."""

        target = project_path or self.project_path
        if not target:
            raise ValueError(f"Scope preset '{self.id}' has no project_path; pass one explicitly")
        return LaunchRequest(project_path=target, items=tuple(self.items), label=self.id)


__all__ = ["ScopePreset"]
