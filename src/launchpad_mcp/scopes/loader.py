"""Discovery of scope presets across ordered search paths."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ..errors import ScopeLoadError
from .models import ScopePreset

logger = logging.getLogger(__name__)

PRESET_SUFFIXES = (".yaml", ".yml")


@dataclass(frozen=True, slots=True)
class ScopeOverride:
    """A preset id that a later search path defines again."""

    preset_id: str
    replaced: str | None
    winner: str | None

    def to_dict(self) -> dict[str, str | None]:
        return {"preset_id": self.preset_id, "replaced": self.replaced, "winner": self.winner}


class ScopeLoader:
    """Collects scope presets from directories, earliest search path first.

    An id may appear once per directory. A later directory may redefine an id
    from an earlier one; the redefinition wins and is listed in ``overrides``.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.is_dir()]
        self._overrides: list[ScopeOverride] = []

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    @property
    def overrides(self) -> list[ScopeOverride]:
        """Overrides seen by the most recent ``load_all``."""

        return list(self._overrides)

    def preset_files(self, base: Path) -> list[Path]:
        return sorted(path for path in base.iterdir() if path.is_file() and path.suffix in PRESET_SUFFIXES)

    def load_all(self) -> dict[str, ScopePreset]:
        presets: dict[str, ScopePreset] = {}
        overrides: list[ScopeOverride] = []
        errors: list[str] = []

        for base in self._search_paths:
            defined_here: dict[str, Path] = {}
            for path in self.preset_files(base):
                try:
                    preset = ScopePreset.from_file(path)
                except ScopeLoadError as exc:
                    errors.append(str(exc))
                    continue
                if preset is None:
                    continue

                if preset.id in defined_here:
                    errors.append(
                        f"Scope preset '{preset.id}' is defined by both {defined_here[preset.id].name} "
                        f"and {path.name} in {base}"
                    )
                    continue
                defined_here[preset.id] = path

                earlier = presets.get(preset.id)
                if earlier is not None:
                    overrides.append(ScopeOverride(preset.id, earlier.source, preset.source))
                    logger.info(
                        "Scope preset overridden by later search path",
                        extra={"preset_id": preset.id, "replaced": earlier.source, "winner": preset.source},
                    )
                presets[preset.id] = preset

        self._overrides = overrides
        if errors:
            raise ScopeLoadError("; ".join(errors))
        return presets

    def get(self, preset_id: str) -> ScopePreset:
        preset = self.load_all().get(preset_id)
        if preset is None:
            searched = ", ".join(str(path) for path in self._search_paths) or "no search paths"
            raise ScopeLoadError(f"Scope preset '{preset_id}' not found (searched {searched})")
        return preset


__all__ = ["PRESET_SUFFIXES", "ScopeLoadError", "ScopeLoader", "ScopeOverride"]
