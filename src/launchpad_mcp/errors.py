"""Exception hierarchy shared by the launcher components."""

from __future__ import annotations


class LaunchpadError(RuntimeError):
    """Base class for Launchpad errors."""


class LaunchError(LaunchpadError):
    """Raised synchronously by ``launch()``; the caller may retry with corrected input."""


class InvalidProjectPathError(LaunchError):
    """Raised when the scope's project path does not exist on disk."""

    def __init__(self, project_path: str) -> None:
        super().__init__(f"Project path does not exist: {project_path}")
        self.project_path = project_path


class CliNotFoundError(LaunchError):
    """Raised when no candidate in the resolution chain yields a usable CLI."""


class SpawnFailedError(LaunchError):
    """Raised when the terminal collaborator could not start the external process."""


class InvalidTransitionError(LaunchpadError):
    """Raised when a state change does not follow an allowed edge."""


class ProgressParseSkipped(LaunchpadError):
    """Progress file content could not be parsed; the tick is skipped and retried later."""


class ScopeLoadError(LaunchpadError):
    """Raised when one or more scope preset files cannot be loaded."""


class ExternalProcessReportedFailure(LaunchpadError):
    """The external process reported ``status: failed`` in its progress file."""

    def __init__(self, error_text: str | None) -> None:
        super().__init__(error_text or "External process reported failure")
        self.error_text = error_text


__all__ = [
    "LaunchpadError",
    "LaunchError",
    "InvalidProjectPathError",
    "CliNotFoundError",
    "SpawnFailedError",
    "InvalidTransitionError",
    "ProgressParseSkipped",
    "ExternalProcessReportedFailure",
    "ScopeLoadError",
]
