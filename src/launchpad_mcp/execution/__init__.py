"""Run supervision: progress watcher, state machine, orchestrator, projection."""

from .orchestrator import CANCEL, RESET_AND_CONTINUE, LaunchOrchestrator, RunHandle
from .projection import StatusDisplay, project_status
from .state_machine import ALLOWED_TRANSITIONS, ExecutionStateMachine
from .watcher import DEFAULT_POLL_INTERVAL, ProgressFileWatcher, parse_progress

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CANCEL",
    "DEFAULT_POLL_INTERVAL",
    "ExecutionStateMachine",
    "LaunchOrchestrator",
    "ProgressFileWatcher",
    "RESET_AND_CONTINUE",
    "RunHandle",
    "StatusDisplay",
    "parse_progress",
    "project_status",
]
