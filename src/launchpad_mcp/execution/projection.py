"""Pure projection of an execution state onto a renderable status record."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from ..models import ExecutionState, ExecutionStatus

_ICONS = {
    ExecutionStatus.RUNNING: "sync~spin",
    ExecutionStatus.COMPLETED: "check",
    ExecutionStatus.FAILED: "error",
    ExecutionStatus.PAUSED: "debug-pause",
}
_DEFAULT_ICON = "terminal"


@dataclass(slots=True, frozen=True)
class StatusDisplay:
    icon: str
    text: str
    tooltip: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def _message_for(state: ExecutionState) -> str:
    if state.status is ExecutionStatus.RUNNING:
        return state.current_task or "Running"
    if state.status is ExecutionStatus.COMPLETED:
        return "Completed"
    if state.status is ExecutionStatus.FAILED:
        return state.error_message or "Failed"
    if state.status is ExecutionStatus.PAUSED:
        return "Paused"
    return "Idle"


def project_status(state: ExecutionState) -> StatusDisplay:
    """Return the icon, one-line text and tooltip for ``state``."""

    percent = f"{round(state.progress_percent)}%" if state.progress_percent > 0 else ""
    text = " ".join(part for part in ("CLI:", percent, _message_for(state)) if part)

    tooltip = f"Launchpad CLI - status: {state.status.value}, progress: {percent or '0%'}"
    selected = [item for item in state.items if item.selected]
    if selected:
        done = sum(1 for item in selected if item.progress >= 100.0)
        tooltip += f", items completed: {done}/{len(selected)}"
    if state.current_task and state.status is not ExecutionStatus.RUNNING:
        tooltip += f", last task: {state.current_task}"

    return StatusDisplay(icon=_ICONS.get(state.status, _DEFAULT_ICON), text=text, tooltip=tooltip)


__all__ = ["StatusDisplay", "project_status"]
