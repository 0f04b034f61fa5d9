from __future__ import annotations

import pytest

from launchpad_mcp.errors import InvalidTransitionError
from launchpad_mcp.events import CliProgress, EventBus, EventType
from launchpad_mcp.execution import ExecutionStateMachine
from launchpad_mcp.models import ExecutionStatus, ProgressItem, ScopeItem, map_progress_status


class StubWatcher:
    def __init__(self) -> None:
        self.start_calls = 0
        self.stop_calls = 0
        self.active = False

    def start(self) -> None:
        self.start_calls += 1
        self.active = True

    def stop(self) -> bool:
        self.stop_calls += 1
        was_active = self.active
        self.active = False
        return was_active


ITEMS = [
    ScopeItem(id="item-1", title="Login form"),
    ScopeItem(id="item-2", title="Password reset"),
    ScopeItem(id="item-3", title="Audit log", selected=False),
]


def _report(bus: EventBus, status: str, completed: float, *, run_id: str = "run-1", **kwargs) -> None:
    bus.emit(
        EventType.CLI_PROGRESS,
        CliProgress(
            run_id=run_id,
            status=map_progress_status(status),
            total_progress=completed,
            raw_status=status,
            **kwargs,
        ),
        "test",
    )


def _running_machine():
    bus = EventBus()
    changes = []
    completions = []
    bus.on(EventType.STATE_CHANGED, changes.append)
    bus.on(EventType.CLI_COMPLETED, completions.append)
    machine = ExecutionStateMachine(bus)
    watcher = StubWatcher()
    machine.begin_run("run-1", ITEMS, watcher)
    return bus, machine, watcher, changes, completions


def test_begin_run_enters_running_and_starts_watcher() -> None:
    _, machine, watcher, changes, _ = _running_machine()

    state = machine.state
    assert state.status is ExecutionStatus.RUNNING
    assert state.run_id == "run-1"
    assert [item.id for item in state.items] == ["item-1", "item-2", "item-3"]
    assert all(item.status == "pending" for item in state.items)
    assert watcher.start_calls == 1
    assert changes[0].payload.previous is ExecutionStatus.IDLE
    assert changes[0].payload.state.status is ExecutionStatus.RUNNING


def test_progress_updates_percent_last_read_wins() -> None:
    bus, machine, _, changes, _ = _running_machine()

    _report(bus, "in-progress", 42)
    assert machine.state.progress_percent == 42
    _report(bus, "in-progress", 30)
    assert machine.state.progress_percent == 30
    _report(bus, "in-progress", -5)
    assert machine.state.progress_percent == 0
    assert machine.status is ExecutionStatus.RUNNING
    assert len(changes) == 4


def test_unknown_status_fails_open_to_running() -> None:
    bus, machine, watcher, _, _ = _running_machine()

    _report(bus, "verifying", 80)

    assert machine.status is ExecutionStatus.RUNNING
    assert watcher.stop_calls == 0


@pytest.mark.parametrize("status", ["in-progress", "started", "verifying"])
def test_hundred_percent_while_running_completes_run(status: str) -> None:
    bus, machine, watcher, _, completions = _running_machine()

    _report(bus, status, 250)

    state = machine.state
    assert state.status is ExecutionStatus.COMPLETED
    assert state.progress_percent == 100
    assert [item.status for item in state.items] == ["completed", "completed", "pending"]
    assert watcher.stop_calls == 1
    assert len(completions) == 1
    assert completions[0].payload.total_progress == 100


def test_failed_report_at_hundred_percent_still_fails() -> None:
    bus, machine, _, _, completions = _running_machine()

    _report(bus, "failed", 100, message="tests red")

    assert machine.status is ExecutionStatus.FAILED
    assert machine.state.error_message == "tests red"
    assert completions == []


def test_completed_status_finishes_run_and_stops_watcher() -> None:
    bus, machine, watcher, changes, completions = _running_machine()

    _report(bus, "completed", 97)

    state = machine.state
    assert state.status is ExecutionStatus.COMPLETED
    assert state.progress_percent == 100
    assert [item.status for item in state.items] == ["completed", "completed", "pending"]
    assert watcher.stop_calls == 1
    assert len(completions) == 1
    assert completions[0].payload.run_id == "run-1"
    assert changes[-1].payload.previous is ExecutionStatus.RUNNING


def test_failed_status_records_error_text() -> None:
    bus, machine, watcher, _, completions = _running_machine()

    _report(bus, "failed", 55, message="tests failed: 3")

    state = machine.state
    assert state.status is ExecutionStatus.FAILED
    assert state.error_message == "tests failed: 3"
    assert state.progress_percent == 55
    assert watcher.stop_calls == 1
    assert completions == []


@pytest.mark.parametrize("terminal", ["completed", "failed"])
def test_terminal_states_ignore_late_reports(terminal: str) -> None:
    bus, machine, _, changes, _ = _running_machine()
    _report(bus, terminal, 100)
    settled = machine.state
    count = len(changes)

    _report(bus, "in-progress", 40)
    _report(bus, "started", 0)
    _report(bus, "completed" if terminal == "failed" else "failed", 100)

    assert machine.state.status is settled.status
    assert machine.state.progress_percent == settled.progress_percent
    assert len(changes) == count


def test_reports_for_other_runs_are_ignored() -> None:
    bus, machine, _, changes, _ = _running_machine()

    _report(bus, "completed", 100, run_id="run-0")

    assert machine.status is ExecutionStatus.RUNNING
    assert len(changes) == 1


def test_identical_report_publishes_no_change() -> None:
    bus, _, _, changes, _ = _running_machine()

    _report(bus, "in-progress", 10, current_item="item-1")
    _report(bus, "in-progress", 10, current_item="item-1")

    assert len(changes) == 2


def test_item_progress_is_merged_by_id() -> None:
    bus, machine, _, _, _ = _running_machine()

    _report(
        bus,
        "in-progress",
        50,
        current_item="item-2",
        items=(ProgressItem(id="item-1", progress=100), ProgressItem(id="item-2", progress=20, status="coding")),
    )

    items = {item.id: item for item in machine.state.items}
    assert items["item-1"].progress == 100
    assert items["item-1"].status == "completed"
    assert items["item-2"].status == "coding"
    assert items["item-3"].progress == 0
    assert machine.state.current_task == "item-2"


def test_current_item_marks_pending_item_in_progress() -> None:
    bus, machine, _, _, _ = _running_machine()

    _report(bus, "in-progress", 5, current_item="item-1")

    assert machine.state.items[0].status == "in-progress"


def test_pause_and_resume_toggle_watcher() -> None:
    bus, machine, watcher, _, _ = _running_machine()

    machine.pause()
    assert machine.status is ExecutionStatus.PAUSED
    assert watcher.stop_calls == 1

    _report(bus, "completed", 100)
    assert machine.status is ExecutionStatus.PAUSED

    machine.resume()
    assert machine.status is ExecutionStatus.RUNNING
    assert watcher.start_calls == 2


def test_illegal_transitions_raise() -> None:
    bus = EventBus()
    machine = ExecutionStateMachine(bus)

    with pytest.raises(InvalidTransitionError):
        machine.pause()
    with pytest.raises(InvalidTransitionError):
        machine.resume()
    with pytest.raises(InvalidTransitionError):
        machine.fail("nothing to fail")

    machine.begin_run("run-1", ITEMS)
    with pytest.raises(InvalidTransitionError):
        machine.begin_run("run-2", ITEMS)
    with pytest.raises(InvalidTransitionError):
        machine.resume()


def test_stop_run_and_reset() -> None:
    bus, machine, watcher, _, _ = _running_machine()

    assert machine.stop_run() is True
    assert machine.stop_run() is False
    state = machine.state
    assert state.status is ExecutionStatus.IDLE
    assert state.run_id is None
    assert state.items == []
    assert machine.watcher is None
    assert watcher.stop_calls == 1

    assert machine.reset() is False


def test_reset_from_terminal_state_allows_new_run() -> None:
    bus, machine, _, _, _ = _running_machine()
    _report(bus, "failed", 10)

    assert machine.reset() is True
    assert machine.status is ExecutionStatus.IDLE

    second = StubWatcher()
    machine.begin_run("run-2", ITEMS[:1], second)
    assert machine.state.run_id == "run-2"
    assert second.start_calls == 1


def test_state_snapshot_is_a_copy() -> None:
    _, machine, _, _, _ = _running_machine()

    snapshot = machine.state
    snapshot.items[0].progress = 99
    snapshot.progress_percent = 99

    assert machine.state.items[0].progress == 0
    assert machine.state.progress_percent == 0
