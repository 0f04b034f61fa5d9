"""Canonical execution state and its allowed transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Sequence

from ..errors import InvalidTransitionError
from ..events import CliCompleted, CliProgress, EventBus, EventType, ExecutionEvent, StateChanged
from ..models import ExecutionState, ExecutionStatus, ImplementationItem, ScopeItem, clamp_percent
from .watcher import ProgressFileWatcher

logger = logging.getLogger(__name__)

IDLE = ExecutionStatus.IDLE
RUNNING = ExecutionStatus.RUNNING
COMPLETED = ExecutionStatus.COMPLETED
FAILED = ExecutionStatus.FAILED
PAUSED = ExecutionStatus.PAUSED

ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    IDLE: frozenset({RUNNING}),
    RUNNING: frozenset({COMPLETED, FAILED, IDLE, PAUSED}),
    PAUSED: frozenset({RUNNING, IDLE}),
    COMPLETED: frozenset({IDLE}),
    FAILED: frozenset({IDLE}),
}

DEFAULT_FAILURE_MESSAGE = "External process reported failure"


class ExecutionStateMachine:
    """Owns the :class:`ExecutionState` and applies progress reports to it.

    Progress reports are accepted only while RUNNING and only for the current
    run id, so a stale report can never move a finished run back to RUNNING.
    The attached watcher follows the status: it runs while RUNNING and is
    stopped on every other status.
    """

    def __init__(
        self,
        bus: EventBus,
        *,
        clock: Callable[[], datetime] | None = None,
        source: str = "ExecutionStateMachine",
    ) -> None:
        self._bus = bus
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._source = source
        self._state = ExecutionState()
        self._watcher: ProgressFileWatcher | None = None
        self._subscription = bus.on(EventType.CLI_PROGRESS, self._on_progress)

    @property
    def state(self) -> ExecutionState:
        return self._state.copy()

    @property
    def status(self) -> ExecutionStatus:
        return self._state.status

    @property
    def watcher(self) -> ProgressFileWatcher | None:
        return self._watcher

    def begin_run(
        self,
        run_id: str,
        items: Sequence[ScopeItem],
        watcher: ProgressFileWatcher | None = None,
    ) -> ExecutionState:
        """IDLE -> RUNNING for a new run, starting ``watcher``."""

        self._check(RUNNING)
        self._release_watcher()
        self._watcher = watcher
        self._commit(
            ExecutionState(
                status=RUNNING,
                items=[ImplementationItem.from_scope_item(item) for item in items],
                run_id=run_id,
            )
        )
        return self.state

    def fail(self, message: str) -> ExecutionState:
        """RUNNING -> FAILED for errors raised by the host itself, e.g. a failed spawn."""

        self._check(FAILED)
        updated = self._state.copy()
        updated.status = FAILED
        updated.error_message = message
        self._commit(updated)
        return self.state

    def pause(self) -> ExecutionState:
        self._check(PAUSED)
        updated = self._state.copy()
        updated.status = PAUSED
        self._commit(updated)
        return self.state

    def resume(self) -> ExecutionState:
        self._check(RUNNING)
        if self._state.status is not PAUSED:
            raise InvalidTransitionError(f"Cannot resume from {self._state.status.value}")
        updated = self._state.copy()
        updated.status = RUNNING
        self._commit(updated)
        return self.state

    def stop_run(self) -> bool:
        """RUNNING | PAUSED -> IDLE. Returns False when no run is active."""

        if not self._state.status.is_active:
            return False
        self._commit(ExecutionState())
        return True

    def reset(self) -> bool:
        """Any status -> IDLE. Returns False when already IDLE."""

        if self._state.status is IDLE:
            self._release_watcher()
            return False
        self._commit(ExecutionState())
        return True

    def _check(self, target: ExecutionStatus) -> None:
        current = self._state.status
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"Illegal transition {current.value} -> {target.value}")

    def _on_progress(self, event: ExecutionEvent) -> None:
        payload = event.payload
        if not isinstance(payload, CliProgress):
            return
        current = self._state
        if current.status is not RUNNING or payload.run_id != current.run_id:
            logger.debug(
                "Ignoring progress report",
                extra={"run_id": payload.run_id, "status": current.status.value, "reported": payload.raw_status},
            )
            return

        updated = current.copy()
        updated.progress_percent = clamp_percent(payload.total_progress)
        updated.current_task = payload.current_item
        _apply_item_progress(updated.items, payload)

        reached_end = payload.status is RUNNING and updated.progress_percent >= 100.0
        if payload.status is COMPLETED or reached_end:
            updated.status = COMPLETED
            updated.progress_percent = 100.0
            for item in updated.items:
                if item.selected:
                    item.progress = 100.0
                    item.status = "completed"
        elif payload.status is FAILED:
            updated.status = FAILED
            updated.error_message = payload.message or DEFAULT_FAILURE_MESSAGE

        if updated == current:
            return
        self._commit(updated)

    def _commit(self, updated: ExecutionState) -> None:
        previous = self._state.status
        if updated.status is not previous and updated.status not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransitionError(f"Illegal transition {previous.value} -> {updated.status.value}")

        updated.updated_at = self._clock()
        self._state = updated
        if updated.status is not previous:
            logger.info(
                "Execution status changed",
                extra={"run_id": updated.run_id, "from_status": previous.value, "to_status": updated.status.value},
            )
            self._sync_watcher(updated.status)

        self._bus.emit(EventType.STATE_CHANGED, StateChanged(previous=previous, state=updated.copy()), self._source)
        if updated.status is COMPLETED and previous is not COMPLETED and updated.run_id is not None:
            self._bus.emit(
                EventType.CLI_COMPLETED,
                CliCompleted(
                    run_id=updated.run_id,
                    total_progress=updated.progress_percent,
                    items=tuple(updated.copy().items),
                ),
                self._source,
            )

    def _sync_watcher(self, status: ExecutionStatus) -> None:
        if status is IDLE:
            self._release_watcher()
        elif self._watcher is None:
            return
        elif status is RUNNING:
            self._watcher.start()
        else:
            self._watcher.stop()

    def _release_watcher(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            watcher.stop()

    def close(self) -> None:
        self._release_watcher()
        self._bus.off(self._subscription)


def _apply_item_progress(items: list[ImplementationItem], payload: CliProgress) -> None:
    by_id = {item.id: item for item in items}
    for reported in payload.items:
        item = by_id.get(reported.id)
        if item is None:
            continue
        item.progress = clamp_percent(reported.progress)
        if reported.status:
            item.status = reported.status
        elif item.progress >= 100.0:
            item.status = "completed"
        elif item.progress > 0.0:
            item.status = "in-progress"

    if payload.current_item and not payload.items:
        item = by_id.get(payload.current_item)
        if item is not None and item.status == "pending":
            item.status = "in-progress"


__all__ = ["ALLOWED_TRANSITIONS", "ExecutionStateMachine"]
