"""Launch orchestrator for the supervised external CLI."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ..cli.resolver import CliResolver
from ..cli.retry import RetryableError, RetryPolicy
from ..cli.terminal import ProcessHandle, TerminalCollaborator
from ..cli.utils import build_run_environment, sanitize_environment
from ..collaborators import AuthCollaborator, Prompter
from ..errors import CliNotFoundError, InvalidProjectPathError, SpawnFailedError
from ..events import CliStarted, CliStopped, EventBus, EventHandler, EventType, Subscription
from ..models import ExecutionState, ExecutionStatus, LaunchRequest, ScopeDescriptor, new_scope_id
from .state_machine import ExecutionStateMachine
from .watcher import DEFAULT_POLL_INTERVAL, ProgressFileWatcher

logger = logging.getLogger(__name__)

RESET_AND_CONTINUE = "Reset and continue"
CANCEL = "Cancel"

WatcherFactory = Callable[[Path, str], ProgressFileWatcher]


@dataclass(slots=True)
class RunHandle:
    """Bookkeeping for the run currently owned by the orchestrator."""

    run_id: str
    project_path: Path
    scope_file_path: Path
    progress_file_path: Path
    command: tuple[str, ...]
    started_at: datetime
    process: ProcessHandle | None = None
    stopped_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "project_path": str(self.project_path),
            "scope_file_path": str(self.scope_file_path),
            "progress_file_path": str(self.progress_file_path),
            "command": list(self.command),
            "started_at": self.started_at.isoformat(),
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
            "pid": self.process.pid if self.process is not None else None,
        }


class LaunchOrchestrator:
    """Launch the external CLI, hand it its inputs, and track the run.

    A launch validates the project path and resolves the executable before
    anything is written. It then writes the scope file, moves the state
    machine to RUNNING with a fresh progress watcher, and spawns the CLI in a
    visible terminal. Everything after the spawn is driven by the progress
    file.
    """

    def __init__(
        self,
        *,
        bus: EventBus,
        state_machine: ExecutionStateMachine,
        resolver: CliResolver,
        terminal: TerminalCollaborator,
        run_store: Path,
        auth: AuthCollaborator | None = None,
        prompter: Prompter | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debug: bool = False,
        credential_policy: RetryPolicy | None = None,
        watcher_factory: WatcherFactory | None = None,
        id_factory: Callable[[], str] = new_scope_id,
        clock: Callable[[], datetime] | None = None,
        source: str = "LaunchOrchestrator",
    ) -> None:
        self._bus = bus
        self._machine = state_machine
        self._resolver = resolver
        self._terminal = terminal
        self._run_store = Path(run_store)
        self._auth = auth
        self._prompter = prompter
        self._poll_interval = poll_interval
        self._debug = debug
        self._credential_policy = credential_policy or RetryPolicy(
            retry_on=(RetryableError, ConnectionError, asyncio.TimeoutError),
        )
        self._watcher_factory = watcher_factory or self._default_watcher
        self._id_factory = id_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._source = source
        self._handle: RunHandle | None = None

    @property
    def handle(self) -> RunHandle | None:
        return self._handle

    @property
    def state_machine(self) -> ExecutionStateMachine:
        return self._machine

    @property
    def resolver(self) -> CliResolver:
        return self._resolver

    def scope_file_path(self, run_id: str) -> Path:
        return self._run_store / "scopes" / f"{run_id}.json"

    def progress_file_path(self, run_id: str) -> Path:
        return self._run_store / "progress" / f"{run_id}.json"

    def get_current_state(self) -> ExecutionState:
        return self._machine.state

    def on_execution_event(self, event_type: EventType | str, handler: EventHandler) -> Subscription:
        return self._bus.on(event_type, handler)

    async def launch(self, request: LaunchRequest, *, force: bool = False, interactive: bool = True) -> bool:
        """Start a run for ``request``.

        Returns False when a run is already active and the caller neither
        forced nor confirmed a reset. Raises a :class:`LaunchError` subclass
        when the project path is missing, no CLI can be resolved, or the
        spawn fails.
        """

        status = self._machine.status
        if status.is_active:
            if not force and not await self._confirm_reset():
                logger.info(
                    "Launch declined; a run is already active",
                    extra={"run_id": self._machine.state.run_id, "status": status.value},
                )
                return False
            if force:
                self._end_run(reason="replaced")
            else:
                self.reset_status()
        elif status.is_terminal:
            self._machine.reset()
            self._handle = None

        project_path = Path(request.project_path).expanduser()
        if not project_path.exists():
            logger.error("Project path does not exist", extra={"project_path": request.project_path})
            raise InvalidProjectPathError(request.project_path)
        project_path = project_path.resolve()

        try:
            command = await self._resolver.resolve(project_path, interactive=interactive)
        except CliNotFoundError:
            logger.error(
                "No usable CLI found",
                extra={"attempts": [attempt.source for attempt in self._resolver.attempts]},
            )
            raise
        credential = await self._lookup_credential()

        run_id = self._id_factory()
        scope = ScopeDescriptor(id=run_id, project_path=str(project_path), items=request.items)
        scope_file = self.scope_file_path(run_id)
        progress_file = self.progress_file_path(run_id)
        self._write_scope(scope, scope_file)

        env = sanitize_environment(
            build_run_environment(
                project_path=str(project_path),
                scope_id=run_id,
                scope_file_path=str(scope_file),
                progress_file_path=str(progress_file),
                debug=self._debug,
                credential=credential,
            )
        )
        argv = command.with_args(f"--scope={scope_file}", f"--project={project_path}")

        handle = RunHandle(
            run_id=run_id,
            project_path=project_path,
            scope_file_path=scope_file,
            progress_file_path=progress_file,
            command=argv,
            started_at=self._clock(),
        )
        self._handle = handle
        self._machine.begin_run(run_id, scope.items, self._watcher_factory(progress_file, run_id))

        try:
            handle.process = await self._terminal.spawn_interactive(argv, str(project_path), env)
        except Exception as exc:
            logger.exception("Failed to spawn CLI", extra={"run_id": run_id, "command": list(argv)})
            self._machine.fail(f"Failed to start CLI: {exc}")
            handle.stopped_at = self._clock()
            raise SpawnFailedError(f"Failed to start CLI: {exc}") from exc

        logger.info(
            "CLI launched",
            extra={
                "run_id": run_id,
                "label": request.label,
                "cli_source": command.source,
                "item_count": len(scope.items),
                "pid": handle.process.pid,
            },
        )
        self._bus.emit(
            EventType.CLI_STARTED,
            CliStarted(
                run_id=run_id,
                project_path=str(project_path),
                scope_file_path=str(scope_file),
                progress_file_path=str(progress_file),
                command=argv,
            ),
            self._source,
            metadata={"label": request.label} if request.label else None,
        )
        return True

    def stop(self) -> bool:
        """Terminate the tracked process and return to IDLE. False when nothing runs."""

        if not self._machine.status.is_active:
            return False
        self._end_run(reason="stopped")
        return True

    def _end_run(self, *, reason: str) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.stopped_at = self._clock()
            if handle.process is not None:
                handle.process.terminate()
        run_id = self._machine.state.run_id
        self._machine.stop_run()
        logger.info("CLI stopped", extra={"run_id": run_id, "reason": reason})
        self._bus.emit(
            EventType.CLI_STOPPED,
            CliStopped(
                run_id=run_id,
                project_path=str(handle.project_path) if handle is not None else None,
                reason=reason,
            ),
            self._source,
        )

    def reset_status(self) -> bool:
        """Force the state back to IDLE without terminating any process."""

        previous = self._machine.state
        handle, self._handle = self._handle, None
        if not self._machine.reset():
            return False
        logger.info("Execution status reset", extra={"run_id": previous.run_id, "from_status": previous.status.value})
        if previous.status.is_active:
            self._bus.emit(
                EventType.CLI_STOPPED,
                CliStopped(
                    run_id=previous.run_id,
                    project_path=str(handle.project_path) if handle is not None else None,
                    reason="reset",
                ),
                self._source,
            )
        return True

    def pause(self) -> ExecutionState:
        return self._machine.pause()

    def resume(self) -> ExecutionState:
        return self._machine.resume()

    async def _confirm_reset(self) -> bool:
        if self._prompter is None:
            return False
        choice = await self._prompter.choose(
            "A CLI run is already in progress. Reset its status and start a new run?",
            [RESET_AND_CONTINUE, CANCEL],
        )
        return choice == RESET_AND_CONTINUE

    async def _lookup_credential(self) -> str | None:
        if self._auth is None:
            return None
        try:
            return await self._credential_policy.run(self._auth.get_credential, label="credential_lookup")
        except self._credential_policy.retry_on as exc:
            logger.warning("Credential lookup failed; launching without credential", extra={"error": str(exc)})
            return None

    def _write_scope(self, scope: ScopeDescriptor, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(scope.to_json(), encoding="utf-8")
        os.replace(tmp_path, path)
        logger.debug("Scope file written", extra={"run_id": scope.id, "path": str(path)})

    def _default_watcher(self, progress_path: Path, run_id: str) -> ProgressFileWatcher:
        return ProgressFileWatcher(progress_path, self._bus, run_id=run_id, poll_interval=self._poll_interval)


__all__ = ["CANCEL", "LaunchOrchestrator", "RESET_AND_CONTINUE", "RunHandle"]
