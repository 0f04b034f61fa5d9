"""FastMCP server bootstrap for Launchpad."""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .cli import CliInstaller, CliResolver, CliRunner, RetryableError, RetryPolicy, SubprocessTerminal
from .cli.terminal import TerminalCollaborator
from .collaborators import AuthCollaborator, NonInteractivePrompter, Prompter, StaticCredentialProvider
from .config import LaunchpadSettings, get_settings
from .errors import CliNotFoundError
from .events import EventBus
from .execution import ExecutionStateMachine, LaunchOrchestrator
from .scopes import ScopeLoadError, ScopeLoader
from .storage import ChromaStore, ChromaUnavailableError
from .tools import ToolHandles, register_tools, status_snapshot

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the Launchpad server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@dataclass(slots=True)
class LaunchpadContext:
    """Process-wide wiring, built once at startup and passed to consumers."""

    settings: LaunchpadSettings
    bus: EventBus
    state_machine: ExecutionStateMachine
    resolver: CliResolver
    orchestrator: LaunchOrchestrator
    scopes: ScopeLoader
    chroma_store: ChromaStore | None
    cli_metadata: dict[str, Any]
    chroma_metadata: dict[str, Any]
    startup_resets: list[dict[str, Any]] = field(default_factory=list)


def build_context(
    settings: Optional[LaunchpadSettings] = None,
    *,
    terminal: TerminalCollaborator | None = None,
    cli_runner: CliRunner | None = None,
    prompter: Prompter | None = None,
    auth: AuthCollaborator | None = None,
    chroma_store: ChromaStore | None = None,
    probe_cli: bool = True,
) -> LaunchpadContext:
    """Construct the bus, state machine, resolver, orchestrator and journal."""

    settings = settings or get_settings()

    if terminal is None:
        # stdout/stdin belong to the MCP transport; the child writes to stderr.
        terminal = SubprocessTerminal(
            settings.terminal_wrapper,
            stdin=asyncio.subprocess.DEVNULL,
            output=sys.stderr,
        )
    prompter = prompter or NonInteractivePrompter()
    auth = auth or StaticCredentialProvider(settings.api_key)
    cli_runner = cli_runner or CliRunner(
        timeout=settings.probe_timeout,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_attempts,
            backoff_base=settings.retry_backoff,
            retry_on=(asyncio.TimeoutError,),
        ),
    )

    resolver = CliResolver(
        runner=cli_runner,
        command_name=settings.cli_command,
        bundled_path=settings.bundled_cli_path,
        workspace_relpath=settings.workspace_cli_path,
        configured_path=settings.cli_path,
        prompter=prompter,
        installer=CliInstaller(terminal, settings.install_command),
    )

    cli_metadata: dict[str, Any] = {
        "available": False,
        "source": None,
        "command": None,
        "error": None,
    }
    if probe_cli:
        try:
            command = _run_sync(resolver.resolve(interactive=False))
            cli_metadata.update({"available": True, "source": command.source, "command": list(command.argv)})
        except CliNotFoundError as exc:
            cli_metadata["error"] = str(exc)

    chroma_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "launchpad_runs",
        "error": None,
    }
    try:
        chroma_store = chroma_store or ChromaStore(settings.chroma_persist_path)
        chroma_store.ping()
        chroma_metadata["available"] = True
    except ChromaUnavailableError as exc:
        chroma_metadata["error"] = str(exc)
        chroma_store = None

    bus = EventBus()
    state_machine = ExecutionStateMachine(bus)
    orchestrator = LaunchOrchestrator(
        bus=bus,
        state_machine=state_machine,
        resolver=resolver,
        terminal=terminal,
        run_store=settings.run_store,
        auth=auth,
        prompter=prompter,
        poll_interval=settings.poll_interval,
        debug=settings.debug,
        credential_policy=RetryPolicy(
            max_attempts=settings.retry_attempts,
            backoff_base=settings.retry_backoff,
            retry_on=(RetryableError, ConnectionError, asyncio.TimeoutError),
        ),
    )

    context = LaunchpadContext(
        settings=settings,
        bus=bus,
        state_machine=state_machine,
        resolver=resolver,
        orchestrator=orchestrator,
        scopes=ScopeLoader(settings.scope_paths),
        chroma_store=chroma_store,
        cli_metadata=cli_metadata,
        chroma_metadata=chroma_metadata,
    )

    # The in-memory state always starts IDLE; runs the journal last saw active
    # belonged to a previous host process and are closed out quietly.
    if chroma_store is not None:
        for record in chroma_store.reset_stale_runs():
            logger.info(
                "Reset run left active by a previous session",
                extra={"run_id": record.run_id, "previous_status": record.status},
            )
            context.startup_resets.append(
                {
                    "run_id": record.run_id,
                    "previous_status": record.status,
                    "reset_at": datetime.now(timezone.utc).isoformat(),
                }
            )
        chroma_store.attach(bus)

    return context


def create_server(
    settings: Optional[LaunchpadSettings] = None,
    *,
    context: LaunchpadContext | None = None,
    **context_kwargs: Any,
) -> FastMCP:
    """Instantiate the FastMCP server with baseline resources."""

    context = context or build_context(settings, **context_kwargs)
    settings = context.settings
    orchestrator = context.orchestrator
    chroma_store = context.chroma_store

    server = FastMCP(
        name="Launchpad MCP",
        version=__version__,
        instructions=(
            "Launchpad starts an external implementation CLI in a visible terminal "
            "and tracks its progress through the JSON file the CLI writes. Use "
            "launch_cli to start a run and cli_status or the status resource to follow it."
        ),
    )

    handles: ToolHandles = register_tools(
        server,
        orchestrator=orchestrator,
        scopes=context.scopes,
        settings=settings,
        chroma_store=chroma_store,
    )

    @server.resource(
        "resource://launchpad/status",
        name="launchpad_status",
        title="Launchpad MCP Status",
        description="Provides the current execution state and runtime status for the Launchpad MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(ctx: Context) -> str:
        """Return a JSON string summarizing the current run and server state."""

        try:
            preset_ids = sorted(context.scopes.load_all().keys())
            scope_error: str | None = None
        except ScopeLoadError as exc:
            preset_ids = []
            scope_error = str(exc)

        recent_runs: list[dict[str, Any]] = []
        storage_error = None
        if chroma_store is not None:
            try:
                recent_runs = [record.to_dict() for record in chroma_store.replay_runs()[-5:]]
            except Exception as exc:  # status must render even if the journal is broken
                storage_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "execution": status_snapshot(orchestrator),
            "cli": {
                "command_name": settings.cli_command,
                "configured_path": settings.cli_path,
                "install_command": settings.install_command,
                "run_store": str(settings.run_store),
                **context.cli_metadata,
            },
            "scopes": {
                "count": len(preset_ids),
                "ids": preset_ids,
                "overrides": [override.to_dict() for override in context.scopes.overrides],
                "error": scope_error,
            },
            "storage": {
                "chroma": context.chroma_metadata,
                "recent_runs": recent_runs,
                "startup_resets": context.startup_resets,
                "error": storage_error,
            },
            "request_id": getattr(ctx, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "launchpad_context", context)
    setattr(server, "orchestrator", orchestrator)
    setattr(server, "cli_metadata", context.cli_metadata)
    setattr(server, "chroma_store", chroma_store)
    setattr(server, "chroma_metadata", context.chroma_metadata)
    setattr(server, "startup_resets", context.startup_resets)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Launchpad MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logger.info(
        "Launching Launchpad MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "cli_available": getattr(server, "cli_metadata", {}).get("available"),
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
