"""Tool registration for Launchpad MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..config import LaunchpadSettings
from ..errors import CliNotFoundError, InvalidProjectPathError, InvalidTransitionError, LaunchError
from ..execution import LaunchOrchestrator, project_status
from ..models import LaunchRequest, ScopeItem
from ..scopes import ScopeLoader, ScopeLoadError
from ..storage import ChromaStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    launch_cli: Any
    stop_cli: Any
    pause_cli: Any
    resume_cli: Any
    reset_cli_status: Any
    cli_status: Any
    list_scopes: Any
    run_history: Any


def status_snapshot(orchestrator: LaunchOrchestrator) -> dict[str, Any]:
    """Return the state, its projection, and the tracked run as plain data."""

    state = orchestrator.get_current_state()
    handle = orchestrator.handle
    return {
        "state": state.to_dict(),
        "display": project_status(state).to_dict(),
        "run": handle.to_dict() if handle is not None else None,
    }


def register_tools(
    server: FastMCP,
    *,
    orchestrator: LaunchOrchestrator,
    scopes: ScopeLoader,
    settings: LaunchpadSettings,
    chroma_store: ChromaStore | None,
) -> ToolHandles:
    """Register Launchpad's MCP tools on the server."""

    def _build_request(
        project_path: str | None,
        items: list[dict[str, Any]] | None,
        scope_id: str | None,
    ) -> LaunchRequest:
        if scope_id:
            try:
                preset = scopes.get(scope_id)
            except ScopeLoadError as exc:
                raise ValueError(str(exc)) from exc
            request = preset.to_request(project_path)
            if items:
                request = request.model_copy(update={"items": tuple(ScopeItem.model_validate(item) for item in items)})
            return request
        if not project_path:
            raise ValueError("Either scope_id or project_path is required")
        return LaunchRequest(
            project_path=project_path,
            items=tuple(ScopeItem.model_validate(item) for item in (items or [])),
        )

    async def _launch_cli(
        project_path: str | None = None,
        items: list[dict[str, Any]] | None = None,
        scope_id: str | None = None,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Launch the CLI for a scope preset or an inline list of items."""

        request = _build_request(project_path, items, scope_id)
        try:
            launched = await orchestrator.launch(request, force=force)
        except InvalidProjectPathError as exc:
            raise ValueError(str(exc)) from exc
        except CliNotFoundError as exc:
            _emit_log(context, "warning", "CLI not found", extra={"install_command": settings.install_command})
            raise RuntimeError(str(exc)) from exc
        except LaunchError as exc:
            raise RuntimeError(str(exc)) from exc

        snapshot = status_snapshot(orchestrator)
        if not launched:
            _emit_log(context, "info", "Launch declined", extra={"run_id": snapshot["state"]["run_id"]})
            return {
                "launched": False,
                "reason": "A run is already active; pass force=true to reset it and launch again.",
                **snapshot,
            }

        _emit_log(
            context,
            "info",
            "Launched CLI",
            extra={"run_id": snapshot["state"]["run_id"], "scope_id": scope_id, "item_count": len(request.items)},
        )
        return {"launched": True, **snapshot}

    def _stop_cli(context: Context | None = None) -> dict[str, Any]:
        run_id = orchestrator.get_current_state().run_id
        stopped = orchestrator.stop()
        if stopped:
            _emit_log(context, "info", "Stopped CLI", extra={"run_id": run_id})
        return {"stopped": stopped, **status_snapshot(orchestrator)}

    def _pause_cli(context: Context | None = None) -> dict[str, Any]:
        try:
            state = orchestrator.pause()
        except InvalidTransitionError as exc:
            raise ValueError(str(exc)) from exc
        _emit_log(context, "info", "Paused CLI tracking", extra={"run_id": state.run_id})
        return status_snapshot(orchestrator)

    def _resume_cli(context: Context | None = None) -> dict[str, Any]:
        try:
            state = orchestrator.resume()
        except InvalidTransitionError as exc:
            raise ValueError(str(exc)) from exc
        _emit_log(context, "info", "Resumed CLI tracking", extra={"run_id": state.run_id})
        return status_snapshot(orchestrator)

    def _reset_cli_status(context: Context | None = None) -> dict[str, Any]:
        reset = orchestrator.reset_status()
        _emit_log(context, "info", "Reset CLI status", extra={"reset": reset})
        return {"reset": reset, **status_snapshot(orchestrator)}

    def _cli_status(context: Context | None = None) -> dict[str, Any]:
        snapshot = status_snapshot(orchestrator)
        _emit_log(context, "debug", "CLI status", extra={"status": snapshot["state"]["status"]})
        return snapshot

    def _list_scopes(context: Context | None = None) -> list[dict[str, Any]]:
        try:
            presets = scopes.load_all()
        except ScopeLoadError as exc:
            raise ValueError(str(exc)) from exc
        _emit_log(context, "debug", "Listed scope presets", extra={"count": len(presets)})
        return [
            {
                "id": preset.id,
                "title": preset.title,
                "description": preset.description,
                "project_path": preset.project_path,
                "items": [item.model_dump() for item in preset.items],
                "metadata": preset.metadata,
                "source": preset.source,
            }
            for preset in presets.values()
        ]

    def _run_history(
        run_id: str | None = None,
        limit: int = 20,
        context: Context | None = None,
    ) -> dict[str, Any]:
        if chroma_store is None:
            raise RuntimeError("Run journal is unavailable; install the persistence extras and check CHROMA_PERSIST_PATH")
        if limit < 1:
            raise ValueError("limit must be >= 1")

        if run_id:
            events = chroma_store.fetch_run_events(run_id)
            if not events:
                raise ValueError(f"Run '{run_id}' not found")
            _emit_log(context, "debug", "Fetched run events", extra={"run_id": run_id, "count": len(events)})
            return {
                "run_id": run_id,
                "events": [
                    {
                        "event_type": event.event_type,
                        "timestamp": event.timestamp.isoformat(),
                        "document": event.document,
                        "metadata": event.metadata,
                    }
                    for event in events[-limit:]
                ],
            }

        runs = chroma_store.replay_runs()
        return {"runs": [record.to_dict() for record in runs[-limit:]]}

    tool_launch = server.tool(
        name="launch_cli",
        description="Launch the external CLI for a scope preset or inline items and start tracking its progress.",
    )(_launch_cli)

    tool_stop = server.tool(
        name="stop_cli",
        description="Terminate the tracked CLI process and return the status to idle.",
    )(_stop_cli)

    tool_pause = server.tool(
        name="pause_cli",
        description="Suspend progress tracking for the running CLI without terminating it.",
    )(_pause_cli)

    tool_resume = server.tool(
        name="resume_cli",
        description="Resume progress tracking for a paused CLI run.",
    )(_resume_cli)

    tool_reset = server.tool(
        name="reset_cli_status",
        description="Force the execution status back to idle, e.g. after the CLI exited without reporting.",
    )(_reset_cli_status)

    tool_status = server.tool(
        name="cli_status",
        description="Return the current execution state and its status-bar projection.",
    )(_cli_status)

    tool_scopes = server.tool(
        name="list_scopes",
        description="List the scope presets available for launch_cli.",
    )(_list_scopes)

    tool_history = server.tool(
        name="run_history",
        description="Summarize journaled runs, or list the events of one run.",
    )(_run_history)

    return ToolHandles(
        launch_cli=tool_launch,
        stop_cli=tool_stop,
        pause_cli=tool_pause,
        resume_cli=tool_resume,
        reset_cli_status=tool_reset,
        cli_status=tool_status,
        list_scopes=tool_scopes,
        run_history=tool_history,
    )


__all__ = ["register_tools", "status_snapshot", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
