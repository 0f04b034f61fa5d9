"""Launchpad MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from launchpad_mcp.cli import CliResolver, CliRunner
from launchpad_mcp.config import LaunchpadSettings
from launchpad_mcp.errors import CliNotFoundError, ProgressParseSkipped
from launchpad_mcp.execution import parse_progress
from launchpad_mcp.storage import ChromaStore, ChromaUnavailableError


def load_store(settings: LaunchpadSettings) -> ChromaStore:
    try:
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
        return store
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def build_resolver(settings: LaunchpadSettings) -> CliResolver:
    return CliResolver(
        runner=CliRunner(timeout=settings.probe_timeout),
        command_name=settings.cli_command,
        bundled_path=settings.bundled_cli_path,
        workspace_relpath=settings.workspace_cli_path,
        configured_path=settings.cli_path,
    )


def cmd_runs(args: argparse.Namespace) -> None:
    settings = LaunchpadSettings()
    store = load_store(settings)
    records = store.replay_runs()
    if args.status:
        records = [record for record in records if record.status == args.status]
    if args.json:
        print(json.dumps([record.to_dict() for record in records], indent=2))
    else:
        for record in records:
            print(f"{record.run_id} [{record.status}] {record.progress_percent:.0f}% -> {record.project_path}")


def cmd_events(args: argparse.Namespace) -> None:
    settings = LaunchpadSettings()
    store = load_store(settings)
    events = store.fetch_run_events(args.run_id)
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]
    payload = [
        {
            "event_id": event.id,
            "event_type": event.event_type,
            "status": event.metadata.get("status"),
            "timestamp": event.timestamp.isoformat(),
            "document": json.loads(event.document),
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def cmd_progress(args: argparse.Namespace) -> None:
    settings = LaunchpadSettings()
    path = Path(args.path) if args.path else settings.progress_dir / f"{args.scope_id}.json"
    if not path.exists():
        print(json.dumps({"path": str(path), "exists": False}, indent=2))
        return
    try:
        descriptor = parse_progress(path.read_bytes())
    except ProgressParseSkipped as exc:
        print(json.dumps({"path": str(path), "exists": True, "parsed": False, "reason": str(exc)}, indent=2))
        raise SystemExit(2)
    payload = {
        "path": str(path),
        "exists": True,
        "parsed": True,
        "mapped_status": descriptor.mapped_status.value,
        "descriptor": descriptor.model_dump(by_alias=True),
    }
    print(json.dumps(payload, indent=2))


def cmd_resolve(args: argparse.Namespace) -> None:
    settings = LaunchpadSettings()
    resolver = build_resolver(settings)
    project = Path(args.project).expanduser() if args.project else None
    result: dict[str, object] = {"command": None, "source": None, "error": None}
    try:
        command = asyncio.run(resolver.resolve(project, interactive=False))
        result.update({"command": list(command.argv), "source": command.source})
    except CliNotFoundError as exc:
        result["error"] = str(exc)
    result["attempts"] = [
        {"source": attempt.source, "candidate": attempt.candidate, "ok": attempt.ok, "reason": attempt.reason}
        for attempt in resolver.attempts
    ]
    print(json.dumps(result, indent=2))
    if result["error"]:
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Launchpad MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_runs = sub.add_parser("runs", help="List replayed runs from the journal")
    p_runs.add_argument("--json", action="store_true", help="Output JSON")
    p_runs.add_argument("--status", help="Only show runs whose latest status matches")
    p_runs.set_defaults(func=cmd_runs)

    p_events = sub.add_parser("events", help="List journaled events for one run")
    p_events.add_argument("run_id")
    p_events.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N events",
    )
    p_events.set_defaults(func=cmd_events)

    p_progress = sub.add_parser("progress", help="Parse a progress file the way the watcher does")
    p_progress.add_argument("scope_id")
    p_progress.add_argument("--path", help="Read this file instead of <run-store>/progress/<scope_id>.json")
    p_progress.set_defaults(func=cmd_progress)

    p_resolve = sub.add_parser("resolve", help="Run the CLI resolution chain without prompting")
    p_resolve.add_argument("--project", help="Project directory to search for a workspace copy")
    p_resolve.set_defaults(func=cmd_resolve)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
