"""Dual-trigger watcher for the externally-written progress file.

Two triggers feed one :meth:`ProgressFileWatcher.tick`:

* a watchdog observer on the file's parent directory, filtered to the file
  name, whose callbacks are marshalled onto the asyncio loop;
* an asyncio poll task that re-reads the file every ``poll_interval`` seconds,
  covering platforms and filesystems where directory notifications are
  unreliable, and files that do not exist yet when watching starts.

Both may fire for the same write. Ticks re-derive everything from the file's
current content and skip content that was already published.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import ExternalProcessReportedFailure, ProgressParseSkipped
from ..events import CliError, CliProgress, EventBus, EventType
from ..models import ExecutionStatus, ProgressDescriptor, clamp_percent

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0
_OBSERVER_JOIN_TIMEOUT = 2.0
_RELEVANT_EVENT_TYPES = {"created", "modified", "moved", "closed"}


def parse_progress(content: bytes | str) -> ProgressDescriptor:
    """Parse progress file content, raising :class:`ProgressParseSkipped` on bad input."""

    try:
        return ProgressDescriptor.model_validate_json(content)
    except ValidationError as exc:
        raise ProgressParseSkipped(f"Unparseable progress content: {exc.error_count()} error(s)") from exc


class _ProgressFileHandler(FileSystemEventHandler):
    """Forwards directory events that concern exactly one file name."""

    def __init__(self, filename: str, callback: Callable[[], None]) -> None:
        super().__init__()
        self._filename = filename
        self._callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELEVANT_EVENT_TYPES:
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if raw and os.path.basename(os.fsdecode(raw)) == self._filename:
                self._callback()
                return


class ProgressFileWatcher:
    """Detect new progress content and publish it on the event bus."""

    def __init__(
        self,
        progress_path: Path,
        bus: EventBus,
        *,
        run_id: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        observer_factory: Callable[[], Any] = Observer,
        source: str = "ProgressFileWatcher",
    ) -> None:
        self._progress_path = Path(progress_path)
        self._bus = bus
        self._run_id = run_id
        self._poll_interval = poll_interval
        self._observer_factory = observer_factory
        self._source = source
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Any | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._active = False
        self._last_content: bytes | None = None
        self.read_count = 0

    @property
    def progress_path(self) -> Path:
        return self._progress_path

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def active(self) -> bool:
        return self._active

    @property
    def os_watch_enabled(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Arm both triggers. Must be called from within the running event loop."""

        if self._active:
            return
        self._loop = asyncio.get_running_loop()
        self._progress_path.parent.mkdir(parents=True, exist_ok=True)
        self._last_content = None
        self._active = True
        self._observer = self._start_observer()
        self._poll_task = self._loop.create_task(self._poll(), name=f"progress-poll:{self._run_id}")
        logger.debug(
            "Watching progress file",
            extra={"run_id": self._run_id, "path": str(self._progress_path), "os_watch": self._observer is not None},
        )

    def stop(self) -> bool:
        """Release the directory watch and the poll task. Safe to call repeatedly."""

        observer, self._observer = self._observer, None
        task, self._poll_task = self._poll_task, None
        was_active = self._active
        self._active = False

        if task is not None and not task.done():
            task.cancel()
        if observer is not None:
            observer.stop()
            self._join_observer(observer)

        released = was_active or task is not None or observer is not None
        if released:
            logger.debug("Stopped watching progress file", extra={"run_id": self._run_id})
        return released

    def _join_observer(self, observer: Any) -> None:
        if observer is threading.current_thread():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            observer.join(timeout=_OBSERVER_JOIN_TIMEOUT)
            return
        # Joining may block until the timeout; keep it off the loop thread.
        loop.run_in_executor(None, observer.join, _OBSERVER_JOIN_TIMEOUT)

    def tick(self, trigger: str = "manual") -> ProgressDescriptor | None:
        """Read the file once and publish it if it holds new, parseable content."""

        if not self._active:
            return None
        try:
            content = self._progress_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.debug("Progress file unreadable", extra={"run_id": self._run_id, "error": str(exc)})
            return None
        self.read_count += 1

        if not content.strip() or content == self._last_content:
            return None
        try:
            descriptor = parse_progress(content)
        except ProgressParseSkipped as exc:
            logger.debug("Skipping progress tick", extra={"run_id": self._run_id, "trigger": trigger, "reason": str(exc)})
            return None

        self._last_content = content
        self._publish(descriptor, trigger)
        return descriptor

    def _publish(self, descriptor: ProgressDescriptor, trigger: str) -> None:
        status = descriptor.mapped_status
        self._bus.emit(
            EventType.CLI_PROGRESS,
            CliProgress(
                run_id=self._run_id,
                status=status,
                total_progress=clamp_percent(descriptor.completed),
                raw_status=descriptor.status or "",
                current_item=descriptor.current_task,
                message=descriptor.error,
                items=tuple(descriptor.items),
                trigger=trigger,
            ),
            self._source,
        )
        if status is ExecutionStatus.FAILED:
            self._bus.emit(
                EventType.CLI_ERROR,
                CliError(run_id=self._run_id, error=ExternalProcessReportedFailure(descriptor.error)),
                self._source,
            )

    def _start_observer(self) -> Any | None:
        handler = _ProgressFileHandler(self._progress_path.name, self._on_fs_event)
        observer = self._observer_factory()
        try:
            observer.schedule(handler, str(self._progress_path.parent), recursive=False)
            observer.start()
        except OSError as exc:
            logger.warning(
                "Directory watch unavailable; relying on polling",
                extra={"run_id": self._run_id, "error": str(exc)},
            )
            return None
        return observer

    def _on_fs_event(self) -> None:
        # Runs on the observer thread.
        loop = self._loop
        if not self._active or loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._tick_from_watch)
        except RuntimeError:
            logger.debug("Event loop closed before watch callback", extra={"run_id": self._run_id})

    def _tick_from_watch(self) -> None:
        self.tick("watch")

    async def _poll(self) -> None:
        while self._active:
            self.tick("poll")
            await asyncio.sleep(self._poll_interval)


__all__ = ["DEFAULT_POLL_INTERVAL", "ProgressFileWatcher", "parse_progress"]
