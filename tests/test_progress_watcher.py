from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path

import pytest
from watchdog.events import DirModifiedEvent, FileModifiedEvent, FileMovedEvent

from launchpad_mcp.errors import ProgressParseSkipped
from launchpad_mcp.events import EventBus, EventType
from launchpad_mcp.execution import ProgressFileWatcher, parse_progress
from launchpad_mcp.execution.watcher import _ProgressFileHandler
from launchpad_mcp.models import ExecutionStatus


class FakeObserver:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.scheduled: list[tuple[object, str, bool]] = []
        self.started = False
        self.stop_calls = 0
        self.join_calls = 0
        self.join_threads: list[threading.Thread] = []

    def schedule(self, handler, path, recursive=False):
        if self.fail:
            raise OSError("inotify watch limit reached")
        self.scheduled.append((handler, path, recursive))

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stop_calls += 1

    def join(self, timeout=None) -> None:
        self.join_calls += 1
        self.join_threads.append(threading.current_thread())


def _make_watcher(tmp_path: Path, *, poll_interval: float = 60.0, fail: bool = False):
    bus = EventBus()
    events = []
    bus.on("*", events.append)
    observers: list[FakeObserver] = []

    def factory() -> FakeObserver:
        observer = FakeObserver(fail=fail)
        observers.append(observer)
        return observer

    path = tmp_path / "progress" / "scope-1.json"
    watcher = ProgressFileWatcher(
        path,
        bus,
        run_id="scope-1",
        poll_interval=poll_interval,
        observer_factory=factory,
    )
    return watcher, path, events, observers


def test_tick_publishes_progress(tmp_path: Path) -> None:
    watcher, path, events, _ = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        path.write_text(json.dumps({"status": "in-progress", "completed": 42}), encoding="utf-8")
        descriptor = watcher.tick("manual")
        watcher.stop()
        return descriptor

    descriptor = asyncio.run(scenario())

    assert descriptor is not None
    assert [event.type for event in events] == [EventType.CLI_PROGRESS]
    payload = events[0].payload
    assert payload.total_progress == 42
    assert payload.status is ExecutionStatus.RUNNING
    assert payload.run_id == "scope-1"
    assert payload.trigger == "manual"


def test_start_creates_parent_directory(tmp_path: Path) -> None:
    watcher, path, _, observers = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        assert watcher.active
        assert watcher.os_watch_enabled
        watcher.stop()

    asyncio.run(scenario())

    assert path.parent.is_dir()
    assert observers[0].started
    assert observers[0].scheduled[0][1] == str(path.parent)


def test_duplicate_content_is_published_once(tmp_path: Path) -> None:
    watcher, path, events, _ = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        path.write_text('{"status": "in-progress", "completed": 10}', encoding="utf-8")
        watcher.tick("watch")
        watcher.tick("poll")
        path.write_text('{"status": "in-progress", "completed": 20}', encoding="utf-8")
        watcher.tick("poll")
        watcher.stop()

    asyncio.run(scenario())

    assert [event.payload.total_progress for event in events] == [10, 20]
    assert watcher.read_count == 3


@pytest.mark.parametrize(
    "content",
    [
        b"{",
        b"not json at all",
        b'{"status": "in-progress", "completed": 4',
        b"\xff\xfe\x00garbage",
        b"[1, 2, 3]",
        b'{"completed": "most of it"}',
        b"null",
    ],
)
def test_malformed_content_is_skipped(tmp_path: Path, content: bytes) -> None:
    watcher, path, events, _ = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        path.write_bytes(content)
        result = watcher.tick("poll")
        watcher.stop()
        return result

    assert asyncio.run(scenario()) is None
    assert events == []
    assert watcher.read_count == 1


def test_absent_and_blank_files_are_no_ops(tmp_path: Path) -> None:
    watcher, path, events, _ = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        assert watcher.tick("poll") is None
        path.write_text("   \n", encoding="utf-8")
        assert watcher.tick("poll") is None
        watcher.stop()

    asyncio.run(scenario())

    assert events == []
    assert watcher.read_count == 1


@pytest.mark.parametrize(("raw", "expected"), [("1e999", 100.0), ("-1e999", 0.0), ("250", 100.0), ("-3", 0.0)])
def test_published_progress_is_clamped(tmp_path: Path, raw: str, expected: float) -> None:
    watcher, path, events, _ = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        path.write_text('{"status": "in-progress", "completed": ' + raw + "}", encoding="utf-8")
        watcher.tick("poll")
        watcher.stop()

    asyncio.run(scenario())

    assert events[0].payload.total_progress == expected


def test_failed_status_publishes_error(tmp_path: Path) -> None:
    watcher, path, events, _ = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        path.write_text(
            json.dumps({"status": "failed", "completed": 60, "error": "npm test exited with 1"}),
            encoding="utf-8",
        )
        watcher.tick("poll")
        watcher.stop()

    asyncio.run(scenario())

    assert [event.type for event in events] == [EventType.CLI_PROGRESS, EventType.CLI_ERROR]
    assert events[0].payload.status is ExecutionStatus.FAILED
    assert events[1].payload.error.error_text == "npm test exited with 1"


def test_stop_is_idempotent_and_releases_once(tmp_path: Path) -> None:
    watcher, _, _, observers = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        task = watcher._poll_task
        results = [watcher.stop(), watcher.stop(), watcher.stop()]
        await asyncio.sleep(0)
        return task, results

    task, results = asyncio.run(scenario())

    assert results == [True, False, False]
    assert task is not None and task.cancelled()
    assert observers[0].stop_calls == 1
    assert observers[0].join_calls == 1
    assert not watcher.active


def test_stop_joins_observer_off_the_loop_thread(tmp_path: Path) -> None:
    watcher, _, _, observers = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        watcher.stop()
        return threading.current_thread()

    loop_thread = asyncio.run(scenario())

    assert observers[0].join_calls == 1
    assert observers[0].join_threads[0] is not loop_thread


def test_stop_without_running_loop_joins_inline(tmp_path: Path) -> None:
    watcher, _, _, observers = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()

    asyncio.run(scenario())
    assert watcher.stop() is True

    assert observers[0].join_threads == [threading.current_thread()]


def test_callbacks_after_stop_are_ignored(tmp_path: Path) -> None:
    watcher, path, events, _ = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        watcher.stop()
        path.write_text('{"status": "in-progress", "completed": 5}', encoding="utf-8")
        watcher._on_fs_event()
        await asyncio.sleep(0)
        return watcher.tick("poll")

    assert asyncio.run(scenario()) is None
    assert events == []
    assert watcher.read_count == 0


def test_watch_failure_falls_back_to_polling(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    watcher, path, events, _ = _make_watcher(tmp_path, poll_interval=0.01, fail=True)
    path.parent.mkdir(parents=True)
    path.write_text('{"status": "started", "completed": 0}', encoding="utf-8")

    async def scenario():
        watcher.start()
        assert not watcher.os_watch_enabled
        for _ in range(100):
            if events:
                break
            await asyncio.sleep(0.01)
        watcher.stop()

    with caplog.at_level(logging.WARNING, logger="launchpad_mcp.execution.watcher"):
        asyncio.run(scenario())

    assert events and events[0].payload.trigger == "poll"
    assert any("relying on polling" in record.getMessage() for record in caplog.records)


def test_watch_callback_from_observer_thread_runs_on_loop(tmp_path: Path) -> None:
    watcher, path, events, observers = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        await asyncio.sleep(0)
        handler = observers[0].scheduled[0][0]
        path.write_text('{"status": "in-progress", "completed": 33}', encoding="utf-8")
        thread = threading.Thread(target=handler.dispatch, args=(FileModifiedEvent(str(path)),))
        thread.start()
        thread.join()
        for _ in range(100):
            if events:
                break
            await asyncio.sleep(0.01)
        watcher.stop()

    asyncio.run(scenario())

    assert len(events) == 1
    assert events[0].payload.trigger == "watch"
    assert events[0].payload.total_progress == 33


def test_handler_filters_to_exact_filename(tmp_path: Path) -> None:
    calls: list[int] = []
    handler = _ProgressFileHandler("scope-1.json", lambda: calls.append(1))

    handler.dispatch(FileModifiedEvent(str(tmp_path / "scope-2.json")))
    handler.dispatch(DirModifiedEvent(str(tmp_path)))
    assert calls == []

    handler.dispatch(FileModifiedEvent(str(tmp_path / "scope-1.json")))
    handler.dispatch(FileMovedEvent(str(tmp_path / "scope-1.json.tmp"), str(tmp_path / "scope-1.json")))
    assert calls == [1, 1]


def test_restart_rearms_and_republishes(tmp_path: Path) -> None:
    watcher, path, events, observers = _make_watcher(tmp_path)

    async def scenario():
        watcher.start()
        path.write_text('{"status": "in-progress", "completed": 50}', encoding="utf-8")
        watcher.tick("poll")
        watcher.stop()
        watcher.start()
        watcher.tick("poll")
        watcher.stop()

    asyncio.run(scenario())

    assert len(observers) == 2
    assert [event.payload.total_progress for event in events] == [50, 50]


def test_real_observer_detects_write(tmp_path: Path) -> None:
    bus = EventBus()
    events = []
    bus.on(EventType.CLI_PROGRESS, events.append)
    path = tmp_path / "progress" / "scope-live.json"
    watcher = ProgressFileWatcher(path, bus, run_id="scope-live", poll_interval=60.0)

    async def scenario():
        watcher.start()
        if not watcher.os_watch_enabled:
            watcher.stop()
            pytest.skip("directory notifications unavailable on this platform")
        await asyncio.sleep(0.1)
        path.write_text('{"status": "in-progress", "completed": 12}', encoding="utf-8")
        for _ in range(200):
            if events:
                break
            await asyncio.sleep(0.01)
        watcher.stop()

    asyncio.run(scenario())

    assert len(events) == 1
    assert events[0].payload.trigger == "watch"


def test_parse_progress_reads_aliases() -> None:
    descriptor = parse_progress(
        '{"status": "in-progress", "completed": 70, "currentTask": "item-2", "extra": true,'
        ' "items": [{"id": "item-1", "progress": 100}]}'
    )

    assert descriptor.current_task == "item-2"
    assert descriptor.items[0].progress == 100
    assert descriptor.mapped_status is ExecutionStatus.RUNNING

    with pytest.raises(ProgressParseSkipped):
        parse_progress("{")
