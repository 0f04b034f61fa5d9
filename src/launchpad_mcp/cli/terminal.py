"""Terminal collaborator used to spawn the external process in a visible shell."""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Any, Mapping, Protocol, Sequence

logger = logging.getLogger(__name__)


class ProcessHandle(Protocol):
    """Handle to a spawned external process."""

    @property
    def pid(self) -> int | None:
        ...

    @property
    def returncode(self) -> int | None:
        ...

    def terminate(self) -> None:
        ...

    async def wait(self) -> int:
        ...


class TerminalCollaborator(Protocol):
    """Spawns a command inside an interactive, human-visible shell."""

    async def spawn_interactive(
        self,
        command: Sequence[str],
        cwd: str,
        env: Mapping[str, str],
    ) -> ProcessHandle:
        ...


class SubprocessHandle:
    """:class:`ProcessHandle` backed by an asyncio subprocess."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def terminate(self) -> None:
        if self._process.returncode is not None:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            logger.debug("Process already exited", extra={"pid": self._process.pid})

    async def wait(self) -> int:
        return await self._process.wait()


class SubprocessTerminal:
    """Run the command attached to the host's own terminal.

    By default the child inherits stdin/stdout/stderr so its output and prompts
    stay visible. ``wrapper`` prefixes the command, e.g. ``tmux new-window`` or
    ``x-terminal-emulator -e``, to open it in a separate window instead.
    A host that speaks a protocol over its own stdio passes ``stdin`` and
    ``output`` to keep the child off those streams.
    """

    def __init__(
        self,
        wrapper: Sequence[str] | str | None = None,
        *,
        stdin: Any = None,
        output: Any = None,
    ) -> None:
        if isinstance(wrapper, str):
            wrapper = shlex.split(wrapper)
        self._wrapper = tuple(wrapper or ())
        self._stdin = stdin
        self._output = output

    @property
    def wrapper(self) -> tuple[str, ...]:
        return self._wrapper

    async def spawn_interactive(
        self,
        command: Sequence[str],
        cwd: str,
        env: Mapping[str, str],
    ) -> SubprocessHandle:
        argv = [*self._wrapper, *command]
        logger.info("Spawning interactive command", extra={"command": shlex.join(argv), "cwd": cwd})
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=dict(env),
            stdin=self._stdin,
            stdout=self._output,
        )
        return SubprocessHandle(process)


__all__ = ["ProcessHandle", "SubprocessHandle", "SubprocessTerminal", "TerminalCollaborator"]
