"""Async probe runner for the external CLI."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ..errors import CliNotFoundError
from .retry import RetryPolicy
from .utils import sanitize_environment


@dataclass(slots=True, frozen=True)
class CliCommand:
    """A resolved, runnable command prefix and where it was found."""

    argv: tuple[str, ...]
    source: str

    @classmethod
    def for_path(cls, path: Path, *, source: str) -> "CliCommand":
        """Build a command for ``path``, prefixing an interpreter for script files."""

        suffix = path.suffix.lower()
        if suffix == ".js":
            return cls(argv=("node", str(path)), source=source)
        if suffix == ".py":
            return cls(argv=(sys.executable, str(path)), source=source)
        return cls(argv=(str(path),), source=source)

    def with_args(self, *args: str) -> tuple[str, ...]:
        return (*self.argv, *args)


@dataclass(slots=True)
class CliExecutionResult:
    """Holds the outcome of a CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CliRunner:
    """Execute short-lived CLI commands (version probes) asynchronously."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy(
            max_attempts=2,
            backoff_base=0.5,
            retry_on=(asyncio.TimeoutError,),
        )

    async def version(self, command: CliCommand) -> CliExecutionResult:
        return await self._invoke(*command.with_args("--version"))

    async def probe(self, command: CliCommand) -> bool:
        """Return True when ``command --version`` answers with exit code 0."""

        try:
            result = await self._retry_policy.run(
                lambda: self.version(command),
                status_of=lambda res: res.returncode,
                label="cli_version_probe",
            )
        except asyncio.TimeoutError:
            return False
        return result.ok

    async def _invoke(self, *args: str) -> CliExecutionResult:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
        except FileNotFoundError as exc:
            return CliExecutionResult(args=tuple(args), returncode=127, stdout="", stderr=str(exc))
        except PermissionError as exc:
            return CliExecutionResult(args=tuple(args), returncode=126, stdout="", stderr=str(exc))

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CliExecutionResult(args=tuple(args), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeCliRunner(CliRunner):
    """Test double that simulates CLI responses."""

    def __init__(self, responses: Iterable[CliExecutionResult] | None = None) -> None:  # type: ignore[override]
        super().__init__(retry_policy=RetryPolicy(max_attempts=1))
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []

    async def _invoke(self, *args: str) -> CliExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return CliExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


__all__ = [
    "CliCommand",
    "CliExecutionResult",
    "CliNotFoundError",
    "CliRunner",
    "FakeCliRunner",
]
