"""External CLI resolution, probing, and spawning utilities."""

from .resolver import CliInstaller, CliResolver, ResolutionAttempt
from .retry import RetryableError, RetryPolicy
from .runner import CliCommand, CliExecutionResult, CliNotFoundError, CliRunner, FakeCliRunner
from .terminal import ProcessHandle, SubprocessHandle, SubprocessTerminal, TerminalCollaborator

__all__ = [
    "CliCommand",
    "CliExecutionResult",
    "CliInstaller",
    "CliNotFoundError",
    "CliResolver",
    "CliRunner",
    "FakeCliRunner",
    "ProcessHandle",
    "ResolutionAttempt",
    "RetryPolicy",
    "RetryableError",
    "SubprocessHandle",
    "SubprocessTerminal",
    "TerminalCollaborator",
]
