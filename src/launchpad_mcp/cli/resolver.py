"""Priority-ordered resolution of the external CLI executable."""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ..collaborators import Prompter
from ..errors import CliNotFoundError
from .runner import CliCommand, CliRunner
from .terminal import TerminalCollaborator
from .utils import sanitize_environment

logger = logging.getLogger(__name__)

INSTALL_OPTION = "Install"
CANCEL_OPTION = "Cancel"


@dataclass(slots=True)
class ResolutionAttempt:
    source: str
    candidate: str | None
    ok: bool
    reason: str


class CliInstaller:
    """Runs the install command in a visible terminal and waits for it to exit."""

    def __init__(self, terminal: TerminalCollaborator, install_command: str) -> None:
        self._terminal = terminal
        self._install_command = install_command

    @property
    def command(self) -> str:
        return self._install_command

    async def install(self) -> bool:
        argv = shlex.split(self._install_command)
        if not argv:
            return False
        logger.info("Installing CLI", extra={"command": self._install_command})
        handle = await self._terminal.spawn_interactive(argv, str(Path.home()), sanitize_environment())
        returncode = await handle.wait()
        if returncode != 0:
            logger.warning("CLI install command failed", extra={"returncode": returncode})
        return returncode == 0


class CliResolver:
    """Return the first usable CLI command from a fixed chain of candidates.

    Order: bundled copy, project tree, configured path, system PATH (version
    probe), offer to install then re-probe PATH, bundled copy again.
    """

    def __init__(
        self,
        *,
        runner: CliRunner,
        command_name: str,
        bundled_path: Path | None = None,
        workspace_relpath: Path | None = None,
        configured_path: str | Path | None = None,
        prompter: Prompter | None = None,
        installer: CliInstaller | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._runner = runner
        self._command_name = command_name
        self._bundled_path = Path(bundled_path) if bundled_path else None
        self._workspace_relpath = Path(workspace_relpath) if workspace_relpath else None
        self._configured_path = Path(configured_path) if configured_path else None
        self._prompter = prompter
        self._installer = installer
        self._which = which
        self.attempts: list[ResolutionAttempt] = []

    async def resolve(self, project_path: Path | None = None, *, interactive: bool = True) -> CliCommand:
        self.attempts = []

        command = self._check_file(self._bundled_path, "bundled")
        if command is not None:
            return command

        if project_path is not None and self._workspace_relpath is not None:
            command = self._check_file(Path(project_path) / self._workspace_relpath, "workspace")
            if command is not None:
                return command

        command = self._check_file(self._configured_path, "configured")
        if command is not None:
            return command

        command = await self._check_path()
        if command is not None:
            return command

        if interactive and await self._offer_install():
            command = await self._check_path(source="installed")
            if command is not None:
                return command

        command = self._check_file(self._bundled_path, "bundled_fallback")
        if command is not None:
            return command

        hint = f"Install it with `{self._installer.command}`" if self._installer else "Install it"
        raise CliNotFoundError(
            f"{self._command_name} was not found. {hint} or set LAUNCHPAD_CLI_PATH to an explicit executable."
        )

    def _check_file(self, path: Path | None, source: str) -> CliCommand | None:
        if path is None:
            return None
        if path.is_file():
            self.attempts.append(ResolutionAttempt(source, str(path), True, "exists"))
            logger.info("Using CLI", extra={"source": source, "path": str(path)})
            return CliCommand.for_path(path, source=source)
        self.attempts.append(ResolutionAttempt(source, str(path), False, "missing"))
        logger.debug("CLI candidate missing", extra={"source": source, "path": str(path)})
        return None

    async def _check_path(self, source: str = "path") -> CliCommand | None:
        found = self._which(self._command_name)
        if found is None:
            self.attempts.append(ResolutionAttempt(source, self._command_name, False, "not on PATH"))
            return None
        command = CliCommand(argv=(found,), source=source)
        if await self._runner.probe(command):
            self.attempts.append(ResolutionAttempt(source, found, True, "version probe ok"))
            logger.info("Using CLI", extra={"source": source, "path": found})
            return command
        self.attempts.append(ResolutionAttempt(source, found, False, "version probe failed"))
        return None

    async def _offer_install(self) -> bool:
        if self._prompter is None or self._installer is None:
            self.attempts.append(ResolutionAttempt("install", None, False, "no installer"))
            return False
        choice = await self._prompter.choose(
            f"{self._command_name} is not installed. Install it now?",
            [INSTALL_OPTION, CANCEL_OPTION],
        )
        if choice != INSTALL_OPTION:
            self.attempts.append(ResolutionAttempt("install", self._installer.command, False, "declined"))
            return False
        installed = await self._installer.install()
        self.attempts.append(
            ResolutionAttempt("install", self._installer.command, installed, "installed" if installed else "failed")
        )
        return installed


__all__ = ["CliInstaller", "CliResolver", "ResolutionAttempt", "INSTALL_OPTION", "CANCEL_OPTION"]
