from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from launchpad_mcp.cli import CliExecutionResult, CliInstaller, CliResolver, FakeCliRunner
from launchpad_mcp.cli.resolver import CANCEL_OPTION, INSTALL_OPTION
from launchpad_mcp.errors import CliNotFoundError


class StubPrompter:
    def __init__(self, answer: str | None) -> None:
        self.answer = answer
        self.questions: list[tuple[str, list[str]]] = []

    async def choose(self, message, options):
        self.questions.append((message, list(options)))
        return self.answer


class StubInstaller:
    command = "npm install -g launchpad-cli"

    def __init__(self, *, succeeds: bool = True, on_install=None) -> None:
        self.succeeds = succeeds
        self.on_install = on_install
        self.calls = 0

    async def install(self) -> bool:
        self.calls += 1
        if self.on_install is not None:
            self.on_install()
        return self.succeeds


class StubProcess:
    def __init__(self, returncode: int) -> None:
        self.pid = 77
        self.returncode = returncode

    def terminate(self) -> None:
        return None

    async def wait(self) -> int:
        return self.returncode


class StubTerminal:
    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.calls: list[list[str]] = []

    async def spawn_interactive(self, command, cwd, env):
        self.calls.append(list(command))
        return StubProcess(self.returncode)


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    return path


def _resolver(**kwargs) -> CliResolver:
    kwargs.setdefault("runner", FakeCliRunner())
    kwargs.setdefault("which", lambda name: None)
    return CliResolver(command_name="launchpad-cli", **kwargs)


def test_bundled_copy_wins(tmp_path: Path) -> None:
    bundled = _touch(tmp_path / "bundle" / "cli.js")
    configured = _touch(tmp_path / "configured" / "launchpad-cli")
    resolver = _resolver(bundled_path=bundled, configured_path=configured, which=lambda name: "/usr/bin/launchpad-cli")

    command = asyncio.run(resolver.resolve(tmp_path))

    assert command.source == "bundled"
    assert command.argv == ("node", str(bundled))
    assert [attempt.source for attempt in resolver.attempts] == ["bundled"]


def test_workspace_copy_precedes_configured(tmp_path: Path) -> None:
    project = tmp_path / "proj"
    workspace = _touch(project / "tools" / "launchpad-cli")
    configured = _touch(tmp_path / "configured" / "launchpad-cli")
    resolver = _resolver(
        bundled_path=tmp_path / "missing-bundle",
        workspace_relpath=Path("tools/launchpad-cli"),
        configured_path=configured,
    )

    command = asyncio.run(resolver.resolve(project))

    assert command.source == "workspace"
    assert command.argv == (str(workspace),)
    assert [(attempt.source, attempt.ok) for attempt in resolver.attempts] == [
        ("bundled", False),
        ("workspace", True),
    ]


def test_configured_path_used_without_project(tmp_path: Path) -> None:
    configured = _touch(tmp_path / "configured" / "launchpad-cli")
    resolver = _resolver(workspace_relpath=Path("tools/launchpad-cli"), configured_path=str(configured))

    command = asyncio.run(resolver.resolve())

    assert command.source == "configured"


def test_path_lookup_requires_version_probe() -> None:
    runner = FakeCliRunner()
    resolver = _resolver(runner=runner, which=lambda name: f"/usr/local/bin/{name}")

    command = asyncio.run(resolver.resolve())

    assert command.source == "path"
    assert command.argv == ("/usr/local/bin/launchpad-cli",)
    assert runner.invocations == [("/usr/local/bin/launchpad-cli", "--version")]


def test_failed_probe_falls_through_to_error() -> None:
    runner = FakeCliRunner(
        [CliExecutionResult(args=("launchpad-cli", "--version"), returncode=1, stdout="", stderr="")]
    )
    resolver = _resolver(runner=runner, which=lambda name: "/usr/bin/launchpad-cli")

    with pytest.raises(CliNotFoundError) as excinfo:
        asyncio.run(resolver.resolve(interactive=False))

    assert "LAUNCHPAD_CLI_PATH" in str(excinfo.value)
    assert [(attempt.source, attempt.reason) for attempt in resolver.attempts] == [
        ("path", "version probe failed"),
    ]


def test_install_accepted_then_path_reprobed() -> None:
    installed = {"done": False}
    installer = StubInstaller(on_install=lambda: installed.update(done=True))
    prompter = StubPrompter(INSTALL_OPTION)
    resolver = _resolver(
        prompter=prompter,
        installer=installer,
        which=lambda name: "/opt/bin/launchpad-cli" if installed["done"] else None,
    )

    command = asyncio.run(resolver.resolve())

    assert command.source == "installed"
    assert installer.calls == 1
    assert prompter.questions[0][1] == [INSTALL_OPTION, CANCEL_OPTION]


def test_install_declined_raises_with_hint() -> None:
    installer = StubInstaller()
    resolver = _resolver(prompter=StubPrompter(CANCEL_OPTION), installer=installer)

    with pytest.raises(CliNotFoundError) as excinfo:
        asyncio.run(resolver.resolve())

    assert installer.calls == 0
    assert "npm install -g launchpad-cli" in str(excinfo.value)
    assert resolver.attempts[-1].reason == "declined"


def test_non_interactive_never_prompts() -> None:
    prompter = StubPrompter(INSTALL_OPTION)
    resolver = _resolver(prompter=prompter, installer=StubInstaller())

    with pytest.raises(CliNotFoundError):
        asyncio.run(resolver.resolve(interactive=False))

    assert prompter.questions == []


def test_bundled_fallback_after_failed_install(tmp_path: Path) -> None:
    bundled = tmp_path / "bundle" / "launchpad-cli"

    def late_bundle() -> None:
        _touch(bundled)

    resolver = _resolver(
        bundled_path=bundled,
        prompter=StubPrompter(INSTALL_OPTION),
        installer=StubInstaller(succeeds=False, on_install=late_bundle),
    )

    command = asyncio.run(resolver.resolve())

    assert command.source == "bundled_fallback"


def test_installer_runs_command_in_terminal() -> None:
    terminal = StubTerminal(returncode=0)
    installer = CliInstaller(terminal, "npm install -g launchpad-cli")

    assert asyncio.run(installer.install()) is True
    assert terminal.calls == [["npm", "install", "-g", "launchpad-cli"]]


def test_installer_reports_failure_and_empty_command() -> None:
    assert asyncio.run(CliInstaller(StubTerminal(returncode=1), "npm install -g launchpad-cli").install()) is False
    assert asyncio.run(CliInstaller(StubTerminal(), "").install()) is False
