"""Configuration management for Launchpad MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import os
import tempfile
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _default_run_store() -> Path:
    return Path(tempfile.gettempdir()) / "launchpad"


class LaunchpadSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    run_store: Path = Field(default_factory=_default_run_store, validation_alias="LAUNCHPAD_RUN_STORE")
    cli_command: str = Field(default="launchpad-cli", validation_alias="LAUNCHPAD_CLI_COMMAND")
    cli_path: str | None = Field(default=None, validation_alias="LAUNCHPAD_CLI_PATH")
    bundled_cli_path: Path | None = Field(default=None, validation_alias="LAUNCHPAD_BUNDLED_CLI")
    workspace_cli_path: Path = Field(
        default=Path("launchpad-cli/bin/launchpad-cli"), validation_alias="LAUNCHPAD_WORKSPACE_CLI"
    )
    install_command: str = Field(
        default="pipx install launchpad-cli", validation_alias="LAUNCHPAD_INSTALL_COMMAND"
    )
    poll_interval: float = Field(default=3.0, validation_alias="LAUNCHPAD_POLL_INTERVAL")
    probe_timeout: float = Field(default=10.0, validation_alias="LAUNCHPAD_PROBE_TIMEOUT")
    retry_attempts: int = Field(default=3, validation_alias="LAUNCHPAD_RETRY_ATTEMPTS")
    retry_backoff: float = Field(default=1.0, validation_alias="LAUNCHPAD_RETRY_BACKOFF")
    terminal_wrapper: str | None = Field(default=None, validation_alias="LAUNCHPAD_TERMINAL_WRAPPER")
    debug: bool = Field(default=False, validation_alias="LAUNCHPAD_DEBUG")
    api_key: str | None = Field(default=None, validation_alias="LAUNCHPAD_API_KEY")
    scope_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("scopes"),), validation_alias="LAUNCHPAD_SCOPE_PATHS"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="LAUNCHPAD_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "LAUNCHPAD_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("scope_paths", mode="before")
    @classmethod
    def _parse_scope_paths(cls, value):
        if value is None or value == "":
            return (Path("scopes"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("scopes"),)
        raise TypeError("LAUNCHPAD_SCOPE_PATHS must be a list of paths or a path-separated string")

    @field_validator("poll_interval", "probe_timeout")
    @classmethod
    def _validate_positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Intervals and timeouts must be > 0 seconds")
        return value

    @field_validator("retry_attempts")
    @classmethod
    def _validate_retry_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("LAUNCHPAD_RETRY_ATTEMPTS must be >= 1")
        return value

    @field_validator("retry_backoff")
    @classmethod
    def _validate_retry_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("LAUNCHPAD_RETRY_BACKOFF must be >= 0")
        return value

    @property
    def scopes_dir(self) -> Path:
        return self.run_store / "scopes"

    @property
    def progress_dir(self) -> Path:
        return self.run_store / "progress"


@lru_cache(maxsize=1)
def get_settings() -> LaunchpadSettings:
    """Return cached settings instance."""

    settings = LaunchpadSettings()
    settings.run_store = settings.run_store.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.scope_paths = tuple(path.expanduser().resolve() for path in settings.scope_paths)
    if settings.bundled_cli_path is not None:
        settings.bundled_cli_path = settings.bundled_cli_path.expanduser().resolve()
    return settings


__all__ = ["LaunchpadSettings", "get_settings"]
