"""Environment helpers for external CLI processes."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

ENV_PROJECT_PATH = "LAUNCHPAD_PROJECT_PATH"
ENV_SCOPE_ID = "LAUNCHPAD_SCOPE_ID"
ENV_SCOPE_PATH = "LAUNCHPAD_SCOPE_PATH"
ENV_PROGRESS_PATH = "LAUNCHPAD_PROGRESS_PATH"
ENV_DEBUG = "LAUNCHPAD_DEBUG"
ENV_API_KEY = "LAUNCHPAD_API_KEY"


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def build_run_environment(
    *,
    project_path: str,
    scope_id: str,
    scope_file_path: str,
    progress_file_path: str,
    debug: bool = False,
    credential: str | None = None,
) -> dict[str, str]:
    """Return the variables handed to the external process for one run."""

    env = {
        ENV_PROJECT_PATH: project_path,
        ENV_SCOPE_ID: scope_id,
        ENV_SCOPE_PATH: scope_file_path,
        ENV_PROGRESS_PATH: progress_file_path,
        ENV_DEBUG: "true" if debug else "false",
    }
    if credential:
        env[ENV_API_KEY] = credential
    return env


__all__ = [
    "ENV_API_KEY",
    "ENV_DEBUG",
    "ENV_PROGRESS_PATH",
    "ENV_PROJECT_PATH",
    "ENV_SCOPE_ID",
    "ENV_SCOPE_PATH",
    "build_run_environment",
    "sanitize_environment",
]
