"""Interfaces of the host-side collaborators consulted by the launcher."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)


class AuthCollaborator(Protocol):
    """Supplies the credential handed to the external process."""

    async def get_credential(self) -> str | None:
        ...


class Prompter(Protocol):
    """Asks the human a question; returns the chosen option or None if dismissed."""

    async def choose(self, message: str, options: Sequence[str]) -> str | None:
        ...


class StaticCredentialProvider:
    """Returns a credential fixed at construction, typically from settings."""

    def __init__(self, credential: str | None) -> None:
        self._credential = credential or None

    async def get_credential(self) -> str | None:
        return self._credential


class NonInteractivePrompter:
    """Prompter for headless hosts: every question is dismissed."""

    async def choose(self, message: str, options: Sequence[str]) -> str | None:
        logger.info("Dismissed prompt in non-interactive mode", extra={"prompt": message, "options": list(options)})
        return None


__all__ = ["AuthCollaborator", "NonInteractivePrompter", "Prompter", "StaticCredentialProvider"]
