"""Retry policy with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableError(RuntimeError):
    """Raise from an operation to request another attempt."""


@dataclass(slots=True)
class RetryPolicy:
    """Retry an async operation on retryable statuses or errors.

    The delay before attempt ``n + 1`` is ``backoff_base * 2 ** (n - 1)`` seconds,
    so the default policy waits 1s, 2s before its second and third attempts.
    """

    max_attempts: int = 3
    retryable_statuses: frozenset[int] = frozenset()
    backoff_base: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (RetryableError,)
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.retryable_statuses = frozenset(self.retryable_statuses)

    def delay_for(self, attempt: int) -> float:
        return self.backoff_base * (2 ** (attempt - 1))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        status_of: Callable[[T], int | None] | None = None,
        label: str = "operation",
    ) -> T:
        """Run ``operation`` until it succeeds or attempts are exhausted.

        A result whose status is retryable is returned as-is after the last
        attempt; a retryable error is re-raised after the last attempt.
        """

        attempt = 1
        while True:
            try:
                result = await operation()
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    raise
                logger.info(
                    "Retrying after error",
                    extra={"label": label, "attempt": attempt, "max_attempts": self.max_attempts, "error": str(exc)},
                )
            else:
                status = status_of(result) if status_of is not None else None
                if status is None or status not in self.retryable_statuses or attempt >= self.max_attempts:
                    return result
                logger.info(
                    "Retrying after retryable status",
                    extra={"label": label, "attempt": attempt, "max_attempts": self.max_attempts, "status": status},
                )

            await self.sleep(self.delay_for(attempt))
            attempt += 1


__all__ = ["RetryPolicy", "RetryableError"]
