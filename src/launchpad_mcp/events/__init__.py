"""Execution event bus and typed payloads."""

from .bus import WILDCARD, EventBus, EventHandler, Subscription
from .models import (
    PAYLOAD_TYPES,
    CliCompleted,
    CliError,
    CliProgress,
    CliStarted,
    CliStopped,
    EventPayload,
    EventType,
    ExecutionEvent,
    StateChanged,
)

__all__ = [
    "CliCompleted",
    "CliError",
    "CliProgress",
    "CliStarted",
    "CliStopped",
    "EventBus",
    "EventHandler",
    "EventPayload",
    "EventType",
    "ExecutionEvent",
    "PAYLOAD_TYPES",
    "StateChanged",
    "Subscription",
    "WILDCARD",
]
