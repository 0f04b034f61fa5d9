"""Synchronous typed publish/subscribe hub."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Literal

from .models import PAYLOAD_TYPES, EventPayload, EventType, ExecutionEvent

logger = logging.getLogger(__name__)

WILDCARD: Literal["*"] = "*"

EventHandler = Callable[[ExecutionEvent], Any]


@dataclass(slots=True, frozen=True)
class Subscription:
    """Token returned by :meth:`EventBus.on`; pass it to :meth:`EventBus.off`."""

    id: int
    event_type: EventType | Literal["*"]
    handler: EventHandler


class EventBus:
    """Deliver execution events to subscribers.

    Handlers run synchronously inside :meth:`emit`, in registration order.
    A failing handler is logged and skipped; delivery continues with the rest.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._subscriptions: list[Subscription] = []
        self._ids = itertools.count(1)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def on(self, event_type: EventType | Literal["*"], handler: EventHandler) -> Subscription:
        if event_type != WILDCARD and not isinstance(event_type, EventType):
            event_type = EventType(event_type)
        subscription = Subscription(id=next(self._ids), event_type=event_type, handler=handler)
        self._subscriptions.append(subscription)
        return subscription

    def off(self, subscription: Subscription) -> bool:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return False
        return True

    def emit(
        self,
        event_type: EventType,
        payload: EventPayload,
        source: str,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> ExecutionEvent:
        expected = PAYLOAD_TYPES[event_type]
        if not isinstance(payload, expected):
            raise TypeError(
                f"{event_type.value} expects {expected.__name__}, got {type(payload).__name__}"
            )

        event = ExecutionEvent(
            type=event_type,
            payload=payload,
            source=source,
            timestamp=self._clock(),
            metadata=metadata or {},
        )
        logger.debug("Event emitted: %s from %s", event_type.value, source)

        # Snapshot so handlers may subscribe or unsubscribe during delivery.
        for subscription in list(self._subscriptions):
            if subscription.event_type != WILDCARD and subscription.event_type is not event_type:
                continue
            try:
                subscription.handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed",
                    extra={"event_type": event_type.value, "source": source, "subscription": subscription.id},
                )
        return event

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


__all__ = ["EventBus", "EventHandler", "Subscription", "WILDCARD"]
