from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.domain.models import EventEnvelope, EventRecord
from app.infra.db import get_engine

logger = logging.getLogger("app.events")

EventHandler = Callable[[EventEnvelope], None]


class EventBus:
    """In-process publish/subscribe for post-commit notifications.

    Publishing never raises: the business transaction has already committed
    by the time an event is published, so persistence and handler failures
    are logged and swallowed here.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def clear(self) -> None:
        self._subscribers.clear()

    def _persist(self, event: EventEnvelope) -> None:
        record = EventRecord(
            event_id=event.event_id,
            event_type=event.event_type,
            ts=event.ts,
            actor_id=event.actor_id,
            correlation_id=event.correlation_id,
            payload=event.payload,
        )
        with Session(get_engine()) as session:
            session.add(record)
            session.commit()

    def publish(self, event: EventEnvelope) -> None:
        try:
            self._persist(event)
        except SQLAlchemyError:
            logger.exception(
                "event_persist_failed",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )

        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_id": event.event_id,
                        "event_type": event.event_type,
                        "handler": getattr(handler, "__qualname__", repr(handler)),
                    },
                )

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
        correlation_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            actor_id=actor_id,
            correlation_id=correlation_id,
            payload=payload,
        )
        self.publish(event)
        return event


event_bus = EventBus()
