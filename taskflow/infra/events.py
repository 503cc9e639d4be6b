from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from typing import Any

import structlog
from sqlmodel import Session

from taskflow.domain.models import EventEnvelope, EventRecord
from taskflow.infra.context import get_actor_id
from taskflow.infra.db import engine

EventHandler = Callable[[EventEnvelope], None]

log = structlog.get_logger(__name__)


def _topics(event_type: str) -> list[str]:
    """``task.review.submitted`` -> exact type, then ``task.review.*``, ``task.*`` and ``*``."""
    parts = event_type.split(".")
    namespaces = [".".join(parts[:index]) + ".*" for index in range(len(parts) - 1, 0, -1)]
    return [event_type, *namespaces, "*"]


class EventBus:
    """Persists every envelope to the ``events`` table, then fans out to in-process subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def _persist(self, event: EventEnvelope, session: Session | None) -> None:
        record = EventRecord.model_validate(event.model_dump())
        if session is not None:
            session.add(record)
            return
        with Session(engine) as own_session:
            own_session.add(record)
            own_session.commit()

    def _deliver(self, event: EventEnvelope) -> None:
        for topic in _topics(event.event_type):
            for handler in list(self._subscribers.get(topic, [])):
                try:
                    handler(event)
                except Exception as exc:
                    log.warning(
                        "event_handler_failed",
                        event_type=event.event_type,
                        topic=topic,
                        event_id=event.event_id,
                        error=str(exc),
                    )

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        """Record the event; with a caller session the caller commits."""
        self._persist(event, session)
        self._deliver(event)

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        actor_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            actor_id=actor_id or get_actor_id(),
            payload=payload,
        )
        self.publish(event)
        return event


event_bus = EventBus()
