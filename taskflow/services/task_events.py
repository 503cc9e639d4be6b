from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Union

import structlog

from taskflow.services.activity_service import ActivityService
from taskflow.services.notification_service import NotificationService

ACTIVITY_TASK_CREATED = "TASK_CREATED"
ACTIVITY_TASK_ASSIGNED = "TASK_ASSIGNED"
ACTIVITY_TASK_STATUS_CHANGE = "TASK_STATUS_CHANGE"
ACTIVITY_TASK_REMARK = "TASK_REMARK"
ACTIVITY_TASK_FILE_ADDED = "TASK_FILE_ADDED"
ACTIVITY_TASK_UPDATED = "TASK_UPDATED"

NOTIFICATION_TYPE_TASK = "TASK"

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Notify:
    recipient_id: str
    title: str
    description: str
    type: str = NOTIFICATION_TYPE_TASK
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Activity:
    actor_id: str
    task_id: str
    task_no: str
    kind: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)


TaskEvent = Union[Notify, Activity]


class TaskEventDispatcher:
    """Delivers lifecycle events; delivery failures are logged and dropped."""

    def __init__(
        self,
        notifications: NotificationService | None = None,
        activities: ActivityService | None = None,
    ) -> None:
        self._notifications = notifications or NotificationService()
        self._activities = activities or ActivityService()

    def dispatch(self, events: Iterable[TaskEvent]) -> int:
        delivered = 0
        for event in events:
            try:
                self._deliver(event)
            except Exception as exc:
                log.warning(
                    "task_event_delivery_failed",
                    event_kind=type(event).__name__,
                    task_id=event.metadata.get("task_id") if isinstance(event, Notify) else event.task_id,
                    error=str(exc),
                )
                continue
            delivered += 1
        return delivered

    def _deliver(self, event: TaskEvent) -> None:
        if isinstance(event, Notify):
            self._notifications.create_notification(
                event.recipient_id,
                event.title,
                event.description,
                type=event.type,
                metadata=event.metadata,
            )
            return
        self._activities.log_activity(
            event.actor_id,
            event.task_id,
            event.task_no,
            event.kind,
            event.description,
            event.metadata,
        )
