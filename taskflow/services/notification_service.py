from __future__ import annotations

from typing import Any

from sqlmodel import Session, select

from taskflow.domain.models import Notification, now_utc
from taskflow.infra.db import get_engine
from taskflow.infra.events import event_bus


class NotificationError(Exception):
    pass


class NotFoundError(NotificationError):
    pass


class NotificationService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_notification(
        self,
        recipient_id: str,
        title: str,
        description: str,
        type: str = "TASK",
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        row = Notification(
            recipient_id=recipient_id,
            title=title,
            description=description,
            type=type,
            payload=dict(metadata or {}),
        )
        with self._session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)

        event_bus.publish_dict(
            "notification.created",
            {
                "notification_id": row.id,
                "recipient_id": recipient_id,
                "type": type,
                "task_id": row.payload.get("task_id"),
            },
        )
        return row

    def list_for(self, recipient_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        with self._session() as session:
            statement = select(Notification).where(Notification.recipient_id == recipient_id)
            if unread_only:
                statement = statement.where(Notification.is_read.is_(False))
            statement = statement.order_by(Notification.created_at.desc()).limit(limit)
            return list(session.exec(statement).all())

    def mark_read(self, recipient_id: str, notification_id: str) -> Notification:
        with self._session() as session:
            row = session.get(Notification, notification_id)
            if row is None or row.recipient_id != recipient_id:
                raise NotFoundError("notification not found")
            if not row.is_read:
                row.is_read = True
                row.read_at = now_utc()
                session.add(row)
                session.commit()
                session.refresh(row)
            return row
