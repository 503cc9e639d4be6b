from __future__ import annotations

from collections import OrderedDict
from datetime import date
from typing import Any, ClassVar

from sqlmodel import Session, select

from taskflow.domain.models import (
    ActivityDayRead,
    ActivityEntryRead,
    ActivityFeedRead,
    TaskActivity,
    User,
)
from taskflow.domain.normalize import ensure_utc
from taskflow.domain.permissions import ROLE_HR, is_admin_role, normalize_role
from taskflow.infra.db import get_engine
from taskflow.services.task_numbers import TASK_NUMBER_PREFIX


class ActivityService:
    PAGE_SIZE: ClassVar[int] = 20

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def log_activity(
        self,
        actor_id: str,
        task_id: str,
        task_no: str,
        kind: str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> TaskActivity:
        row = TaskActivity(
            actor_id=actor_id,
            task_id=task_id,
            task_no=task_no,
            kind=kind,
            description=description,
            detail=dict(metadata or {}),
        )
        with self._session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    @staticmethod
    def _task_no_variants(task_no: str) -> list[str]:
        raw = task_no.strip()
        bare = raw.lstrip("#")
        if bare.upper().startswith(TASK_NUMBER_PREFIX.upper()):
            bare = bare[len(TASK_NUMBER_PREFIX) :]
        return list(dict.fromkeys([raw, bare, f"#{bare}", f"{TASK_NUMBER_PREFIX}{bare}"]))

    def list_activity(
        self,
        actor_id: str,
        role: str | None = None,
        task_no: str | None = None,
        page: int = 1,
    ) -> ActivityFeedRead:
        page = max(page, 1)
        sees_all = is_admin_role(role) or normalize_role(role) == ROLE_HR
        with self._session() as session:
            statement = select(TaskActivity)
            if task_no:
                statement = statement.where(TaskActivity.task_no.in_(self._task_no_variants(task_no)))
            elif not sees_all:
                statement = statement.where(TaskActivity.actor_id == actor_id)
            statement = (
                statement.order_by(TaskActivity.created_at.desc(), TaskActivity.id)
                .offset((page - 1) * self.PAGE_SIZE)
                .limit(self.PAGE_SIZE + 1)
            )
            rows = list(session.exec(statement).all())
            loadable = len(rows) > self.PAGE_SIZE
            rows = rows[: self.PAGE_SIZE]

            actor_ids = {row.actor_id for row in rows}
            names: dict[str, str] = {}
            if actor_ids:
                users = session.exec(select(User).where(User.id.in_(actor_ids))).all()
                names = {user.id: user.name for user in users}

        days: OrderedDict[date, list[ActivityEntryRead]] = OrderedDict()
        for row in rows:
            ts = ensure_utc(row.created_at)
            files = row.detail.get("files")
            days.setdefault(ts.date(), []).append(
                ActivityEntryRead(
                    kind=row.kind,
                    ts=ts,
                    task_no=row.task_no,
                    actor_id=row.actor_id,
                    actor_name=names.get(row.actor_id),
                    description=row.description,
                    status=row.detail.get("status"),
                    files=list(files) if isinstance(files, list) else [],
                    assignee=row.detail.get("assignee_name"),
                )
            )
        return ActivityFeedRead(
            data=[ActivityDayRead(day=day, entries=entries) for day, entries in days.items()],
            loadable=loadable,
        )
