from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import or_, update
from sqlmodel import Session, select

from taskflow.domain.models import (
    Group,
    GroupMember,
    PendingAcceptanceRead,
    PendingTask,
    Project,
    TaskAcceptance,
    User,
    now_utc,
)
from taskflow.domain.state_machine import AcceptanceStatus, TaskStatus
from taskflow.services.task_errors import ConflictError


class AcceptanceLedger:
    """Per-member claims on tasks broadcast to a group."""

    def group_member_ids(self, session: Session, group_id: str) -> list[str]:
        rows = session.exec(
            select(GroupMember.user_id)
            .where(GroupMember.group_id == group_id)
            .order_by(GroupMember.created_at, GroupMember.user_id)
        ).all()
        return list(rows)

    def member_group_ids(self, session: Session, user_id: str) -> list[str]:
        return list(session.exec(select(GroupMember.group_id).where(GroupMember.user_id == user_id)).all())

    def open_claims(
        self,
        session: Session,
        task: PendingTask,
        member_ids: Iterable[str],
        exclude: str | None = None,
    ) -> list[TaskAcceptance]:
        existing = set(
            session.exec(select(TaskAcceptance.user_id).where(TaskAcceptance.task_id == task.id)).all()
        )
        created: list[TaskAcceptance] = []
        for user_id in member_ids:
            if user_id == exclude or user_id in existing:
                continue
            row = TaskAcceptance(
                task_id=task.id,
                user_id=user_id,
                group_id=task.target_group_id,
                status=AcceptanceStatus.PENDING,
            )
            session.add(row)
            existing.add(user_id)
            created.append(row)
        session.flush()
        return created

    def reopen_claims(
        self,
        session: Session,
        task_id: str,
        group_id: str,
        member_ids: Iterable[str],
    ) -> None:
        wanted = list(dict.fromkeys(member_ids))
        rows = session.exec(
            select(TaskAcceptance)
            .where(TaskAcceptance.task_id == task_id)
            .where(TaskAcceptance.user_id.in_(wanted))
        ).all()
        by_user = {row.user_id: row for row in rows}
        for user_id in wanted:
            row = by_user.get(user_id)
            if row is None:
                session.add(
                    TaskAcceptance(
                        task_id=task_id,
                        user_id=user_id,
                        group_id=group_id,
                        status=AcceptanceStatus.PENDING,
                    )
                )
                continue
            row.status = AcceptanceStatus.PENDING
            row.action_at = None
            session.add(row)
        session.flush()

    def get(self, session: Session, acceptance_id: str) -> TaskAcceptance | None:
        return session.get(TaskAcceptance, acceptance_id)

    def claim(self, session: Session, task_id: str, actor_id: str) -> None:
        """Assign the task to ``actor_id`` unless another member already holds it."""
        result = session.execute(
            update(PendingTask)
            .where(PendingTask.id == task_id)
            .where(or_(PendingTask.assigned_to.is_(None), PendingTask.assigned_to == actor_id))
            .values(
                assigned_to=actor_id,
                working_by=None,
                status=TaskStatus.PENDING,
                updated_at=now_utc(),
            )
        )
        if result.rowcount == 0:
            raise ConflictError("task already accepted by another group member")

    def release(self, session: Session, task_id: str, actor_id: str) -> bool:
        result = session.execute(
            update(PendingTask)
            .where(PendingTask.id == task_id)
            .where(PendingTask.assigned_to == actor_id)
            .values(
                assigned_to=None,
                working_by=None,
                status=TaskStatus.PENDING,
                updated_at=now_utc(),
            )
        )
        return bool(result.rowcount)

    def mark(self, session: Session, acceptance: TaskAcceptance, status: AcceptanceStatus) -> TaskAcceptance:
        acceptance.status = status
        acceptance.action_at = now_utc()
        session.add(acceptance)
        session.flush()
        return acceptance

    def reject_siblings(self, session: Session, task_id: str, acceptance_id: str) -> int:
        result = session.execute(
            update(TaskAcceptance)
            .where(TaskAcceptance.task_id == task_id)
            .where(TaskAcceptance.id != acceptance_id)
            .where(TaskAcceptance.status == AcceptanceStatus.PENDING)
            .values(status=AcceptanceStatus.REJECTED, action_at=now_utc())
        )
        return int(result.rowcount or 0)

    def pending_for(self, session: Session, user_id: str) -> list[PendingAcceptanceRead]:
        rows = session.exec(
            select(TaskAcceptance, PendingTask)
            .join(PendingTask, PendingTask.id == TaskAcceptance.task_id)
            .where(TaskAcceptance.user_id == user_id)
            .where(TaskAcceptance.status == AcceptanceStatus.PENDING)
            .order_by(TaskAcceptance.created_at.desc())
        ).all()
        result: list[PendingAcceptanceRead] = []
        for acceptance, task in rows:
            creator = session.get(User, task.created_by)
            project = session.get(Project, task.project_id) if task.project_id else None
            group = session.get(Group, acceptance.group_id) if acceptance.group_id else None
            payload = acceptance.model_dump()
            payload.update(
                task_no=task.task_no,
                task_title=task.title,
                creator_name=creator.name if creator else None,
                project_name=project.project_name if project else None,
                group_name=group.group_name if group else None,
            )
            result.append(PendingAcceptanceRead.model_validate(payload))
        return result
