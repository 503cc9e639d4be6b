from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import and_, false, func, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import Session, select

from taskflow.domain.models import (
    SHARED_TASK_FIELDS,
    CompletedTask,
    Group,
    PendingTask,
    Project,
    TaskIdentity,
    TaskRead,
    TaskRow,
    User,
)
from taskflow.domain.predicates import (
    Always,
    And,
    Between,
    Contains,
    Equals,
    In,
    Not,
    Or,
    Predicate,
    StartsWith,
)
from taskflow.domain.state_machine import TaskLocation
from taskflow.services.task_errors import NotFoundError
from taskflow.services.task_merge import SortField, SortOrder

TaskModel = type[PendingTask] | type[CompletedTask]

# relation path -> (foreign key column on the task, target model, target column)
RELATION_TARGETS: dict[str, tuple[str, Any, str]] = {
    "project.name": ("project_id", Project, "project_name"),
    "project.no": ("project_id", Project, "project_no"),
    "assignee.name": ("assigned_to", User, "name"),
    "assignee.email": ("assigned_to", User, "email"),
    "creator.name": ("created_by", User, "name"),
    "creator.email": ("created_by", User, "email"),
    "worker.name": ("working_by", User, "name"),
    "target_team.name": ("target_team_id", User, "name"),
    "target_group.name": ("target_group_id", Group, "group_name"),
}


def model_for(location: TaskLocation) -> TaskModel:
    if location == TaskLocation.COMPLETED:
        return CompletedTask
    return PendingTask


def location_of(row: TaskRow) -> TaskLocation:
    if isinstance(row, CompletedTask):
        return TaskLocation.COMPLETED
    return TaskLocation.PENDING


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _leaf(column: Any, predicate: Predicate) -> ColumnElement[bool]:
    if isinstance(predicate, Equals):
        if predicate.value is None:
            return column.is_(None)
        return column == predicate.value
    if isinstance(predicate, In):
        return column.in_(list(predicate.values))
    if isinstance(predicate, Contains):
        return column.ilike(f"%{_escape_like(predicate.text)}%", escape="\\")
    if isinstance(predicate, StartsWith):
        return column.ilike(f"{_escape_like(predicate.text)}%", escape="\\")
    if isinstance(predicate, Between):
        return and_(column >= predicate.start, column < predicate.end)
    raise TypeError(f"unsupported predicate: {predicate!r}")


def compile_predicate(predicate: Predicate, model: TaskModel) -> ColumnElement[bool]:
    """Translate a predicate tree into a WHERE clause over one task table."""
    if isinstance(predicate, Always):
        return true()
    if isinstance(predicate, And):
        return and_(*(compile_predicate(item, model) for item in predicate.items))
    if isinstance(predicate, Or):
        return or_(*(compile_predicate(item, model) for item in predicate.items))
    if isinstance(predicate, Not):
        return not_(compile_predicate(predicate.item, model))

    field = predicate.field
    if field in RELATION_TARGETS:
        fk_name, target, column_name = RELATION_TARGETS[field]
        inner = _leaf(getattr(target, column_name), predicate)
        return getattr(model, fk_name).in_(select(target.id).where(inner))
    column = getattr(model, field, None)
    if column is None:
        # Column absent from this table, e.g. complete_time on pending rows.
        return false()
    return _leaf(column, predicate)


def order_expression(model: TaskModel, field: SortField) -> Any:
    if field.relation is not None:
        fk_name, target, column_name = RELATION_TARGETS[field.relation]
        return (
            select(getattr(target, column_name))
            .where(target.id == getattr(model, fk_name))
            .scalar_subquery()
        )
    column = getattr(model, field.column or "created_time", None)
    return column if column is not None else model.created_time


def _code_point_order(session: Session, expression: Any) -> Any:
    """Text sort keys use the C collation on PostgreSQL; sqlite already compares them as binary."""
    if session.get_bind().dialect.name != "postgresql":
        return expression
    try:
        python_type = expression.type.python_type
    except NotImplementedError:
        return expression
    return expression.collate("C") if python_type is str else expression


class TaskStore:
    def query(
        self,
        session: Session,
        location: TaskLocation,
        predicate: Predicate,
        sort: SortField,
        sort_order: SortOrder,
        skip: int,
        limit: int,
    ) -> list[TaskRow]:
        model = model_for(location)
        expression = _code_point_order(session, order_expression(model, sort))
        ordered = expression.asc() if sort_order == "asc" else expression.desc()
        statement = (
            select(model)
            .where(compile_predicate(predicate, model))
            .order_by(ordered.nulls_last(), _code_point_order(session, model.id))
            .offset(skip)
            .limit(limit)
        )
        return list(session.exec(statement).all())

    def count(self, session: Session, location: TaskLocation, predicate: Predicate) -> int:
        model = model_for(location)
        statement = select(func.count()).select_from(model).where(compile_predicate(predicate, model))
        return int(session.exec(statement).one())

    def get(self, session: Session, location: TaskLocation, task_id: str) -> TaskRow | None:
        return session.get(model_for(location), task_id)

    def find(self, session: Session, task_id: str) -> tuple[TaskLocation, TaskRow]:
        for location in (TaskLocation.PENDING, TaskLocation.COMPLETED):
            row = self.get(session, location, task_id)
            if row is not None:
                return location, row
        raise NotFoundError("task not found")

    def find_by_no(self, session: Session, task_no: str) -> tuple[TaskLocation, TaskRow] | None:
        for location in (TaskLocation.PENDING, TaskLocation.COMPLETED):
            model = model_for(location)
            row = session.exec(select(model).where(model.task_no == task_no)).first()
            if row is not None:
                return location, row
        return None

    def insert_pending(self, session: Session, row: PendingTask) -> PendingTask:
        session.add(TaskIdentity(id=row.id, task_no=row.task_no, location=TaskLocation.PENDING))
        session.flush()
        session.add(row)
        session.flush()
        return row

    def relocate(
        self,
        session: Session,
        task_id: str,
        source: TaskLocation,
        destination: TaskLocation,
        overrides: dict[str, Any] | None = None,
    ) -> TaskRow:
        """Move a task row between tables keeping its id and task_no. Caller commits."""
        row = self.get(session, source, task_id)
        if row is None:
            raise NotFoundError("task not found")
        data: dict[str, Any] = {}
        for name in SHARED_TASK_FIELDS:
            value = getattr(row, name)
            data[name] = list(value) if isinstance(value, list) else value
        data.update(overrides or {})

        moved = model_for(destination).model_validate(data)
        session.add(moved)
        session.flush()
        session.delete(row)
        identity = session.get(TaskIdentity, task_id)
        if identity is None:
            identity = TaskIdentity(id=task_id, task_no=moved.task_no, location=destination)
            session.add(identity)
        else:
            identity.location = destination
            session.add(identity)
        session.flush()
        return moved

    def reconcile(self, session: Session, task_id: str, destination: TaskLocation) -> TaskRow | None:
        """Finish an interrupted relocation: keep the destination row, drop the stale source row."""
        existing = self.get(session, destination, task_id)
        if existing is None:
            return None
        source = TaskLocation.PENDING if destination == TaskLocation.COMPLETED else TaskLocation.COMPLETED
        stale = self.get(session, source, task_id)
        if stale is not None:
            session.delete(stale)
        identity = session.get(TaskIdentity, task_id)
        if identity is not None and identity.location != destination:
            identity.location = destination
            session.add(identity)
        session.flush()
        return existing

    def hydrate(self, session: Session, rows: Sequence[TaskRow]) -> list[TaskRead]:
        user_ids: set[str] = set()
        project_ids: set[str] = set()
        group_ids: set[str] = set()
        for row in rows:
            user_ids.update(
                item
                for item in (row.created_by, row.assigned_to, row.working_by, row.target_team_id)
                if item
            )
            if row.project_id:
                project_ids.add(row.project_id)
            if row.target_group_id:
                group_ids.add(row.target_group_id)

        users = _by_id(session, User, user_ids)
        projects = _by_id(session, Project, project_ids)
        groups = _by_id(session, Group, group_ids)

        result: list[TaskRead] = []
        for row in rows:
            payload = row.model_dump()
            project = projects.get(row.project_id or "")
            group = groups.get(row.target_group_id or "")
            payload.update(
                location=location_of(row),
                project_name=project.project_name if project else None,
                project_no=project.project_no if project else None,
                creator_name=_name(users, row.created_by),
                assignee_name=_name(users, row.assigned_to),
                worker_name=_name(users, row.working_by),
                target_team_name=_name(users, row.target_team_id),
                target_group_name=group.group_name if group else None,
            )
            result.append(TaskRead.model_validate(payload))
        return result

    def hydrate_one(self, session: Session, row: TaskRow) -> TaskRead:
        return self.hydrate(session, [row])[0]


def _by_id(session: Session, model: Any, ids: Iterable[str]) -> dict[str, Any]:
    wanted = list(ids)
    if not wanted:
        return {}
    rows = session.exec(select(model).where(model.id.in_(wanted))).all()
    return {row.id: row for row in rows}


def _name(users: dict[str, User], user_id: str | None) -> str | None:
    if not user_id:
        return None
    user = users.get(user_id)
    return user.name if user else None
