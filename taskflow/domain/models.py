from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from taskflow.domain.permissions import ROLE_EMPLOYEE
from taskflow.domain.state_machine import AcceptanceStatus, TaskLocation, TaskStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid4())


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=_new_id, primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_new_id, primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = Field(index=True)
    email: str = Field(index=True, unique=True)
    role: str = Field(default=ROLE_EMPLOYEE, index=True)
    password_hash: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Group(SQLModel, table=True):
    __tablename__ = "groups"

    id: str = Field(default_factory=_new_id, primary_key=True)
    group_no: str = Field(index=True, unique=True)
    group_name: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class GroupMember(SQLModel, table=True):
    __tablename__ = "group_members"

    group_id: str = Field(foreign_key="groups.id", primary_key=True, ondelete="CASCADE")
    user_id: str = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: str = Field(default_factory=_new_id, primary_key=True)
    project_no: str = Field(index=True, unique=True)
    project_name: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class TaskIdentity(SQLModel, table=True):
    __tablename__ = "task_identities"

    id: str = Field(default_factory=_new_id, primary_key=True)
    task_no: str = Field(index=True, unique=True)
    location: TaskLocation = Field(default=TaskLocation.PENDING, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class TaskFields(SQLModel):
    id: str = Field(primary_key=True, foreign_key="task_identities.id", ondelete="CASCADE")
    task_no: str = Field(index=True, unique=True)
    title: str = Field(index=True)
    priority: str = Field(default="Medium", index=True)
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)
    note: str | None = None
    deadline: datetime | None = Field(default=None, sa_type=DateTime(timezone=True), index=True)
    created_time: datetime = Field(default_factory=now_utc, sa_type=DateTime(timezone=True), index=True)
    updated_at: datetime = Field(default_factory=now_utc, sa_type=DateTime(timezone=True))
    edit_time: list[str] = Field(default_factory=list, sa_type=JSON)
    reminder_time: list[str] = Field(default_factory=list, sa_type=JSON)
    reviewed_time: list[str] = Field(default_factory=list, sa_type=JSON)
    document: str | None = None
    remark: str | None = None
    is_self_task: bool = Field(default=False, index=True)
    project_id: str | None = Field(default=None, foreign_key="projects.id", index=True)
    created_by: str = Field(foreign_key="users.id", index=True)
    assigned_to: str | None = Field(default=None, foreign_key="users.id", index=True)
    working_by: str | None = Field(default=None, foreign_key="users.id", index=True)
    target_team_id: str | None = Field(default=None, foreign_key="users.id", index=True)
    target_group_id: str | None = Field(default=None, foreign_key="groups.id", index=True)


class PendingTask(TaskFields, table=True):
    __tablename__ = "pending_tasks"


class CompletedTask(TaskFields, table=True):
    __tablename__ = "completed_tasks"

    complete_time: datetime | None = Field(default=None, sa_type=DateTime(timezone=True), index=True)
    completed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


TaskRow = PendingTask | CompletedTask

SHARED_TASK_FIELDS: tuple[str, ...] = tuple(TaskFields.model_fields)


class TaskAcceptance(SQLModel, table=True):
    __tablename__ = "task_acceptances"
    __table_args__ = (
        UniqueConstraint("task_id", "user_id", name="uq_task_acceptances_task_user"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    task_id: str = Field(foreign_key="task_identities.id", index=True, ondelete="CASCADE")
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    group_id: str | None = Field(default=None, foreign_key="groups.id", index=True)
    status: AcceptanceStatus = Field(default=AcceptanceStatus.PENDING, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    action_at: datetime | None = None


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: str = Field(default_factory=_new_id, primary_key=True)
    recipient_id: str = Field(index=True)
    title: str
    description: str
    type: str = Field(default="SYSTEM", index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    read_at: datetime | None = None


class TaskActivity(SQLModel, table=True):
    __tablename__ = "task_activities"

    id: str = Field(default_factory=_new_id, primary_key=True)
    actor_id: str = Field(index=True)
    task_id: str = Field(index=True)
    task_no: str = Field(index=True)
    kind: str = Field(index=True)
    description: str
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=_new_id)
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


def _none_if_blank(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in {"", "null", "undefined"}:
        return None
    return value


class TaskViewMode(StrEnum):
    ALL = "ALL"
    MY_PENDING = "MY_PENDING"
    MY_COMPLETED = "MY_COMPLETED"
    TEAM_PENDING = "TEAM_PENDING"
    TEAM_COMPLETED = "TEAM_COMPLETED"
    REVIEW_PENDING_BY_ME = "REVIEW_PENDING_BY_ME"
    REVIEW_PENDING_BY_TEAM = "REVIEW_PENDING_BY_TEAM"


class TaskCreate(BaseModel):
    title: str = PydanticField(min_length=1)
    priority: str = "Medium"
    note: str | None = None
    deadline: datetime | None = None
    reminder_time: list[datetime] = PydanticField(default_factory=list)
    document: str | None = None
    project_id: str | None = None
    assigned_to: str | None = None
    target_group_id: str | None = None
    target_team_id: str | None = None

    @field_validator("assigned_to", "target_group_id", "target_team_id", "project_id", mode="before")
    @classmethod
    def _blank_ids(cls, value: Any) -> Any:
        return _none_if_blank(value)


class TaskUpdate(BaseModel):
    title: str | None = None
    priority: str | None = None
    status: TaskStatus | None = None
    note: str | None = None
    deadline: datetime | None = None
    reminder_time: list[datetime] | None = None
    reviewed_time: list[datetime] | None = None
    document: str | None = None
    remark: str | None = None
    project_id: str | None = None
    assigned_to: str | None = None
    target_group_id: str | None = None
    target_team_id: str | None = None
    working_by: str | None = None

    @field_validator("assigned_to", "target_group_id", "target_team_id", "working_by", mode="before")
    @classmethod
    def _blank_ids(cls, value: Any) -> Any:
        return _none_if_blank(value)


class TaskRemarkRequest(BaseModel):
    remark: str | None = None


class AcceptanceUpdateRequest(BaseModel):
    status: AcceptanceStatus


class TaskFilter(BaseModel):
    search: str | None = None
    status: str | list[str] | None = None
    priority: str | list[str] | None = None
    project_id: str | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    working_by: str | None = None
    target_group_id: str | None = None
    target_team_id: str | None = None
    task_no: str | None = None
    task_title: str | None = None
    document: str | None = None
    remark: str | None = None
    created_time: date | None = None
    deadline: date | None = None
    complete_time: date | None = None
    view_mode: TaskViewMode | None = None


class Pagination(BaseModel):
    page: int = PydanticField(default=1, ge=1)
    limit: int = PydanticField(default=25, ge=1, le=500)
    sort_by: str = "created_time"
    sort_order: Literal["asc", "desc"] = "desc"

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class TaskRead(ORMReadModel):
    id: str
    task_no: str
    title: str
    priority: str
    status: TaskStatus
    location: TaskLocation = TaskLocation.PENDING
    note: str | None = None
    deadline: datetime | None = None
    created_time: datetime
    updated_at: datetime | None = None
    edit_time: list[datetime] = PydanticField(default_factory=list)
    reminder_time: list[datetime] = PydanticField(default_factory=list)
    reviewed_time: list[datetime] = PydanticField(default_factory=list)
    complete_time: datetime | None = None
    completed_at: datetime | None = None
    document: str | None = None
    remark: str | None = None
    is_self_task: bool = False
    project_id: str | None = None
    created_by: str
    assigned_to: str | None = None
    working_by: str | None = None
    target_team_id: str | None = None
    target_group_id: str | None = None
    project_name: str | None = None
    project_no: str | None = None
    creator_name: str | None = None
    assignee_name: str | None = None
    worker_name: str | None = None
    target_team_name: str | None = None
    target_group_name: str | None = None


class TaskPageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class TaskPage(BaseModel):
    data: list[TaskRead]
    meta: TaskPageMeta


class AcceptanceRead(ORMReadModel):
    id: str
    task_id: str
    user_id: str
    group_id: str | None
    status: AcceptanceStatus
    created_at: datetime
    action_at: datetime | None


class AcceptanceDecisionRead(BaseModel):
    acceptance: AcceptanceRead
    task: TaskRead


class PendingAcceptanceRead(AcceptanceRead):
    task_no: str
    task_title: str
    creator_name: str | None = None
    project_name: str | None = None
    group_name: str | None = None


class NotificationRead(ORMReadModel):
    id: str
    recipient_id: str
    title: str
    description: str
    type: str
    payload: dict[str, Any]
    is_read: bool
    created_at: datetime
    read_at: datetime | None


class ActivityEntryRead(BaseModel):
    kind: str
    ts: datetime
    task_no: str
    actor_id: str
    actor_name: str | None = None
    description: str
    status: str | None = None
    files: list[str] = PydanticField(default_factory=list)
    assignee: str | None = None


class ActivityDayRead(BaseModel):
    day: date
    entries: list[ActivityEntryRead]


class ActivityFeedRead(BaseModel):
    data: list[ActivityDayRead]
    loadable: bool


class UserCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    email: str = PydanticField(min_length=3)
    password: str = PydanticField(min_length=1)
    role: str = ROLE_EMPLOYEE
    is_active: bool = True


class UserRead(ORMReadModel):
    id: str
    name: str
    email: str
    role: str
    is_active: bool
    created_at: datetime


class GroupCreate(BaseModel):
    group_no: str = PydanticField(min_length=1)
    group_name: str = PydanticField(min_length=1)
    member_ids: list[str] = PydanticField(default_factory=list)


class GroupRead(ORMReadModel):
    id: str
    group_no: str
    group_name: str
    created_at: datetime


class ProjectCreate(BaseModel):
    project_no: str = PydanticField(min_length=1)
    project_name: str = PydanticField(min_length=1)


class ProjectRead(ORMReadModel):
    id: str
    project_no: str
    project_name: str
    created_at: datetime


class DevLoginRequest(BaseModel):
    email: str
    password: str


class BootstrapAdminRequest(BaseModel):
    name: str
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    role: str
