from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from enum import StrEnum

from taskflow.domain.models import TaskFilter, TaskViewMode
from taskflow.domain.normalize import is_code_like, is_uuid, split_values, title_case
from taskflow.domain.permissions import is_privileged_role
from taskflow.domain.predicates import (
    TRUE,
    Between,
    Contains,
    Equals,
    In,
    Not,
    Predicate,
    StartsWith,
    all_of,
    any_of,
    differs,
    is_null,
)
from taskflow.domain.state_machine import TaskStatus
from taskflow.services.task_errors import ValidationError


class StoreScope(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    MIXED = "MIXED"


@dataclass(frozen=True)
class TaskQuery:
    predicate: Predicate
    scope: StoreScope


PENDING_VIEW_MODES = frozenset(
    {
        TaskViewMode.MY_PENDING,
        TaskViewMode.TEAM_PENDING,
        TaskViewMode.REVIEW_PENDING_BY_ME,
        TaskViewMode.REVIEW_PENDING_BY_TEAM,
    }
)
COMPLETED_VIEW_MODES = frozenset({TaskViewMode.MY_COMPLETED, TaskViewMode.TEAM_COMPLETED})

_STATUS_ALIASES: dict[str, TaskStatus] = {}
for _status in TaskStatus:
    _STATUS_ALIASES[_status.value.casefold()] = _status
    _STATUS_ALIASES[_status.name.replace("_", "").casefold()] = _status


def parse_statuses(raw: str | Iterable[str] | None) -> list[TaskStatus]:
    statuses: list[TaskStatus] = []
    for item in split_values(raw):
        status = _STATUS_ALIASES.get(item.replace("_", "").replace(" ", "").casefold())
        if status is None:
            raise ValidationError(f"unknown task status: {item}")
        if status not in statuses:
            statuses.append(status)
    return statuses


def classify_scope(view_mode: TaskViewMode | None, statuses: list[TaskStatus]) -> StoreScope:
    if view_mode in COMPLETED_VIEW_MODES or (
        statuses and all(item == TaskStatus.COMPLETED for item in statuses)
    ):
        return StoreScope.COMPLETED
    if view_mode in PENDING_VIEW_MODES or (
        statuses and all(item != TaskStatus.COMPLETED for item in statuses)
    ):
        return StoreScope.PENDING
    return StoreScope.MIXED


def view_mode_clause(view_mode: TaskViewMode | None, actor_id: str) -> Predicate | None:
    """Clause replacing the default visibility rule, or ``None`` for ALL/unset."""
    if view_mode == TaskViewMode.MY_PENDING:
        return all_of(
            Equals("status", TaskStatus.PENDING),
            any_of(
                Equals("assigned_to", actor_id),
                all_of(is_null("assigned_to"), Equals("target_team_id", actor_id)),
            ),
        )
    if view_mode == TaskViewMode.TEAM_PENDING:
        return all_of(
            Equals("status", TaskStatus.PENDING),
            Equals("is_self_task", False),
            Equals("created_by", actor_id),
            differs("assigned_to", actor_id),
            differs("target_team_id", actor_id),
        )
    if view_mode == TaskViewMode.MY_COMPLETED:
        return Equals("working_by", actor_id)
    if view_mode == TaskViewMode.TEAM_COMPLETED:
        return all_of(
            Equals("created_by", actor_id),
            Equals("is_self_task", False),
            differs("working_by", actor_id),
        )
    if view_mode == TaskViewMode.REVIEW_PENDING_BY_ME:
        return all_of(
            Equals("status", TaskStatus.REVIEW_PENDING),
            Equals("created_by", actor_id),
        )
    if view_mode == TaskViewMode.REVIEW_PENDING_BY_TEAM:
        return all_of(
            Equals("status", TaskStatus.REVIEW_PENDING),
            Equals("working_by", actor_id),
            Equals("is_self_task", False),
            Not(Equals("created_by", actor_id)),
        )
    return None


def default_visibility(actor_id: str, member_group_ids: Iterable[str]) -> Predicate:
    clauses: list[Predicate] = [
        Equals("created_by", actor_id),
        Equals("assigned_to", actor_id),
        Equals("working_by", actor_id),
        Equals("target_team_id", actor_id),
    ]
    group_ids = tuple(sorted(set(member_group_ids)))
    if group_ids:
        clauses.append(all_of(is_null("assigned_to"), In("target_group_id", group_ids)))
    return any_of(*clauses)


def search_clause(text: str) -> Predicate:
    token = text.strip()
    if not token:
        return TRUE
    titled = title_case(token) or token
    clauses: list[Predicate] = [
        Contains("title", token),
        Contains("title", titled),
        Contains("task_no", token),
        Contains("note", token),
        Contains("remark", token),
        Contains("document", token),
        Contains("project.name", token),
        Contains("project.no", token),
        Contains("assignee.name", token),
        Contains("assignee.name", titled),
        Contains("assignee.email", token),
        Contains("creator.name", token),
        Contains("creator.name", titled),
        Contains("creator.email", token),
        Contains("target_team.name", token),
        Contains("target_group.name", token),
    ]
    if is_code_like(token):
        clauses.extend(
            [
                Equals("task_no", token),
                StartsWith("task_no", token),
                Equals("project.no", token),
                StartsWith("project.no", token),
            ]
        )
    return any_of(*clauses)


def _day_range(field: str, day: date) -> Predicate:
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return Between(field, start, start + timedelta(days=1))


def _person_clause(field: str, relation: str, value: str, *extra: Predicate) -> Predicate:
    if is_uuid(value):
        return Equals(field, value)
    return any_of(
        Contains(f"{relation}.name", value),
        Contains(f"{relation}.email", value),
        *extra,
    )


def filter_clauses(task_filter: TaskFilter) -> list[Predicate]:
    clauses: list[Predicate] = []
    if task_filter.project_id:
        if is_uuid(task_filter.project_id):
            clauses.append(Equals("project_id", task_filter.project_id))
        else:
            clauses.append(
                any_of(
                    Contains("project.name", task_filter.project_id),
                    Contains("project.no", task_filter.project_id),
                )
            )
    priorities = split_values(task_filter.priority)
    if priorities:
        clauses.append(In("priority", tuple(priorities)))
    if task_filter.assigned_to:
        clauses.append(
            _person_clause(
                "assigned_to",
                "assignee",
                task_filter.assigned_to,
                Contains("target_team.name", task_filter.assigned_to),
                Contains("target_group.name", task_filter.assigned_to),
            )
        )
    if task_filter.created_by:
        clauses.append(_person_clause("created_by", "creator", task_filter.created_by))
    if task_filter.working_by:
        if is_uuid(task_filter.working_by):
            clauses.append(Equals("working_by", task_filter.working_by))
        else:
            clauses.append(Contains("worker.name", task_filter.working_by))
    if task_filter.target_group_id:
        clauses.append(Equals("target_group_id", task_filter.target_group_id))
    if task_filter.target_team_id:
        clauses.append(Equals("target_team_id", task_filter.target_team_id))
    for field, text in (
        ("task_no", task_filter.task_no),
        ("title", task_filter.task_title),
        ("document", task_filter.document),
        ("remark", task_filter.remark),
    ):
        if text:
            clauses.append(Contains(field, text))
    for field, day in (
        ("created_time", task_filter.created_time),
        ("deadline", task_filter.deadline),
        ("complete_time", task_filter.complete_time),
    ):
        if day is not None:
            clauses.append(_day_range(field, day))
    if task_filter.search:
        clauses.append(search_clause(task_filter.search))
    return clauses


def build_task_query(
    actor_id: str,
    role: str | None,
    task_filter: TaskFilter,
    member_group_ids: Iterable[str] = (),
) -> TaskQuery:
    statuses = parse_statuses(task_filter.status)
    view_mode = task_filter.view_mode
    clauses = filter_clauses(task_filter)

    mode_clause = view_mode_clause(view_mode, actor_id)
    if mode_clause is not None:
        clauses.append(mode_clause)
    elif not is_privileged_role(role):
        clauses.append(default_visibility(actor_id, member_group_ids))

    if statuses:
        clauses.append(In("status", tuple(statuses)))

    return TaskQuery(predicate=all_of(*clauses), scope=classify_scope(view_mode, statuses))
