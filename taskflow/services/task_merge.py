from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from functools import cmp_to_key
from typing import Any, Literal

from taskflow.domain.models import TaskRead
from taskflow.domain.normalize import ensure_utc

SortOrder = Literal["asc", "desc"]


@dataclass(frozen=True)
class SortField:
    """Where a sort key lives: a task column or a relation path, and the read attribute."""

    attribute: str
    column: str | None = None
    relation: str | None = None


_DEFAULT_SORT = SortField(attribute="created_time", column="created_time")

_SORT_FIELDS: dict[str, SortField] = {
    "created_time": _DEFAULT_SORT,
    "task_no": SortField(attribute="task_no", column="task_no"),
    "title": SortField(attribute="title", column="title"),
    "deadline": SortField(attribute="deadline", column="deadline"),
    "priority": SortField(attribute="priority", column="priority"),
    "status": SortField(attribute="status", column="status"),
    "id": SortField(attribute="id", column="id"),
    "updated_at": SortField(attribute="updated_at", column="updated_at"),
    "project_name": SortField(attribute="project_name", relation="project.name"),
    "project_no": SortField(attribute="project_no", relation="project.no"),
    "assignee_name": SortField(attribute="assignee_name", relation="assignee.name"),
    "creator_name": SortField(attribute="creator_name", relation="creator.name"),
    "target_team_name": SortField(attribute="target_team_name", relation="target_team.name"),
    "target_group_name": SortField(attribute="target_group_name", relation="target_group.name"),
    "worker_name": SortField(attribute="worker_name", relation="worker.name"),
}

_SORT_ALIASES: dict[str, str] = {
    "createdtime": "created_time",
    "taskno": "task_no",
    "tasktitle": "title",
    "taskstatus": "status",
    "updatedat": "updated_at",
    "createdat": "created_time",
    "projectname": "project_name",
    "projectno": "project_no",
    "assignee": "assignee_name",
    "assigneename": "assignee_name",
    "creator": "creator_name",
    "creatorname": "creator_name",
    "targetteam": "target_team_name",
    "targetteamname": "target_team_name",
    "targetgroup": "target_group_name",
    "targetgroupname": "target_group_name",
    "workingby": "worker_name",
    "workername": "worker_name",
}


def sort_field_for(sort_by: str | None, completed_only: bool = False) -> SortField:
    """Resolve an API sort name; completion time only sorts the completed store."""
    key = (sort_by or "").strip()
    normalized = key.lower().replace("_", "")
    if normalized == "completetime":
        if completed_only:
            return SortField(attribute="complete_time", column="complete_time")
        return _DEFAULT_SORT
    if key in _SORT_FIELDS:
        return _SORT_FIELDS[key]
    alias = _SORT_ALIASES.get(normalized)
    if alias is not None:
        return _SORT_FIELDS[alias]
    return _DEFAULT_SORT


def compare_values(left: Any, right: Any) -> int:
    """Ascending comparison of two non-null sort values.

    Strings compare by code point, the order both stores apply under a binary collation.
    """
    if isinstance(left, datetime) and isinstance(right, datetime):
        a, b = ensure_utc(left), ensure_utc(right)
    elif isinstance(left, str) and isinstance(right, str):
        a, b = str(left), str(right)
    else:
        a, b = left, right
    if a == b:
        return 0
    return -1 if a < b else 1


def compare_tasks(left: TaskRead, right: TaskRead, attribute: str, sort_order: SortOrder) -> int:
    a = getattr(left, attribute, None)
    b = getattr(right, attribute, None)
    if a is None and b is None:
        result = 0
    # Nulls sort last in both directions.
    elif a is None:
        return 1
    elif b is None:
        return -1
    else:
        result = compare_values(a, b)
        result = result if sort_order == "asc" else -result
    if result:
        return result
    # ties fall back to ascending id, like the store queries
    return compare_values(left.id, right.id)


def sort_tasks(rows: Sequence[TaskRead], attribute: str, sort_order: SortOrder) -> list[TaskRead]:
    return sorted(
        rows,
        key=cmp_to_key(lambda left, right: compare_tasks(left, right, attribute, sort_order)),
    )


def merge_page(
    pending: Sequence[TaskRead],
    completed: Sequence[TaskRead],
    sort_by: str | None,
    sort_order: SortOrder,
    skip: int,
    limit: int,
) -> list[TaskRead]:
    """Merge the ``skip + limit`` heads of both stores and cut the requested window."""
    field = sort_field_for(sort_by)
    merged = sort_tasks([*pending, *completed], field.attribute, sort_order)
    return merged[skip : skip + limit]
