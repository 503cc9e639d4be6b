from __future__ import annotations

from enum import StrEnum


class TaskStatus(StrEnum):
    PENDING = "Pending"
    REVIEW_PENDING = "ReviewPending"
    COMPLETED = "Completed"


class TaskLocation(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class AcceptanceStatus(StrEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


# ReviewPending -> ReviewPending is a follow-up remark on work already in review.
TASK_ALLOWED_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.REVIEW_PENDING},
    TaskStatus.REVIEW_PENDING: {
        TaskStatus.REVIEW_PENDING,
        TaskStatus.PENDING,
        TaskStatus.COMPLETED,
    },
    TaskStatus.COMPLETED: {TaskStatus.PENDING},
}


def can_task_transition(source: TaskStatus, target: TaskStatus) -> bool:
    return target in TASK_ALLOWED_TRANSITIONS.get(source, set())
