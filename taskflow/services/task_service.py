from __future__ import annotations

import math

import structlog
from sqlmodel import Session

from taskflow.domain.models import (
    AcceptanceDecisionRead,
    AcceptanceRead,
    ActivityFeedRead,
    Pagination,
    PendingAcceptanceRead,
    TaskCreate,
    TaskFilter,
    TaskPage,
    TaskPageMeta,
    TaskRead,
    TaskUpdate,
)
from taskflow.domain.state_machine import AcceptanceStatus, TaskLocation
from taskflow.infra import cache
from taskflow.infra.db import get_engine
from taskflow.infra.events import event_bus
from taskflow.services.activity_service import ActivityService
from taskflow.services.file_uploader import UploadedFile
from taskflow.services.task_errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    TaskError,
    ValidationError,
)
from taskflow.services.task_events import TaskEventDispatcher
from taskflow.services.task_lifecycle import TaskLifecycleEngine, TransitionResult
from taskflow.services.task_merge import merge_page, sort_field_for
from taskflow.services.visibility import StoreScope, build_task_query

__all__ = [
    "ConflictError",
    "ForbiddenError",
    "InvalidStateError",
    "NotFoundError",
    "TaskError",
    "TaskService",
    "ValidationError",
]

log = structlog.get_logger(__name__)


class TaskService:
    def __init__(
        self,
        engine: TaskLifecycleEngine | None = None,
        dispatcher: TaskEventDispatcher | None = None,
        activities: ActivityService | None = None,
    ) -> None:
        self._activities = activities or ActivityService()
        self._engine = engine or TaskLifecycleEngine()
        self._dispatcher = dispatcher or TaskEventDispatcher(activities=self._activities)

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _finish(self, result: TransitionResult, event_type: str) -> TaskRead:
        self._dispatcher.dispatch(result.events)
        cache.invalidate_cache()
        try:
            event_bus.publish_dict(
                event_type,
                {
                    "task_id": result.task.id,
                    "task_no": result.task.task_no,
                    "status": str(result.task.status),
                    "location": str(result.task.location),
                },
            )
        except Exception as exc:
            log.warning("task_event_publish_failed", event_type=event_type, task_id=result.task.id, error=str(exc))
        return result.task

    def create(
        self,
        payload: TaskCreate,
        actor_id: str,
        files: list[UploadedFile] | None = None,
    ) -> TaskRead:
        with self._session() as session:
            result = self._engine.create(session, payload, actor_id, files)
        return self._finish(result, "task.created")

    def find_all(
        self,
        pagination: Pagination,
        task_filter: TaskFilter,
        actor_id: str,
        role: str | None,
    ) -> TaskPage:
        store = self._engine.store
        skip, limit = pagination.skip, pagination.limit
        with self._session() as session:
            group_ids = self._engine.ledger.member_group_ids(session, actor_id)
            query = build_task_query(actor_id, role, task_filter, group_ids)
            sort = sort_field_for(pagination.sort_by, completed_only=query.scope == StoreScope.COMPLETED)

            if query.scope == StoreScope.MIXED:
                heads = {
                    location: store.query(
                        session, location, query.predicate, sort, pagination.sort_order, 0, skip + limit
                    )
                    for location in (TaskLocation.PENDING, TaskLocation.COMPLETED)
                }
                total = sum(
                    store.count(session, location, query.predicate)
                    for location in (TaskLocation.PENDING, TaskLocation.COMPLETED)
                )
                data = merge_page(
                    store.hydrate(session, heads[TaskLocation.PENDING]),
                    store.hydrate(session, heads[TaskLocation.COMPLETED]),
                    pagination.sort_by,
                    pagination.sort_order,
                    skip,
                    limit,
                )
            else:
                location = TaskLocation.COMPLETED if query.scope == StoreScope.COMPLETED else TaskLocation.PENDING
                rows = store.query(session, location, query.predicate, sort, pagination.sort_order, skip, limit)
                total = store.count(session, location, query.predicate)
                data = store.hydrate(session, rows)

        return TaskPage(
            data=data,
            meta=TaskPageMeta(
                total=total,
                page=pagination.page,
                limit=limit,
                total_pages=math.ceil(total / limit) if limit else 0,
            ),
        )

    def find_by_id(self, task_id: str) -> TaskRead:
        with self._session() as session:
            _, row = self._engine.store.find(session, task_id)
            return self._engine.store.hydrate_one(session, row)

    def update(
        self,
        task_id: str,
        payload: TaskUpdate,
        actor_id: str,
        role: str | None,
        files: list[UploadedFile] | None = None,
    ) -> TaskRead:
        with self._session() as session:
            result = self._engine.update(session, task_id, payload, actor_id, role, files)
        return self._finish(result, "task.updated")

    def submit_for_review(
        self,
        task_id: str,
        remark: str | None,
        actor_id: str,
        files: list[UploadedFile] | None = None,
    ) -> TaskRead:
        with self._session() as session:
            result = self._engine.submit_for_review(session, task_id, remark, actor_id, files)
        return self._finish(result, "task.review_submitted")

    def reject_task(
        self,
        task_id: str,
        remark: str | None,
        actor_id: str,
        files: list[UploadedFile] | None = None,
    ) -> TaskRead:
        with self._session() as session:
            result = self._engine.reject_task(session, task_id, remark, actor_id, files)
        return self._finish(result, "task.rejected")

    def finalize_completion(
        self,
        task_id: str,
        remark: str | None,
        actor_id: str,
        files: list[UploadedFile] | None = None,
    ) -> TaskRead:
        with self._session() as session:
            result = self._engine.finalize_completion(session, task_id, remark, actor_id, files)
        return self._finish(result, "task.completed")

    def revert_to_pending(self, task_id: str, actor_id: str) -> TaskRead:
        with self._session() as session:
            result = self._engine.revert_to_pending(session, task_id, actor_id)
        return self._finish(result, "task.reverted")

    def send_reminder(self, task_id: str, actor_id: str) -> TaskRead:
        with self._session() as session:
            result = self._engine.send_reminder(session, task_id, actor_id)
        return self._finish(result, "task.reminded")

    def update_acceptance_status(
        self,
        acceptance_id: str,
        status: AcceptanceStatus,
        actor_id: str,
    ) -> AcceptanceDecisionRead:
        with self._session() as session:
            result = self._engine.update_acceptance_status(session, acceptance_id, status, actor_id)
        task = self._finish(result, "task.acceptance_updated")
        return AcceptanceDecisionRead(
            acceptance=AcceptanceRead.model_validate(result.acceptance),
            task=task,
        )

    def get_pending_acceptances(self, actor_id: str) -> list[PendingAcceptanceRead]:
        with self._session() as session:
            return self._engine.ledger.pending_for(session, actor_id)

    def get_activity_logs(
        self,
        actor_id: str,
        role: str | None = None,
        task_no: str | None = None,
        page: int = 1,
    ) -> ActivityFeedRead:
        return self._activities.list_activity(actor_id, role=role, task_no=task_no, page=page)
