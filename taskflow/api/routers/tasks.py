from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from taskflow.api.deps import get_current_claims
from taskflow.domain.models import (
    AcceptanceDecisionRead,
    AcceptanceUpdateRequest,
    ActivityFeedRead,
    Pagination,
    PendingAcceptanceRead,
    TaskCreate,
    TaskFilter,
    TaskPage,
    TaskRead,
    TaskRemarkRequest,
    TaskUpdate,
    TaskViewMode,
)
from taskflow.domain.permissions import claims_role
from taskflow.infra.audit import set_audit_context
from taskflow.services.task_service import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    TaskService,
    ValidationError,
)

router = APIRouter()


def get_task_service() -> TaskService:
    return TaskService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[TaskService, Depends(get_task_service)]


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, (InvalidStateError, ConflictError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


def _joined(values: list[str] | None) -> str | None:
    if not values:
        return None
    return ",".join(values)


def get_task_filter(
    search: str | None = None,
    status_: Annotated[list[str] | None, Query(alias="status")] = None,
    priority: Annotated[list[str] | None, Query()] = None,
    project_id: str | None = None,
    assigned_to: str | None = None,
    created_by: str | None = None,
    working_by: str | None = None,
    target_group_id: str | None = None,
    target_team_id: str | None = None,
    task_no: str | None = None,
    task_title: str | None = None,
    document: str | None = None,
    remark: str | None = None,
    created_time: date | None = None,
    deadline: date | None = None,
    complete_time: date | None = None,
    view_mode: TaskViewMode | None = None,
) -> TaskFilter:
    return TaskFilter(
        search=search,
        status=_joined(status_),
        priority=_joined(priority),
        project_id=project_id,
        assigned_to=assigned_to,
        created_by=created_by,
        working_by=working_by,
        target_group_id=target_group_id,
        target_team_id=target_team_id,
        task_no=task_no,
        task_title=task_title,
        document=document,
        remark=remark,
        created_time=created_time,
        deadline=deadline,
        complete_time=complete_time,
        view_mode=view_mode,
    )


def get_pagination(
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=500)] = 25,
    sort_by: str = "created_time",
    sort_order: Literal["asc", "desc"] = "desc",
) -> Pagination:
    return Pagination(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order)


@router.get("", response_model=TaskPage)
def list_tasks(
    claims: Claims,
    service: Service,
    task_filter: Annotated[TaskFilter, Depends(get_task_filter)],
    pagination: Annotated[Pagination, Depends(get_pagination)],
) -> TaskPage:
    try:
        return service.find_all(pagination, task_filter, claims["sub"], claims_role(claims))
    except ValidationError as exc:
        _handle_error(exc)
        raise


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(payload: TaskCreate, request: Request, claims: Claims, service: Service) -> TaskRead:
    try:
        task = service.create(payload, claims["sub"])
    except (NotFoundError, ForbiddenError, InvalidStateError, ConflictError, ValidationError) as exc:
        _handle_error(exc)
        raise
    set_audit_context(
        request,
        action="task.create",
        detail={"what": {"task_id": task.id, "task_no": task.task_no}},
    )
    return task


@router.get("/acceptances/pending", response_model=list[PendingAcceptanceRead])
def list_pending_acceptances(claims: Claims, service: Service) -> list[PendingAcceptanceRead]:
    return service.get_pending_acceptances(claims["sub"])


@router.patch("/acceptances/{acceptance_id}", response_model=AcceptanceDecisionRead)
def update_acceptance(
    acceptance_id: str,
    payload: AcceptanceUpdateRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> AcceptanceDecisionRead:
    try:
        decision = service.update_acceptance_status(acceptance_id, payload.status, claims["sub"])
    except (NotFoundError, ForbiddenError, InvalidStateError, ConflictError, ValidationError) as exc:
        set_audit_context(
            request,
            action="task.acceptance.update",
            detail={"what": {"acceptance_id": acceptance_id, "status": str(payload.status)}},
        )
        _handle_error(exc)
        raise
    set_audit_context(
        request,
        action="task.acceptance.update",
        detail={
            "what": {
                "acceptance_id": acceptance_id,
                "task_id": decision.task.id,
                "status": str(decision.acceptance.status),
            }
        },
    )
    return decision


@router.get("/logs", response_model=ActivityFeedRead)
def list_activity_logs(
    claims: Claims,
    service: Service,
    task_no: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
) -> ActivityFeedRead:
    return service.get_activity_logs(claims["sub"], role=claims_role(claims), task_no=task_no, page=page)


@router.get("/{task_id}", response_model=TaskRead)
def get_task(task_id: str, claims: Claims, service: Service) -> TaskRead:
    try:
        return service.find_by_id(task_id)
    except NotFoundError as exc:
        _handle_error(exc)
        raise


@router.patch("/{task_id}", response_model=TaskRead)
def update_task(
    task_id: str,
    payload: TaskUpdate,
    request: Request,
    claims: Claims,
    service: Service,
) -> TaskRead:
    try:
        task = service.update(task_id, payload, claims["sub"], claims_role(claims))
    except (NotFoundError, ForbiddenError, InvalidStateError, ConflictError, ValidationError) as exc:
        _handle_error(exc)
        raise
    set_audit_context(
        request,
        action="task.update",
        detail={"what": {"task_id": task_id, "fields": sorted(payload.model_fields_set)}},
    )
    return task


@router.post("/{task_id}/submit-review", response_model=TaskRead)
def submit_for_review(
    task_id: str,
    payload: TaskRemarkRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> TaskRead:
    try:
        task = service.submit_for_review(task_id, payload.remark, claims["sub"])
    except (NotFoundError, ForbiddenError, InvalidStateError, ConflictError, ValidationError) as exc:
        _handle_error(exc)
        raise
    set_audit_context(request, action="task.submit_review", detail={"what": {"task_id": task_id}})
    return task


@router.post("/{task_id}/reject", response_model=TaskRead)
def reject_task(
    task_id: str,
    payload: TaskRemarkRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> TaskRead:
    try:
        task = service.reject_task(task_id, payload.remark, claims["sub"])
    except (NotFoundError, ForbiddenError, InvalidStateError, ConflictError, ValidationError) as exc:
        _handle_error(exc)
        raise
    set_audit_context(request, action="task.reject", detail={"what": {"task_id": task_id}})
    return task


@router.post("/{task_id}/finalize-complete", response_model=TaskRead)
def finalize_completion(
    task_id: str,
    payload: TaskRemarkRequest,
    request: Request,
    claims: Claims,
    service: Service,
) -> TaskRead:
    try:
        task = service.finalize_completion(task_id, payload.remark, claims["sub"])
    except (NotFoundError, ForbiddenError, InvalidStateError, ConflictError, ValidationError) as exc:
        _handle_error(exc)
        raise
    set_audit_context(request, action="task.finalize_complete", detail={"what": {"task_id": task_id}})
    return task


@router.post("/{task_id}/revert-to-pending", response_model=TaskRead)
def revert_to_pending(task_id: str, request: Request, claims: Claims, service: Service) -> TaskRead:
    try:
        task = service.revert_to_pending(task_id, claims["sub"])
    except (NotFoundError, ForbiddenError, InvalidStateError, ConflictError, ValidationError) as exc:
        _handle_error(exc)
        raise
    set_audit_context(request, action="task.revert_to_pending", detail={"what": {"task_id": task_id}})
    return task


@router.post("/{task_id}/reminder", response_model=TaskRead)
def send_reminder(task_id: str, request: Request, claims: Claims, service: Service) -> TaskRead:
    try:
        task = service.send_reminder(task_id, claims["sub"])
    except (NotFoundError, ForbiddenError, InvalidStateError, ConflictError, ValidationError) as exc:
        _handle_error(exc)
        raise
    set_audit_context(request, action="task.reminder", detail={"what": {"task_id": task_id}})
    return task
