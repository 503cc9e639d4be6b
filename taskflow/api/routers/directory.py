from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response, status

from taskflow.api.deps import get_current_claims, require_privileged
from taskflow.api.routers.identity import _handle_identity_error, get_directory_service
from taskflow.domain.models import (
    GroupCreate,
    GroupRead,
    ProjectCreate,
    ProjectRead,
    UserCreate,
    UserRead,
)
from taskflow.infra.audit import set_audit_context
from taskflow.services.directory_service import (
    AuthError,
    ConflictError,
    DirectoryService,
    NotFoundError,
    ValidationError,
)

router = APIRouter()

Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[DirectoryService, Depends(get_directory_service)]


@router.post(
    "/users",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_privileged)],
)
def create_user(payload: UserCreate, request: Request, service: Service) -> UserRead:
    try:
        user = service.create_user(payload)
    except (NotFoundError, ConflictError, AuthError, ValidationError) as exc:
        _handle_identity_error(exc)
        raise
    set_audit_context(request, action="directory.user.create", detail={"what": {"user_id": user.id}})
    return UserRead.model_validate(user)


@router.get("/users", response_model=list[UserRead])
def list_users(claims: Claims, service: Service) -> list[UserRead]:
    return [UserRead.model_validate(item) for item in service.list_users()]


@router.get("/users/{user_id}", response_model=UserRead)
def get_user(user_id: str, claims: Claims, service: Service) -> UserRead:
    try:
        return UserRead.model_validate(service.get_user(user_id))
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.get("/users/{user_id}/groups", response_model=list[GroupRead])
def list_user_groups(user_id: str, claims: Claims, service: Service) -> list[GroupRead]:
    return [GroupRead.model_validate(item) for item in service.groups_of(user_id)]


@router.post(
    "/groups",
    response_model=GroupRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_privileged)],
)
def create_group(payload: GroupCreate, request: Request, service: Service) -> GroupRead:
    try:
        group = service.create_group(payload)
    except (NotFoundError, ConflictError, ValidationError) as exc:
        _handle_identity_error(exc)
        raise
    set_audit_context(
        request,
        action="directory.group.create",
        detail={"what": {"group_id": group.id, "member_ids": payload.member_ids}},
    )
    return GroupRead.model_validate(group)


@router.get("/groups", response_model=list[GroupRead])
def list_groups(claims: Claims, service: Service) -> list[GroupRead]:
    return [GroupRead.model_validate(item) for item in service.list_groups()]


@router.get("/groups/{group_id}/members", response_model=list[UserRead])
def list_group_members(group_id: str, claims: Claims, service: Service) -> list[UserRead]:
    try:
        return [UserRead.model_validate(item) for item in service.members_of(group_id)]
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise


@router.put(
    "/groups/{group_id}/members/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_privileged)],
)
def add_group_member(group_id: str, user_id: str, request: Request, service: Service) -> Response:
    try:
        service.add_member(group_id, user_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    set_audit_context(
        request,
        action="directory.group.member.add",
        detail={"what": {"group_id": group_id, "user_id": user_id}},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/groups/{group_id}/members/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_privileged)],
)
def remove_group_member(group_id: str, user_id: str, request: Request, service: Service) -> Response:
    try:
        service.remove_member(group_id, user_id)
    except NotFoundError as exc:
        _handle_identity_error(exc)
    set_audit_context(
        request,
        action="directory.group.member.remove",
        detail={"what": {"group_id": group_id, "user_id": user_id}},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/projects",
    response_model=ProjectRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_privileged)],
)
def create_project(payload: ProjectCreate, request: Request, service: Service) -> ProjectRead:
    try:
        project = service.create_project(payload)
    except (ConflictError, ValidationError) as exc:
        _handle_identity_error(exc)
        raise
    set_audit_context(request, action="directory.project.create", detail={"what": {"project_id": project.id}})
    return ProjectRead.model_validate(project)


@router.get("/projects", response_model=list[ProjectRead])
def list_projects(claims: Claims, service: Service) -> list[ProjectRead]:
    return [ProjectRead.model_validate(item) for item in service.list_projects()]


@router.get("/projects/{project_id}", response_model=ProjectRead)
def get_project(project_id: str, claims: Claims, service: Service) -> ProjectRead:
    try:
        return ProjectRead.model_validate(service.get_project(project_id))
    except NotFoundError as exc:
        _handle_identity_error(exc)
        raise
