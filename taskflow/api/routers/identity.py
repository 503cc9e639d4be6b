from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from taskflow.domain.models import BootstrapAdminRequest, DevLoginRequest, TokenResponse, UserRead
from taskflow.infra.audit import set_audit_context
from taskflow.infra.auth import create_access_token
from taskflow.services.directory_service import (
    AuthError,
    ConflictError,
    DirectoryService,
    NotFoundError,
    ValidationError,
)

router = APIRouter()


def get_directory_service() -> DirectoryService:
    return DirectoryService()


Service = Annotated[DirectoryService, Depends(get_directory_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, request: Request, service: Service) -> UserRead:
    try:
        user = service.bootstrap_admin(payload)
    except (NotFoundError, ConflictError, AuthError, ValidationError) as exc:
        _handle_identity_error(exc)
        raise
    set_audit_context(request, action="identity.bootstrap_admin", detail={"what": {"user_id": user.id}})
    return UserRead.model_validate(user)


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        user = service.login(payload.email, payload.password)
    except (NotFoundError, ConflictError, AuthError, ValidationError) as exc:
        _handle_identity_error(exc)
        raise
    token = create_access_token(user_id=user.id, role=user.role)
    return TokenResponse(access_token=token, user_id=user.id, role=user.role)
