from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from taskflow.api.deps import get_current_claims
from taskflow.domain.models import NotificationRead
from taskflow.services.notification_service import NotFoundError, NotificationService

router = APIRouter()


def get_notification_service() -> NotificationService:
    return NotificationService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[NotificationService, Depends(get_notification_service)]


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    claims: Claims,
    service: Service,
    unread_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[NotificationRead]:
    rows = service.list_for(claims["sub"], unread_only=unread_only, limit=limit)
    return [NotificationRead.model_validate(item) for item in rows]


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(notification_id: str, claims: Claims, service: Service) -> NotificationRead:
    try:
        row = service.mark_read(claims["sub"], notification_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return NotificationRead.model_validate(row)
