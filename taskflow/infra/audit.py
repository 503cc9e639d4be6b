from __future__ import annotations

from typing import Any

import structlog
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from taskflow.domain.models import AuditLog, now_utc
from taskflow.domain.permissions import claims_role
from taskflow.infra.db import engine

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
AUDIT_CONTEXT_STATE_KEY = "_audit_context"
UNAUDITED_PATHS = {"/healthz", "/readyz"}

# path parameter -> resource prefix, first match names the audited entity
RESOURCE_PARAMS = (
    ("task_id", "task"),
    ("acceptance_id", "acceptance"),
    ("notification_id", "notification"),
    ("group_id", "group"),
    ("project_id", "project"),
    ("user_id", "user"),
)

log = structlog.get_logger(__name__)


def write_audit_log(
    *,
    actor_id: str | None,
    action: str,
    resource: str,
    method: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> None:
    with Session(engine) as session:
        session.add(
            AuditLog(
                actor_id=actor_id,
                action=action,
                resource=resource,
                method=method,
                status_code=status_code,
                detail=detail or {},
            )
        )
        session.commit()


def _deep_merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _status_outcome(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    return "rejected" if status_code >= 400 else "success"


def resource_for(path: str, path_params: dict[str, Any]) -> str:
    for param, prefix in RESOURCE_PARAMS:
        value = path_params.get(param)
        if value:
            return f"{prefix}:{value}"
    return path


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    """Attach action/resource/detail overrides the middleware picks up after the handler returns."""
    current = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
    context: dict[str, Any] = dict(current) if isinstance(current, dict) else {}
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        earlier = context.get("detail")
        context["detail"] = _deep_merge(earlier, detail) if isinstance(earlier, dict) else detail
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if request.url.path in UNAUDITED_PATHS:
            return response
        current = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, None)
        context: dict[str, Any] = current if isinstance(current, dict) else {}
        if request.method not in WRITE_METHODS and not context:
            return response

        entry = self._entry(request, response.status_code, context)
        try:
            write_audit_log(**entry)
        except Exception as exc:
            log.warning("audit_write_failed", action=entry["action"], resource=entry["resource"], error=str(exc))
        return response

    @staticmethod
    def _entry(request: Request, status_code: int, context: dict[str, Any]) -> dict[str, Any]:
        claims = getattr(request.state, "claims", None)
        claims = claims if isinstance(claims, dict) else {}
        actor_id = claims.get("sub")
        path, method = request.url.path, request.method
        path_params = dict(request.path_params)
        action = context.get("action")
        resource = context.get("resource")

        detail: dict[str, Any] = {
            "who": {"actor_id": actor_id, "role": claims_role(claims) or None},
            "when": {"request_ts": now_utc().isoformat()},
            "where": {
                "path": path,
                "route": getattr(request.scope.get("route"), "path", path),
                "query": request.url.query,
                "client_ip": request.client.host if request.client is not None else None,
            },
            "what": path_params,
            "result": {"status_code": status_code, "outcome": _status_outcome(status_code)},
        }
        extra = context.get("detail")
        return {
            "actor_id": actor_id,
            "action": action if isinstance(action, str) else f"{method}:{path}",
            "resource": resource if isinstance(resource, str) else resource_for(path, path_params),
            "method": method,
            "status_code": status_code,
            "detail": _deep_merge(detail, extra) if isinstance(extra, dict) else detail,
        }
