from __future__ import annotations

from fastapi import FastAPI, HTTPException

from taskflow.api.routers import directory, identity, notifications, tasks
from taskflow.infra.audit import AuditMiddleware
from taskflow.infra.cache import check_redis_ready
from taskflow.infra.db import check_db_ready
from taskflow.infra.logging import configure_logging

configure_logging()

app = FastAPI(
    title="taskflow",
    description="Task visibility and lifecycle engine for HR work items.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(directory.router, prefix="/api/directory", tags=["directory"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
