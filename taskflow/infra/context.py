from __future__ import annotations

from contextvars import ContextVar

from taskflow.infra.logging import bind_request_actor

actor_id_ctx: ContextVar[str | None] = ContextVar("actor_id", default=None)


def set_request_context(actor_id: str | None, role: str | None) -> None:
    actor_id_ctx.set(actor_id)
    bind_request_actor(actor_id, role)


def get_actor_id() -> str | None:
    return actor_id_ctx.get()