from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect

from taskflow.infra import db
from taskflow.infra.migrate import run_downgrade_base, run_upgrade_head

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def test_upgrade_and_downgrade_round_trip(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'migrations_test.db'}"
    monkeypatch.setattr(db, "DATABASE_URL", url)

    run_upgrade_head(str(ALEMBIC_INI))

    engine = create_engine(url)
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    assert {
        "users",
        "groups",
        "group_members",
        "projects",
        "task_identities",
        "pending_tasks",
        "completed_tasks",
        "task_acceptances",
        "notifications",
        "task_activities",
        "audit_logs",
        "events",
    } <= tables
    completed_columns = {column["name"] for column in inspector.get_columns("completed_tasks")}
    pending_columns = {column["name"] for column in inspector.get_columns("pending_tasks")}
    assert completed_columns - pending_columns == {"complete_time", "completed_at"}
    engine.dispose()

    run_downgrade_base(str(ALEMBIC_INI))

    engine = create_engine(url)
    assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    engine.dispose()
