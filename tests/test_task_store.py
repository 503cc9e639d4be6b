from __future__ import annotations

import fnmatch
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from taskflow.domain.models import (
    CompletedTask,
    Notification,
    PendingTask,
    Project,
    TaskIdentity,
    User,
)
from taskflow.domain.predicates import Contains, Equals, StartsWith, all_of
from taskflow.domain.state_machine import TaskLocation, TaskStatus
from taskflow.infra import cache, db, events
from taskflow.services.task_errors import NotFoundError
from taskflow.services.task_merge import sort_field_for
from taskflow.services.task_numbers import TaskNumberGenerator
from taskflow.services.task_service import TaskService
from taskflow.services.task_store import TaskStore

BASE = datetime(2026, 10, 1, 9, 0, tzinfo=UTC)


class FakeRedis:
    def __init__(self) -> None:
        self.keys: dict[str, str] = {}

    def scan_iter(self, match: str, count: int = 10) -> list[str]:
        return [key for key in list(self.keys) if fnmatch.fnmatch(key, match)]

    def delete(self, *names: str) -> int:
        return sum(1 for name in names if self.keys.pop(name, None) is not None)


@pytest.fixture()
def store_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "store_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    fake_redis = FakeRedis()
    monkeypatch.setattr(cache, "get_redis", lambda: fake_redis)
    yield test_engine


def _seed_people(session: Session) -> tuple[User, User, Project]:
    creator = User(name="Carla Manager", email="carla@example.com", role="MANAGER", password_hash="x")
    worker = User(name="Wes Worker", email="wes@example.com", password_hash="x")
    project = Project(project_no="PRJ-7", project_name="Payroll Migration")
    session.add_all([creator, worker, project])
    session.commit()
    return creator, worker, project


def _pending(
    task_no: str,
    creator: User,
    worker: User,
    minutes: int = 0,
    status: TaskStatus = TaskStatus.PENDING,
    **fields: object,
) -> PendingTask:
    return PendingTask(
        id=f"id-{task_no}",
        task_no=task_no,
        title=f"Task {task_no}",
        status=status,
        created_time=BASE + timedelta(minutes=minutes),
        updated_at=BASE,
        created_by=creator.id,
        assigned_to=worker.id,
        working_by=worker.id if status == TaskStatus.REVIEW_PENDING else None,
        reviewed_time=[],
        **fields,
    )


def test_relocate_keeps_identity_and_fields(store_engine: Engine) -> None:
    store = TaskStore()
    with Session(store_engine, expire_on_commit=False) as session:
        creator, worker, project = _seed_people(session)
        row = _pending("T-11101", creator, worker, project_id=project.id, remark="Done", document="/a.pdf")
        store.insert_pending(session, row)
        session.commit()

        moved = store.relocate(
            session,
            row.id,
            TaskLocation.PENDING,
            TaskLocation.COMPLETED,
            {"status": TaskStatus.COMPLETED, "complete_time": BASE},
        )
        session.commit()

        assert isinstance(moved, CompletedTask)
        assert (moved.id, moved.task_no) == ("id-T-11101", "T-11101")
        assert moved.document == "/a.pdf"
        assert store.get(session, TaskLocation.PENDING, row.id) is None
        location, found = store.find(session, row.id)
        assert location == TaskLocation.COMPLETED
        assert found.remark == "Done"
        identity = session.get(TaskIdentity, row.id)
        assert identity is not None
        assert identity.location == TaskLocation.COMPLETED

        read = store.hydrate_one(session, found)
        assert read.location == TaskLocation.COMPLETED
        assert read.project_name == "Payroll Migration"
        assert read.assignee_name == "Wes Worker"

        with pytest.raises(NotFoundError):
            store.relocate(session, row.id, TaskLocation.PENDING, TaskLocation.COMPLETED)


def test_finalize_replay_reconciles_a_stale_pending_copy(store_engine: Engine) -> None:
    store = TaskStore()
    with Session(store_engine, expire_on_commit=False) as session:
        creator, worker, _ = _seed_people(session)
        row = _pending("T-11101", creator, worker, status=TaskStatus.REVIEW_PENDING)
        store.insert_pending(session, row)
        session.commit()
        # a completed copy written by an attempt that never removed the pending row
        data = {name: getattr(row, name) for name in PendingTask.model_fields}
        data.update(status=TaskStatus.COMPLETED, complete_time=BASE, remark="First Attempt")
        session.add(CompletedTask.model_validate(data))
        session.commit()
        creator_id, worker_id, task_id = creator.id, worker.id, row.id

    result = TaskService().finalize_completion(task_id, "second attempt", creator_id)

    assert result.location == TaskLocation.COMPLETED
    assert result.remark == "First Attempt"
    with Session(store_engine) as session:
        assert session.get(PendingTask, task_id) is None
        assert len(session.exec(select(CompletedTask).where(CompletedTask.task_no == "T-11101")).all()) == 1
        identity = session.get(TaskIdentity, task_id)
        assert identity is not None
        assert identity.location == TaskLocation.COMPLETED
        notes = session.exec(select(Notification).where(Notification.recipient_id == worker_id)).all()
        assert notes == []


def test_query_compiles_relation_and_text_predicates(store_engine: Engine) -> None:
    store = TaskStore()
    with Session(store_engine, expire_on_commit=False) as session:
        creator, worker, project = _seed_people(session)
        rows = [
            _pending("T-11101", creator, worker, minutes=0, project_id=project.id),
            _pending("T-11102", creator, worker, minutes=5, note="100% done_now"),
            _pending("T-11103", creator, worker, minutes=10, status=TaskStatus.REVIEW_PENDING),
        ]
        for item in rows:
            store.insert_pending(session, item)
        session.commit()

        by_project = Contains("project.name", "PAYROLL")
        assert [item.task_no for item in store.query(
            session, TaskLocation.PENDING, by_project, sort_field_for(None), "desc", 0, 10
        )] == ["T-11101"]
        assert store.count(session, TaskLocation.PENDING, by_project) == 1

        literal = Contains("note", "100% done_")
        assert store.count(session, TaskLocation.PENDING, literal) == 1
        assert store.count(session, TaskLocation.PENDING, Contains("note", "100%x")) == 0

        by_worker = all_of(Contains("worker.name", "wes"), Equals("status", TaskStatus.REVIEW_PENDING))
        assert [item.task_no for item in store.query(
            session, TaskLocation.PENDING, by_worker, sort_field_for(None), "asc", 0, 10
        )] == ["T-11103"]

        newest_first = store.query(
            session, TaskLocation.PENDING, StartsWith("task_no", "t-111"), sort_field_for("createdTime"), "desc", 1, 2
        )
        assert [item.task_no for item in newest_first] == ["T-11102", "T-11101"]

        assert store.count(session, TaskLocation.PENDING, Contains("complete_time", "x")) == 0
        assert store.find_by_no(session, "T-11102") is not None
        assert store.find_by_no(session, "T-99999") is None


def test_task_numbers_continue_across_both_tables(store_engine: Engine) -> None:
    store = TaskStore()
    numbers = TaskNumberGenerator(prefix="T-", start=11101)
    with Session(store_engine, expire_on_commit=False) as session:
        creator, worker, _ = _seed_people(session)
        assert numbers.next(session) == "T-11101"

        store.insert_pending(session, _pending("T-11101", creator, worker))
        store.insert_pending(session, _pending("T-11102", creator, worker))
        session.commit()
        store.relocate(
            session,
            "id-T-11102",
            TaskLocation.PENDING,
            TaskLocation.COMPLETED,
            {"status": TaskStatus.COMPLETED},
        )
        session.commit()
        assert numbers.next(session) == "T-11103"

        session.add(TaskIdentity(id="reserved", task_no="T-11103"))
        session.commit()
        assert numbers.next(session) == "T-11104"
        assert TaskNumberGenerator(prefix="HR-", start=1).next(session) == "HR-1"


def test_task_numbers_compare_suffixes_numerically(store_engine: Engine) -> None:
    store = TaskStore()
    numbers = TaskNumberGenerator(prefix="T-", start=1)
    with Session(store_engine, expire_on_commit=False) as session:
        creator, worker, _ = _seed_people(session)
        for task_no in ("T-950", "T-9999", "T-IMPORTED", "T-1200"):
            store.insert_pending(session, _pending(task_no, creator, worker))
        session.commit()

        assert numbers.next(session) == "T-10000"
