from __future__ import annotations

import fnmatch
from collections.abc import Generator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import structlog
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select
from structlog.testing import CapturingLogger

from taskflow.domain.models import (
    CompletedTask,
    Group,
    GroupMember,
    Notification,
    Pagination,
    PendingTask,
    Project,
    TaskAcceptance,
    TaskActivity,
    TaskCreate,
    TaskFilter,
    TaskIdentity,
    TaskUpdate,
    TaskViewMode,
    User,
)
from taskflow.domain.normalize import ensure_utc
from taskflow.domain.state_machine import AcceptanceStatus, TaskLocation, TaskStatus
from taskflow.infra import cache, db, events
from taskflow.services import task_events
from taskflow.services.activity_service import ActivityService
from taskflow.services.file_uploader import LocalFileUploader, UploadedFile
from taskflow.services.notification_service import NotificationService
from taskflow.services.task_lifecycle import TaskLifecycleEngine
from taskflow.services.task_service import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    TaskService,
    ValidationError,
)


class FakeRedis:
    def __init__(self) -> None:
        self.keys: dict[str, str] = {}

    def scan_iter(self, match: str, count: int = 10) -> list[str]:
        return [key for key in list(self.keys) if fnmatch.fnmatch(key, match)]

    def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            if self.keys.pop(name, None) is not None:
                removed += 1
        return removed

    def ping(self) -> bool:
        return True


class StepClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class TaskEnv:
    service: TaskService
    clock: StepClock
    redis: FakeRedis
    creator: str
    worker: str
    outsider: str
    group: str
    members: list[str]
    project: str


@pytest.fixture()
def task_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[TaskEnv, None, None]:
    db_path = tmp_path / "tasks_test.db"
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

    with Session(test_engine, expire_on_commit=False) as session:
        creator = User(name="Carla Manager", email="carla@example.com", role="MANAGER", password_hash="x")
        worker = User(name="Wes Worker", email="wes@example.com", role="EMPLOYEE", password_hash="x")
        outsider = User(name="Olga Outsider", email="olga@example.com", role="EMPLOYEE", password_hash="x")
        members = [
            User(name=f"Member {index}", email=f"member{index}@example.com", password_hash="x")
            for index in range(1, 4)
        ]
        group = Group(group_no="G-1", group_name="Payroll Desk")
        project = Project(project_no="PRJ-7", project_name="Payroll Migration")
        session.add_all([creator, worker, outsider, *members, group, project])
        session.flush()
        session.add_all([GroupMember(group_id=group.id, user_id=member.id) for member in members])
        session.commit()

    clock = StepClock(datetime(2026, 10, 1, 9, 0, tzinfo=UTC))
    lifecycle = TaskLifecycleEngine(uploader=LocalFileUploader(tmp_path / "uploads"), clock=clock)
    yield TaskEnv(
        service=TaskService(engine=lifecycle),
        clock=clock,
        redis=fake_redis,
        creator=creator.id,
        worker=worker.id,
        outsider=outsider.id,
        group=group.id,
        members=[member.id for member in members],
        project=project.id,
    )


def _session() -> Session:
    return Session(db.get_engine(), expire_on_commit=False)


def _activities(task_id: str) -> list[TaskActivity]:
    with _session() as session:
        return list(
            session.exec(
                select(TaskActivity).where(TaskActivity.task_id == task_id).order_by(TaskActivity.created_at)
            ).all()
        )


def _notifications(recipient_id: str) -> list[Notification]:
    with _session() as session:
        return list(session.exec(select(Notification).where(Notification.recipient_id == recipient_id)).all())


def _create(env: TaskEnv, title: str = "prepare payroll report", **fields: object) -> str:
    payload = TaskCreate(title=title, assigned_to=fields.pop("assigned_to", env.worker), **fields)
    return env.service.create(payload, env.creator).id


def test_create_numbers_normalizes_and_notifies(task_env: TaskEnv) -> None:
    task_env.redis.keys.update({"tasks:list:1": "cached", "users:1": "keep"})
    first = task_env.service.create(
        TaskCreate(
            title="prepare payroll report",
            note="check overtime",
            assigned_to=task_env.worker,
            project_id=task_env.project,
            reminder_time=[
                datetime(2026, 10, 5, 9, 0, tzinfo=UTC),
                datetime(2026, 10, 3, 9, 0, tzinfo=UTC),
                datetime(2026, 10, 5, 9, 0, tzinfo=UTC),
            ],
        ),
        task_env.creator,
    )
    second = task_env.service.create(TaskCreate(title="second task", target_team_id=task_env.worker), task_env.creator)

    assert first.task_no == "T-11101"
    assert second.task_no == "T-11102"
    assert first.title == "Prepare Payroll Report"
    assert first.note == "Check Overtime"
    assert first.status == TaskStatus.PENDING
    assert first.project_name == "Payroll Migration"
    assert first.assignee_name == "Wes Worker"
    assert [stamp.day for stamp in first.reminder_time] == [3, 5]
    assert task_env.redis.keys == {"users:1": "keep"}

    titles = sorted(item.title for item in _notifications(task_env.worker))
    assert titles == ["New Task Assigned", "New Task Assigned"]
    kinds = sorted(item.kind for item in _activities(first.id))
    assert kinds == ["TASK_ASSIGNED", "TASK_CREATED"]

    with _session() as session:
        identity = session.get(TaskIdentity, first.id)
    assert identity is not None
    assert identity.location == TaskLocation.PENDING


def test_create_rejects_unknown_references(task_env: TaskEnv) -> None:
    with pytest.raises(ValidationError):
        task_env.service.create(TaskCreate(title="ghost", assigned_to="missing-user"), task_env.creator)
    with pytest.raises(ValidationError):
        task_env.service.create(TaskCreate(title="ghost", target_group_id="missing-group"), task_env.creator)


def test_submit_requires_assignee_and_remark(task_env: TaskEnv) -> None:
    task_id = _create(task_env)

    with pytest.raises(ForbiddenError):
        task_env.service.submit_for_review(task_id, "done", task_env.outsider)
    with pytest.raises(ValidationError):
        task_env.service.submit_for_review(task_id, "   ", task_env.worker)
    with pytest.raises(InvalidStateError):
        task_env.service.reject_task(task_id, "not yet", task_env.creator)
    with pytest.raises(NotFoundError):
        task_env.service.submit_for_review("missing", "done", task_env.worker)


def test_reject_and_resubmit_cycle(task_env: TaskEnv) -> None:
    task_id = _create(task_env)
    task_env.service.update(task_id, TaskUpdate(status=TaskStatus.REVIEW_PENDING), task_env.creator, "MANAGER")

    task_env.clock.advance(minutes=5)
    with pytest.raises(ForbiddenError):
        task_env.service.reject_task(task_id, "missing totals", task_env.worker)
    rejected = task_env.service.reject_task(task_id, "missing totals", task_env.creator)
    assert rejected.status == TaskStatus.PENDING
    assert rejected.assigned_to == task_env.worker
    assert rejected.remark == "missing totals"
    assert len(rejected.reviewed_time) == 1

    task_env.clock.advance(minutes=5)
    resubmitted = task_env.service.submit_for_review(task_id, "totals added", task_env.worker)
    again = task_env.service.submit_for_review(task_id, "totals double checked", task_env.worker)

    assert resubmitted.status == TaskStatus.REVIEW_PENDING
    assert again.status == TaskStatus.REVIEW_PENDING
    assert again.assigned_to == task_env.worker
    assert again.working_by == task_env.worker
    assert len(again.reviewed_time) == 2
    assert again.reviewed_time == sorted(again.reviewed_time)

    titles = [item.title for item in _notifications(task_env.worker)]
    assert "Task Rejected" in titles
    creator_titles = [item.title for item in _notifications(task_env.creator)]
    assert creator_titles.count("Task Submitted for Review") == 1
    assert creator_titles.count("New Remark on Task") == 1


def test_finalize_and_revert_round_trip(task_env: TaskEnv) -> None:
    task_id = _create(task_env)
    submitted = task_env.service.submit_for_review(task_id, "done", task_env.worker)

    task_env.clock.advance(hours=1)
    with pytest.raises(ForbiddenError):
        task_env.service.finalize_completion(task_id, None, task_env.worker)
    completed = task_env.service.finalize_completion(task_id, "looks good", task_env.creator)
    assert completed.location == TaskLocation.COMPLETED
    assert completed.status == TaskStatus.COMPLETED
    assert completed.id == submitted.id
    assert completed.task_no == submitted.task_no
    assert completed.complete_time is not None
    assert completed.working_by == task_env.worker

    with pytest.raises(InvalidStateError):
        task_env.service.submit_for_review(task_id, "more", task_env.worker)
    with pytest.raises(ForbiddenError):
        task_env.service.revert_to_pending(task_id, task_env.worker)

    reverted = task_env.service.revert_to_pending(task_id, task_env.creator)
    assert reverted.location == TaskLocation.PENDING
    assert reverted.status == TaskStatus.PENDING
    assert (reverted.id, reverted.task_no) == (submitted.id, submitted.task_no)
    assert reverted.created_time == submitted.created_time
    assert reverted.reviewed_time == completed.reviewed_time

    with pytest.raises(InvalidStateError):
        task_env.service.revert_to_pending(task_id, task_env.creator)

    page = task_env.service.find_all(
        Pagination(),
        TaskFilter(view_mode=TaskViewMode.MY_PENDING),
        task_env.worker,
        "EMPLOYEE",
    )
    assert [item.id for item in page.data] == [task_id]

    with _session() as session:
        assert session.get(CompletedTask, task_id) is None
        identity = session.get(TaskIdentity, task_id)
    assert identity is not None
    assert identity.location == TaskLocation.PENDING


def test_finalize_twice_returns_the_same_record(task_env: TaskEnv) -> None:
    task_id = _create(task_env)
    task_env.service.submit_for_review(task_id, "done", task_env.worker)

    first = task_env.service.finalize_completion(task_id, None, task_env.creator)
    task_env.clock.advance(minutes=1)
    second = task_env.service.finalize_completion(task_id, None, task_env.creator)

    assert second.id == first.id
    assert second.complete_time is not None
    assert first.complete_time is not None
    assert ensure_utc(second.complete_time) == ensure_utc(first.complete_time)
    with _session() as session:
        rows = session.exec(select(CompletedTask).where(CompletedTask.task_no == first.task_no)).all()
        assert len(rows) == 1
        assert session.get(PendingTask, task_id) is None
    completed_notes = [item for item in _notifications(task_env.worker) if item.title == "Task Completed"]
    assert len(completed_notes) == 1


def test_only_the_creator_reads_back_a_finalized_task(task_env: TaskEnv) -> None:
    task_id = _create(task_env)
    task_env.service.submit_for_review(task_id, "done", task_env.worker)
    task_env.service.finalize_completion(task_id, None, task_env.creator)

    with pytest.raises(ForbiddenError):
        task_env.service.finalize_completion(task_id, None, task_env.outsider)
    with pytest.raises(ForbiddenError):
        task_env.service.finalize_completion(task_id, "again", task_env.worker)
    assert task_env.service.find_by_id(task_id).location == TaskLocation.COMPLETED


def test_update_logs_exactly_one_activity(task_env: TaskEnv) -> None:
    task_id = _create(task_env)
    before = {item.id for item in _activities(task_id)}

    with pytest.raises(ForbiddenError):
        task_env.service.update(task_id, TaskUpdate(title="nope"), task_env.worker, "EMPLOYEE")

    updated = task_env.service.update(
        task_id,
        TaskUpdate(
            title="final payroll report",
            remark="please hurry",
            status=TaskStatus.REVIEW_PENDING,
            priority="High",
        ),
        task_env.creator,
        "MANAGER",
    )

    assert updated.title == "Final Payroll Report"
    assert updated.remark == "Please Hurry"
    assert updated.priority == "High"
    assert len(updated.edit_time) == 1
    new_entries = [item for item in _activities(task_id) if item.id not in before]
    assert [item.kind for item in new_entries] == ["TASK_STATUS_CHANGE"]
    assert "Task Status Updated" in [item.title for item in _notifications(task_env.worker)]

    with pytest.raises(InvalidStateError):
        task_env.service.update(task_id, TaskUpdate(status=TaskStatus.COMPLETED), task_env.creator, "MANAGER")

    seen = {item.id for item in _activities(task_id)}
    task_env.service.update(task_id, TaskUpdate(assigned_to=task_env.outsider), task_env.creator, "MANAGER")
    latest = [item for item in _activities(task_id) if item.id not in seen]
    assert [(item.kind, item.description) for item in latest] == [
        ("TASK_ASSIGNED", "Task re-assigned to Olga Outsider")
    ]
    assert [item.title for item in _notifications(task_env.outsider)] == ["Task Re-Assigned"]


def test_reminder_reopens_rejected_acceptances(task_env: TaskEnv) -> None:
    task_id = _create(task_env, "group review", assigned_to=None, target_group_id=task_env.group)
    first_member = task_env.members[0]

    pending = task_env.service.get_pending_acceptances(first_member)
    assert len(pending) == 1
    assert pending[0].group_name == "Payroll Desk"
    task_env.service.update_acceptance_status(pending[0].id, AcceptanceStatus.REJECTED, first_member)
    assert task_env.service.get_pending_acceptances(first_member) == []

    with pytest.raises(ForbiddenError):
        task_env.service.send_reminder(task_id, first_member)
    reminded = task_env.service.send_reminder(task_id, task_env.creator)
    assert len(reminded.reminder_time) == 1

    with _session() as session:
        rows = session.exec(select(TaskAcceptance).where(TaskAcceptance.task_id == task_id)).all()
    assert sorted(row.user_id for row in rows) == sorted(task_env.members)
    assert {row.status for row in rows} == {AcceptanceStatus.PENDING}
    for member_id in task_env.members:
        assert "Task Reminder" in [item.title for item in _notifications(member_id)]


def test_reminder_without_recipients_is_rejected(task_env: TaskEnv) -> None:
    task_id = task_env.service.create(TaskCreate(title="self note"), task_env.creator).id
    with pytest.raises(ValidationError):
        task_env.service.send_reminder(task_id, task_env.creator)


def test_search_is_case_insensitive(task_env: TaskEnv) -> None:
    payroll_id = _create(task_env, "quarterly payroll audit", project_id=task_env.project)
    _create(task_env, "onboarding checklist")

    for text in ("PAYROLL", "payroll", "PaYrOlL"):
        page = task_env.service.find_all(Pagination(), TaskFilter(search=text), task_env.creator, "MANAGER")
        assert [item.id for item in page.data] == [payroll_id]

    by_project = task_env.service.find_all(Pagination(), TaskFilter(search="prj-7"), task_env.creator, "MANAGER")
    assert [item.id for item in by_project.data] == [payroll_id]
    by_number = task_env.service.find_all(Pagination(), TaskFilter(search="t-11102"), task_env.creator, "MANAGER")
    assert by_number.meta.total == 1


def test_view_modes_split_creator_and_worker(task_env: TaskEnv) -> None:
    task = task_env.service.create(TaskCreate(title="collect forms", assigned_to=task_env.worker), task_env.outsider)

    def _ids(actor_id: str, view_mode: TaskViewMode) -> list[str]:
        page = task_env.service.find_all(Pagination(), TaskFilter(view_mode=view_mode), actor_id, "EMPLOYEE")
        return [item.id for item in page.data]

    assert _ids(task_env.outsider, TaskViewMode.TEAM_PENDING) == [task.id]
    assert _ids(task_env.outsider, TaskViewMode.MY_PENDING) == []
    assert _ids(task_env.worker, TaskViewMode.MY_PENDING) == [task.id]
    assert _ids(task_env.worker, TaskViewMode.TEAM_PENDING) == []


def test_default_visibility_limits_ordinary_users(task_env: TaskEnv) -> None:
    direct_id = _create(task_env, "direct work")
    group_id = _create(task_env, "group work", assigned_to=None, target_group_id=task_env.group)

    def _ids(actor_id: str, role: str) -> set[str]:
        page = task_env.service.find_all(Pagination(), TaskFilter(), actor_id, role)
        return {item.id for item in page.data}

    assert _ids(task_env.outsider, "EMPLOYEE") == set()
    assert _ids(task_env.worker, "EMPLOYEE") == {direct_id}
    assert _ids(task_env.members[0], "EMPLOYEE") == {group_id}
    assert _ids(task_env.outsider, "HR") == {direct_id, group_id}


def test_mixed_view_merges_both_stores(task_env: TaskEnv) -> None:
    ids: list[str] = []
    for index in range(5):
        task_env.clock.advance(minutes=10)
        ids.append(_create(task_env, f"task number {index + 1}"))
    for task_id in (ids[1], ids[3]):
        task_env.clock.advance(minutes=1)
        task_env.service.submit_for_review(task_id, "done", task_env.worker)
        task_env.service.finalize_completion(task_id, None, task_env.creator)

    page = task_env.service.find_all(
        Pagination(page=2, limit=2, sort_by="created_time", sort_order="asc"),
        TaskFilter(),
        task_env.creator,
        "MANAGER",
    )
    assert page.meta.total == 5
    assert page.meta.total_pages == 3
    assert [item.id for item in page.data] == [ids[2], ids[3]]
    assert [item.location for item in page.data] == [TaskLocation.PENDING, TaskLocation.COMPLETED]

    completed_only = task_env.service.find_all(
        Pagination(sort_by="completeTime", sort_order="asc"),
        TaskFilter(status="Completed"),
        task_env.creator,
        "MANAGER",
    )
    assert [item.id for item in completed_only.data] == [ids[1], ids[3]]


def test_mixed_pages_follow_the_full_title_order(task_env: TaskEnv) -> None:
    ids = {title: _create(task_env, title) for title in ("task 10", "task 9", "task 99")}
    task_env.service.submit_for_review(ids["task 99"], "done", task_env.worker)
    task_env.service.finalize_completion(ids["task 99"], None, task_env.creator)

    def _titles(page: int, limit: int) -> list[str]:
        result = task_env.service.find_all(
            Pagination(page=page, limit=limit, sort_by="title", sort_order="asc"),
            TaskFilter(),
            task_env.creator,
            "MANAGER",
        )
        return [item.title for item in result.data]

    full = _titles(1, 10)
    assert full == ["Task 10", "Task 9", "Task 99"]
    assert [title for page in (1, 2, 3) for title in _titles(page, 1)] == full


def test_submit_with_files_records_documents(task_env: TaskEnv, tmp_path: Path) -> None:
    task_id = _create(task_env)
    task = task_env.service.submit_for_review(
        task_id,
        "report attached",
        task_env.worker,
        files=[UploadedFile("payroll report.pdf", b"%PDF"), UploadedFile("empty.txt", b"")],
    )

    documents = (task.document or "").split(",")
    assert len(documents) == 1
    assert documents[0].startswith("/uploads/T-11101/")
    assert documents[0].endswith("_payroll_report.pdf")
    assert len(list((tmp_path / "uploads" / "T-11101").iterdir())) == 1
    file_entries = [item for item in _activities(task_id) if item.kind == "TASK_FILE_ADDED"]
    assert file_entries[0].detail["files"] == ["payroll report.pdf"]


def test_notification_failures_do_not_break_transitions(
    task_env: TaskEnv,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _explode(self: NotificationService, *args: object, **kwargs: object) -> None:
        raise RuntimeError("mail relay down")

    monkeypatch.setattr(NotificationService, "create_notification", _explode)
    task_id = _create(task_env)

    assert sorted(item.kind for item in _activities(task_id)) == ["TASK_ASSIGNED", "TASK_CREATED"]
    assert _notifications(task_env.worker) == []


def test_failed_activity_writes_are_logged_and_skipped(
    task_env: TaskEnv,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _explode(self: ActivityService, *args: object, **kwargs: object) -> None:
        raise RuntimeError("activity store offline")

    monkeypatch.setattr(ActivityService, "log_activity", _explode)
    captured = CapturingLogger()
    monkeypatch.setattr(
        task_events,
        "log",
        structlog.wrap_logger(captured, processors=[], wrapper_class=structlog.BoundLogger),
    )
    task_id = _create(task_env)

    assert _activities(task_id) == []
    assert [item.title for item in _notifications(task_env.worker)] == ["New Task Assigned"]
    failures = [call.kwargs for call in captured.calls if call.kwargs.get("event") == "task_event_delivery_failed"]
    assert {entry["event_kind"] for entry in failures} == {"Activity"}
    assert {entry["task_id"] for entry in failures} == {task_id}
    assert failures[0]["error"] == "activity store offline"


def test_activity_feed_groups_entries_by_day(task_env: TaskEnv) -> None:
    task_id = _create(task_env)
    task_env.service.submit_for_review(task_id, "done", task_env.worker)

    feed = task_env.service.get_activity_logs(task_env.worker, role="EMPLOYEE", task_no="11101")
    entries = [entry for day in feed.data for entry in day.entries]
    assert {entry.kind for entry in entries} == {
        "TASK_CREATED",
        "TASK_ASSIGNED",
        "TASK_STATUS_CHANGE",
        "TASK_REMARK",
    }
    assert feed.loadable is False

    own = task_env.service.get_activity_logs(task_env.worker, role="EMPLOYEE")
    assert {entry.actor_id for day in own.data for entry in day.entries} == {task_env.worker}
    assert {entry.actor_name for day in own.data for entry in day.entries} == {"Wes Worker"}
