from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from taskflow.domain.models import (
    Group,
    PendingTask,
    Project,
    TaskAcceptance,
    TaskCreate,
    TaskRead,
    TaskRow,
    TaskUpdate,
    User,
    now_utc,
)
from taskflow.domain.normalize import ensure_utc, merge_documents, merge_stamps, title_case
from taskflow.domain.permissions import is_privileged_role
from taskflow.domain.state_machine import AcceptanceStatus, TaskLocation, TaskStatus, can_task_transition
from taskflow.services.acceptance_ledger import AcceptanceLedger
from taskflow.services.file_uploader import FileUploader, LocalFileUploader, UploadedFile, store_files
from taskflow.services.task_errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from taskflow.services.task_events import (
    ACTIVITY_TASK_ASSIGNED,
    ACTIVITY_TASK_CREATED,
    ACTIVITY_TASK_FILE_ADDED,
    ACTIVITY_TASK_REMARK,
    ACTIVITY_TASK_STATUS_CHANGE,
    ACTIVITY_TASK_UPDATED,
    Activity,
    Notify,
    TaskEvent,
)
from taskflow.services.task_numbers import TaskNumberGenerator
from taskflow.services.task_store import TaskStore

log = structlog.get_logger(__name__)

_ASSIGNMENT_FIELDS = ("assigned_to", "target_group_id", "target_team_id")


@dataclass
class TransitionResult:
    task: TaskRead
    events: list[TaskEvent] = field(default_factory=list)
    acceptance: TaskAcceptance | None = None


def _unique(ids: Iterable[str | None], exclude: str | None = None) -> list[str]:
    seen: dict[str, None] = {}
    for item in ids:
        if item and item != exclude:
            seen.setdefault(item, None)
    return list(seen)


def _meta(row: TaskRow, **extra: Any) -> dict[str, Any]:
    return {"task_id": row.id, "task_no": row.task_no, **extra}


class TaskLifecycleEngine:
    """State transitions over the task store; side effects are returned as events."""

    def __init__(
        self,
        store: TaskStore | None = None,
        ledger: AcceptanceLedger | None = None,
        numbers: TaskNumberGenerator | None = None,
        uploader: FileUploader | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.store = store or TaskStore()
        self.ledger = ledger or AcceptanceLedger()
        self.numbers = numbers or TaskNumberGenerator()
        self.uploader = uploader or LocalFileUploader()
        self._clock = clock

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _ensure_refs(self, session: Session, payload: TaskCreate | TaskUpdate) -> None:
        for user_field in ("assigned_to", "target_team_id"):
            user_id = getattr(payload, user_field, None)
            if user_id and session.get(User, user_id) is None:
                raise ValidationError(f"{user_field} does not reference a known user")
        working_by = getattr(payload, "working_by", None)
        if working_by and session.get(User, working_by) is None:
            raise ValidationError("working_by does not reference a known user")
        if payload.target_group_id and session.get(Group, payload.target_group_id) is None:
            raise ValidationError("target_group_id does not reference a known group")
        if payload.project_id and session.get(Project, payload.project_id) is None:
            raise ValidationError("project_id does not reference a known project")

    def _addressees(self, session: Session, row: TaskRow, actor_id: str) -> list[str]:
        members = self.ledger.group_member_ids(session, row.target_group_id) if row.target_group_id else []
        return _unique([row.assigned_to, row.target_team_id, *members], exclude=actor_id)

    @staticmethod
    def _workers(row: TaskRow, actor_id: str) -> list[str]:
        return _unique([row.working_by, row.assigned_to, row.target_team_id], exclude=actor_id)

    @staticmethod
    def _primary_worker(row: TaskRow) -> str | None:
        return row.working_by or row.assigned_to or row.target_team_id

    def _addressee_name(self, session: Session, row: TaskRow) -> str | None:
        for user_id in (row.assigned_to, row.target_team_id):
            if user_id:
                user = session.get(User, user_id)
                if user is not None:
                    return user.name
        if row.target_group_id:
            group = session.get(Group, row.target_group_id)
            if group is not None:
                return group.group_name
        return None

    def _file_events(self, actor_id: str, row: TaskRow, files: list[UploadedFile] | None) -> list[TaskEvent]:
        names = [item.filename for item in files or [] if item.content]
        if not names:
            return []
        return [
            Activity(
                actor_id,
                row.id,
                row.task_no,
                ACTIVITY_TASK_FILE_ADDED,
                f"{len(names)} file(s) added",
                {"files": names},
            )
        ]

    def _load_pending(self, session: Session, task_id: str) -> PendingTask:
        location, row = self.store.find(session, task_id)
        if location != TaskLocation.PENDING:
            raise InvalidStateError("task is already completed")
        if not isinstance(row, PendingTask):
            raise InvalidStateError("task is not open")
        return row

    def _relocate(
        self,
        session: Session,
        task_id: str,
        source: TaskLocation,
        destination: TaskLocation,
        overrides: dict[str, Any],
    ) -> tuple[TaskRow, bool]:
        """Relocate in one transaction; on a uniqueness conflict reconcile once with the destination."""
        try:
            moved = self.store.relocate(session, task_id, source, destination, overrides)
            session.commit()
            return moved, True
        except IntegrityError as exc:
            session.rollback()
            log.warning(
                "task_relocation_conflict",
                task_id=task_id,
                source=str(source),
                destination=str(destination),
                error=str(exc.orig),
            )
        existing = self.store.reconcile(session, task_id, destination)
        if existing is None:
            raise ConflictError("task relocation conflicted and no destination record exists")
        session.commit()
        log.warning("task_relocation_reconciled", task_id=task_id, destination=str(destination))
        return existing, False

    def create(
        self,
        session: Session,
        payload: TaskCreate,
        actor_id: str,
        files: list[UploadedFile] | None = None,
    ) -> TransitionResult:
        self._ensure_refs(session, payload)
        now = self._now()
        row: PendingTask | None = None
        uris: list[str] = []
        for attempt in range(2):
            task_no = self.numbers.next(session)
            if attempt == 0:
                uris = store_files(self.uploader, task_no, files)
            row = PendingTask(
                id=str(uuid4()),
                task_no=task_no,
                title=title_case(payload.title.strip()) or payload.title,
                priority=payload.priority,
                note=title_case(payload.note),
                status=TaskStatus.PENDING,
                deadline=ensure_utc(payload.deadline) if payload.deadline else None,
                created_time=now,
                updated_at=now,
                edit_time=[],
                reminder_time=merge_stamps([], *payload.reminder_time),
                reviewed_time=[],
                document=merge_documents(payload.document, uris),
                is_self_task=bool(
                    payload.assigned_to == actor_id
                    and not payload.target_group_id
                    and not payload.target_team_id
                ),
                project_id=payload.project_id,
                created_by=actor_id,
                assigned_to=payload.assigned_to,
                target_team_id=payload.target_team_id,
                target_group_id=payload.target_group_id,
            )
            try:
                self.store.insert_pending(session, row)
                if row.target_group_id:
                    members = self.ledger.group_member_ids(session, row.target_group_id)
                    self.ledger.open_claims(session, row, members, exclude=actor_id)
                session.commit()
                break
            except IntegrityError as exc:
                session.rollback()
                if attempt == 1:
                    raise ConflictError("task number already taken") from exc
                log.warning("task_number_conflict", task_no=task_no)
        if row is None:
            raise ConflictError("task number already taken")

        events: list[TaskEvent] = []
        for recipient_id in self._addressees(session, row, actor_id):
            via_group = bool(row.target_group_id) and recipient_id not in {row.assigned_to, row.target_team_id}
            target = "your group" if via_group else "you"
            events.append(
                Notify(
                    recipient_id,
                    "New Task Assigned",
                    f'A new task "{row.title}" has been assigned to {target}.',
                    metadata=_meta(row),
                )
            )
        events.append(
            Activity(
                actor_id,
                row.id,
                row.task_no,
                ACTIVITY_TASK_CREATED,
                f"Task created: {row.title}",
                {"status": TaskStatus.PENDING.value},
            )
        )
        assignee_name = self._addressee_name(session, row)
        if assignee_name:
            events.append(
                Activity(
                    actor_id,
                    row.id,
                    row.task_no,
                    ACTIVITY_TASK_ASSIGNED,
                    f"Task assigned to {assignee_name}",
                    {"assignee_name": assignee_name},
                )
            )
        return TransitionResult(self.store.hydrate_one(session, row), events)

    def submit_for_review(
        self,
        session: Session,
        task_id: str,
        remark: str | None,
        actor_id: str,
        files: list[UploadedFile] | None = None,
    ) -> TransitionResult:
        row = self._load_pending(session, task_id)
        already_in_review = row.status == TaskStatus.REVIEW_PENDING
        if not can_task_transition(row.status, TaskStatus.REVIEW_PENDING):
            raise InvalidStateError("only pending tasks can be submitted for review")

        if row.assigned_to:
            allowed = row.assigned_to == actor_id
        elif row.target_group_id:
            raise ForbiddenError("group task must be accepted before it can be submitted")
        elif row.target_team_id:
            allowed = row.target_team_id == actor_id
        else:
            allowed = row.created_by == actor_id
        if not allowed:
            raise ForbiddenError("only the assignee can submit this task for review")

        if not remark or not remark.strip():
            raise ValidationError("remark is required")
        remark = remark.strip()

        now = self._now()
        uris = store_files(self.uploader, row.task_no, files)
        row.status = TaskStatus.REVIEW_PENDING
        row.remark = remark
        row.working_by = actor_id
        row.reviewed_time = merge_stamps(row.reviewed_time, now)
        row.document = merge_documents(row.document, uris)
        row.updated_at = now
        session.add(row)
        session.commit()

        events: list[TaskEvent] = []
        if row.created_by != actor_id:
            if already_in_review:
                notify = Notify(
                    row.created_by,
                    "New Remark on Task",
                    f'Assignee has added a new remark to task "{row.title}" ({row.task_no}).',
                    metadata=_meta(row, status="Remark Added"),
                )
            else:
                notify = Notify(
                    row.created_by,
                    "Task Submitted for Review",
                    f'Task "{row.title}" ({row.task_no}) has been submitted for review.',
                    metadata=_meta(row, status=TaskStatus.REVIEW_PENDING.value),
                )
            events.append(notify)
        if not already_in_review:
            events.append(
                Activity(
                    actor_id,
                    row.id,
                    row.task_no,
                    ACTIVITY_TASK_STATUS_CHANGE,
                    "Submitted for review",
                    {"status": TaskStatus.REVIEW_PENDING.value, "previous_status": TaskStatus.PENDING.value},
                )
            )
        events.append(Activity(actor_id, row.id, row.task_no, ACTIVITY_TASK_REMARK, remark, {"remark": remark}))
        events.extend(self._file_events(actor_id, row, files))
        return TransitionResult(self.store.hydrate_one(session, row), events)

    def reject_task(
        self,
        session: Session,
        task_id: str,
        remark: str | None,
        actor_id: str,
        files: list[UploadedFile] | None = None,
    ) -> TransitionResult:
        row = self._load_pending(session, task_id)
        if row.status != TaskStatus.REVIEW_PENDING:
            raise InvalidStateError("only tasks in review can be rejected")
        if row.created_by != actor_id:
            raise ForbiddenError("only the task creator can reject a task")

        now = self._now()
        uris = store_files(self.uploader, row.task_no, files)
        row.status = TaskStatus.PENDING
        if remark and remark.strip():
            row.remark = remark.strip()
        row.reviewed_time = merge_stamps(row.reviewed_time, now)
        row.document = merge_documents(row.document, uris)
        row.updated_at = now
        session.add(row)
        session.commit()

        reason = row.remark or ""
        events: list[TaskEvent] = [
            Notify(
                recipient_id,
                "Task Rejected",
                f'Your work on task "{row.title}" ({row.task_no}) has been rejected. Reason: {reason}',
                metadata=_meta(row, status=TaskStatus.PENDING.value),
            )
            for recipient_id in self._workers(row, actor_id)
        ]
        events.append(
            Activity(
                actor_id,
                row.id,
                row.task_no,
                ACTIVITY_TASK_STATUS_CHANGE,
                "Review rejected, task returned to pending",
                {"status": TaskStatus.PENDING.value, "previous_status": TaskStatus.REVIEW_PENDING.value},
            )
        )
        if remark and remark.strip():
            events.append(
                Activity(actor_id, row.id, row.task_no, ACTIVITY_TASK_REMARK, remark.strip(), {"remark": remark.strip()})
            )
        events.extend(self._file_events(actor_id, row, files))
        return TransitionResult(self.store.hydrate_one(session, row), events)

    def finalize_completion(
        self,
        session: Session,
        task_id: str,
        remark: str | None,
        actor_id: str,
        files: list[UploadedFile] | None = None,
    ) -> TransitionResult:
        location, row = self.store.find(session, task_id)
        if row.created_by != actor_id:
            raise ForbiddenError("only the task creator can finalize a task")
        if location == TaskLocation.COMPLETED:
            return TransitionResult(self.store.hydrate_one(session, row))
        if row.status != TaskStatus.REVIEW_PENDING:
            raise InvalidStateError("only tasks in review can be finalized")

        workers = self._workers(row, actor_id)
        title, task_no = row.title, row.task_no
        now = self._now()
        uris = store_files(self.uploader, row.task_no, files)
        overrides: dict[str, Any] = {
            "status": TaskStatus.COMPLETED,
            "complete_time": now,
            "completed_at": now,
            "reviewed_time": merge_stamps(row.reviewed_time, now),
            "document": merge_documents(row.document, uris),
            "remark": remark.strip() if remark and remark.strip() else row.remark,
            "working_by": row.working_by or actor_id,
            "updated_at": now,
        }
        moved, relocated = self._relocate(session, task_id, TaskLocation.PENDING, TaskLocation.COMPLETED, overrides)
        task = self.store.hydrate_one(session, moved)
        if not relocated:
            return TransitionResult(task)

        events: list[TaskEvent] = [
            Notify(
                recipient_id,
                "Task Completed",
                f'Your task "{title}" ({task_no}) has been successfully finalized.',
                metadata=_meta(moved, status=TaskStatus.COMPLETED.value),
            )
            for recipient_id in workers
        ]
        events.append(
            Activity(
                actor_id,
                moved.id,
                task_no,
                ACTIVITY_TASK_STATUS_CHANGE,
                "Task marked as Completed",
                {"status": TaskStatus.COMPLETED.value, "previous_status": TaskStatus.REVIEW_PENDING.value},
            )
        )
        if remark and remark.strip():
            events.append(
                Activity(actor_id, moved.id, task_no, ACTIVITY_TASK_REMARK, remark.strip(), {"remark": remark.strip()})
            )
        events.extend(self._file_events(actor_id, moved, files))
        return TransitionResult(task, events)

    def revert_to_pending(self, session: Session, task_id: str, actor_id: str) -> TransitionResult:
        row = self.store.get(session, TaskLocation.COMPLETED, task_id)
        if row is None:
            if self.store.get(session, TaskLocation.PENDING, task_id) is not None:
                raise InvalidStateError("only completed tasks can be reverted")
            raise NotFoundError("completed task not found")
        if row.created_by != actor_id:
            raise ForbiddenError("only the task creator can revert a completed task")

        workers = self._workers(row, actor_id)
        title, task_no = row.title, row.task_no
        overrides: dict[str, Any] = {"status": TaskStatus.PENDING, "updated_at": self._now()}
        moved, relocated = self._relocate(session, task_id, TaskLocation.COMPLETED, TaskLocation.PENDING, overrides)
        task = self.store.hydrate_one(session, moved)
        if not relocated:
            return TransitionResult(task)

        events: list[TaskEvent] = [
            Notify(
                recipient_id,
                "Task Reverted to Pending",
                f'Task "{title}" ({task_no}) has been moved back to pending.',
                metadata=_meta(moved, status=TaskStatus.PENDING.value),
            )
            for recipient_id in workers
        ]
        events.append(
            Activity(
                actor_id,
                moved.id,
                task_no,
                ACTIVITY_TASK_STATUS_CHANGE,
                "Task reverted to Pending",
                {"status": TaskStatus.PENDING.value, "previous_status": TaskStatus.COMPLETED.value},
            )
        )
        return TransitionResult(task, events)

    def update_acceptance_status(
        self,
        session: Session,
        acceptance_id: str,
        status: AcceptanceStatus,
        actor_id: str,
    ) -> TransitionResult:
        acceptance = self.ledger.get(session, acceptance_id)
        if acceptance is None or acceptance.user_id != actor_id:
            raise NotFoundError("task acceptance record not found")
        if status == AcceptanceStatus.PENDING:
            raise ValidationError("acceptance can only be accepted or rejected")
        row = self.store.get(session, TaskLocation.PENDING, acceptance.task_id)
        if not isinstance(row, PendingTask):
            raise InvalidStateError("task is no longer open for acceptance")

        # the current holder accepting again confirms the claim and leaves the task untouched
        confirming = status == AcceptanceStatus.ACCEPTED and row.assigned_to == actor_id
        released = False
        try:
            if status == AcceptanceStatus.ACCEPTED:
                if not confirming:
                    self.ledger.claim(session, row.id, actor_id)
                self.ledger.mark(session, acceptance, AcceptanceStatus.ACCEPTED)
                self.ledger.reject_siblings(session, row.id, acceptance.id)
            else:
                released = self.ledger.release(session, row.id, actor_id)
                self.ledger.mark(session, acceptance, AcceptanceStatus.REJECTED)
            session.commit()
        except ConflictError:
            session.rollback()
            raise
        session.refresh(row)
        session.refresh(acceptance)
        if confirming:
            return TransitionResult(self.store.hydrate_one(session, row), [], acceptance)

        actor = session.get(User, actor_id)
        actor_name = actor.name if actor is not None else "A member"
        members = self.ledger.group_member_ids(session, row.target_group_id) if row.target_group_id else []
        events: list[TaskEvent] = []
        if status == AcceptanceStatus.ACCEPTED:
            if row.created_by != actor_id:
                events.append(
                    Notify(
                        row.created_by,
                        "Task Accepted",
                        f'A member has accepted the task "{row.title}" ({row.task_no}).',
                        metadata=_meta(row),
                    )
                )
            for member_id in _unique(members, exclude=actor_id):
                events.append(
                    Notify(
                        member_id,
                        "Task Accepted by Peer",
                        f'The task "{row.title}" ({row.task_no}) has been accepted by someone else in your group.',
                        metadata=_meta(row),
                    )
                )
            events.append(
                Activity(
                    actor_id,
                    row.id,
                    row.task_no,
                    ACTIVITY_TASK_ASSIGNED,
                    f"Task accepted by {actor_name}",
                    {"assignee_name": actor_name},
                )
            )
        else:
            if row.created_by != actor_id:
                events.append(
                    Notify(
                        row.created_by,
                        "Task Acceptance Rejected",
                        f'A group member has declined the task "{row.title}" ({row.task_no}).',
                        metadata=_meta(row),
                    )
                )
            if released:
                for member_id in _unique(members, exclude=actor_id):
                    events.append(
                        Notify(
                            member_id,
                            "Task Available Again",
                            f'The task "{row.title}" ({row.task_no}) is open for acceptance again.',
                            metadata=_meta(row),
                        )
                    )
                events.append(
                    Activity(
                        actor_id,
                        row.id,
                        row.task_no,
                        ACTIVITY_TASK_ASSIGNED,
                        f"Task released by {actor_name}",
                        {"assignee_name": None},
                    )
                )
        return TransitionResult(self.store.hydrate_one(session, row), events, acceptance)

    def send_reminder(self, session: Session, task_id: str, actor_id: str) -> TransitionResult:
        location, row = self.store.find(session, task_id)
        if row.created_by != actor_id:
            raise ForbiddenError("only the task creator can send a reminder")
        recipients = self._addressees(session, row, actor_id)
        if not recipients:
            raise ValidationError("no recipients found to send reminder to")

        if row.target_group_id and location == TaskLocation.PENDING:
            reopened = [user_id for user_id in recipients if user_id != row.assigned_to]
            self.ledger.reopen_claims(session, row.id, row.target_group_id, reopened)
        now = self._now()
        row.reminder_time = merge_stamps(row.reminder_time, now)
        row.updated_at = now
        session.add(row)
        session.commit()

        events: list[TaskEvent] = [
            Notify(
                recipient_id,
                "Task Reminder",
                f'Reminder for task: "{row.title}". Please check and update.',
                metadata=_meta(row, kind="REMINDER"),
            )
            for recipient_id in recipients
        ]
        return TransitionResult(self.store.hydrate_one(session, row), events)

    def update(
        self,
        session: Session,
        task_id: str,
        payload: TaskUpdate,
        actor_id: str,
        role: str | None,
        files: list[UploadedFile] | None = None,
    ) -> TransitionResult:
        if not is_privileged_role(role):
            raise ForbiddenError("only privileged roles can edit tasks")
        location, row = self.store.find(session, task_id)
        self._ensure_refs(session, payload)
        fields = payload.model_fields_set

        previous_status = row.status
        status_changed = False
        if "status" in fields and payload.status is not None and payload.status != row.status:
            if (
                location != TaskLocation.PENDING
                or payload.status == TaskStatus.COMPLETED
                or not can_task_transition(row.status, payload.status)
            ):
                raise InvalidStateError(f"cannot change status from {row.status} to {payload.status}")
            row.status = payload.status
            status_changed = True

        remark_changed = False
        if "remark" in fields and payload.remark and title_case(payload.remark) != row.remark:
            row.remark = title_case(payload.remark)
            remark_changed = True

        general_changed: list[str] = []
        if "title" in fields and payload.title:
            row.title = title_case(payload.title.strip()) or payload.title
            general_changed.append("title")
        if "note" in fields:
            row.note = title_case(payload.note)
            general_changed.append("note")
        if "deadline" in fields:
            row.deadline = ensure_utc(payload.deadline) if payload.deadline else None
            general_changed.append("deadline")
        if "priority" in fields and payload.priority:
            row.priority = payload.priority
            general_changed.append("priority")
        if "project_id" in fields:
            row.project_id = payload.project_id
            general_changed.append("project_id")

        previous_assignment = {name: getattr(row, name) for name in _ASSIGNMENT_FIELDS}
        for name in (*_ASSIGNMENT_FIELDS, "working_by"):
            if name in fields:
                setattr(row, name, getattr(payload, name))
        assignment_changed = any(getattr(row, name) != previous_assignment[name] for name in _ASSIGNMENT_FIELDS)
        if assignment_changed:
            row.is_self_task = bool(
                row.assigned_to == row.created_by and not row.target_group_id and not row.target_team_id
            )

        now = self._now()
        uris = store_files(self.uploader, row.task_no, files)
        base_document = payload.document if "document" in fields else row.document
        row.document = merge_documents(base_document, uris)
        if payload.reminder_time is not None:
            row.reminder_time = merge_stamps(row.reminder_time, *payload.reminder_time)
        if payload.reviewed_time is not None:
            row.reviewed_time = merge_stamps(row.reviewed_time, *payload.reviewed_time)
        row.edit_time = merge_stamps(row.edit_time, now)
        row.updated_at = now
        session.add(row)

        if (
            assignment_changed
            and location == TaskLocation.PENDING
            and isinstance(row, PendingTask)
            and row.target_group_id
            and row.target_group_id != previous_assignment["target_group_id"]
            and not row.assigned_to
        ):
            members = self.ledger.group_member_ids(session, row.target_group_id)
            self.ledger.open_claims(session, row, members, exclude=row.created_by)
        session.commit()

        events: list[TaskEvent] = []
        if assignment_changed:
            new_recipient = None
            if row.assigned_to and row.assigned_to != previous_assignment["assigned_to"]:
                new_recipient = row.assigned_to
            elif row.target_team_id and row.target_team_id != previous_assignment["target_team_id"]:
                new_recipient = row.target_team_id
            if new_recipient and new_recipient != actor_id:
                events.append(
                    Notify(
                        new_recipient,
                        "Task Re-Assigned",
                        f'Task "{row.title}" has been re-assigned to you.',
                        metadata=_meta(row),
                    )
                )

        worker_id = self._primary_worker(row)
        if worker_id == actor_id:
            worker_id = None
        if status_changed:
            if worker_id:
                events.append(
                    Notify(
                        worker_id,
                        "Task Status Updated",
                        f'The status of task "{row.title}" has been updated to {row.status}.',
                        metadata=_meta(row, status=row.status.value),
                    )
                )
            activity = Activity(
                actor_id,
                row.id,
                row.task_no,
                ACTIVITY_TASK_STATUS_CHANGE,
                f"Status changed to {row.status}",
                {"status": row.status.value, "previous_status": previous_status.value},
            )
        elif remark_changed:
            if worker_id:
                events.append(
                    Notify(
                        worker_id,
                        "New Remark on Task",
                        f'A new remark has been added to task "{row.title}" ({row.task_no}).',
                        metadata=_meta(row, remark=row.remark),
                    )
                )
            activity = Activity(
                actor_id, row.id, row.task_no, ACTIVITY_TASK_REMARK, row.remark or "", {"remark": row.remark}
            )
        elif assignment_changed:
            assignee_name = self._addressee_name(session, row)
            activity = Activity(
                actor_id,
                row.id,
                row.task_no,
                ACTIVITY_TASK_ASSIGNED,
                f"Task re-assigned to {assignee_name}" if assignee_name else "Task unassigned",
                {"assignee_name": assignee_name},
            )
        elif general_changed:
            if worker_id:
                events.append(
                    Notify(
                        worker_id,
                        "Task Details Updated",
                        f'The task "{row.title}" ({row.task_no}) has been updated by the creator.',
                        metadata=_meta(row),
                    )
                )
            activity = Activity(
                actor_id,
                row.id,
                row.task_no,
                ACTIVITY_TASK_UPDATED,
                "Task details updated",
                {"updated_fields": general_changed},
            )
        elif uris:
            names = [item.filename for item in files or [] if item.content]
            activity = Activity(
                actor_id,
                row.id,
                row.task_no,
                ACTIVITY_TASK_FILE_ADDED,
                f"{len(names)} file(s) added",
                {"files": names},
            )
        else:
            activity = Activity(
                actor_id,
                row.id,
                row.task_no,
                ACTIVITY_TASK_UPDATED,
                "Task details updated",
                {"updated_fields": sorted(fields)},
            )
        events.append(activity)
        return TransitionResult(self.store.hydrate_one(session, row), events)
