from __future__ import annotations

import os

from sqlmodel import Session, func, select

from taskflow.domain.models import CompletedTask, PendingTask, TaskIdentity

TASK_NUMBER_PREFIX = os.getenv("TASK_NUMBER_PREFIX", "T-")
TASK_NUMBER_START = int(os.getenv("TASK_NUMBER_START", "11101"))
MAX_PROBES = 10_000


class TaskNumberGenerator:
    def __init__(self, prefix: str | None = None, start: int | None = None) -> None:
        self.prefix = TASK_NUMBER_PREFIX if prefix is None else prefix
        self.start = TASK_NUMBER_START if start is None else start

    def _numeric_suffix(self, task_no: str) -> int | None:
        if not task_no.lower().startswith(self.prefix.lower()):
            return None
        digits = task_no[len(self.prefix) :]
        return int(digits) if digits.isdigit() else None

    def _highest(self, session: Session) -> int:
        highest = self.start - 1
        for model in (PendingTask, CompletedTask):
            # longest digit run first, then lexical, so the first numeric hit is the table maximum
            rows = session.exec(
                select(model.task_no)
                .where(model.task_no.startswith(self.prefix))
                .order_by(func.length(model.task_no).desc(), model.task_no.desc())
            )
            for task_no in rows:
                value = self._numeric_suffix(task_no)
                if value is not None:
                    highest = max(highest, value)
                    break
        return highest

    def _taken(self, session: Session, task_no: str) -> bool:
        return session.exec(select(TaskIdentity.id).where(TaskIdentity.task_no == task_no)).first() is not None

    def next(self, session: Session) -> str:
        candidate = self._highest(session) + 1
        for _ in range(MAX_PROBES):
            task_no = f"{self.prefix}{candidate}"
            if not self._taken(session, task_no):
                return task_no
            candidate += 1
        raise RuntimeError("unable to allocate a task number")
