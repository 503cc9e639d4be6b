from __future__ import annotations


class TaskError(Exception):
    pass


class NotFoundError(TaskError):
    pass


class ForbiddenError(TaskError):
    pass


class InvalidStateError(TaskError):
    pass


class ConflictError(TaskError):
    pass


class ValidationError(TaskError):
    pass
