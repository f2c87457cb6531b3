"""Custom exceptions for tasklane."""

from __future__ import annotations

from collections.abc import Iterable


class TaskLaneError(Exception):
    """Base exception for all tasklane errors."""


class ValidationError(TaskLaneError, ValueError):
    """Raised when a rule or task payload is malformed.

    Validation always happens before any local or remote change is made.
    """


class TaskNotFoundError(TaskLaneError, KeyError):
    """Raised when a task id is not present in the view's collection."""

    def __init__(self, task_id: str):
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"


class RemoteWriteError(TaskLaneError):
    """Raised when the backend rejects a write; local state was rolled back."""

    def __init__(self, message: str, task_ids: Iterable[str] = ()):
        super().__init__(message)
        self.task_ids = tuple(task_ids)


class SpawnError(TaskLaneError):
    """Raised internally when the next occurrence of a series can't be created.

    Never propagated to the caller completing the task.
    """
