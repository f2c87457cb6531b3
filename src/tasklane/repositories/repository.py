"""Repository abstraction layer for tasklane.

This module defines the abstract base classes (interfaces) for the backends the
mutation gateway talks to, following the hexagonal architecture (Ports &
Adapters) pattern. The backend is opaque: it is addressed by task id and only
has to understand the task field names.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from tasklane.models import Task, TaskScope, TaskUpdate


class TaskRepository(ABC):
    """Abstract base class for task persistence operations."""

    @abstractmethod
    async def list_all(self, scope: TaskScope) -> list[Task]:
        """List the non-deleted tasks belonging to a view's scope.

        Args:
            scope: TaskScope describing the view

        Returns:
            List of Task objects, in no guaranteed order
        """
        raise NotImplementedError(
            "TaskRepository.list_all() must be implemented by adapter"
        )

    @abstractmethod
    async def get(self, task_id: str) -> Task:
        """Get a specific task by ID.

        Raises:
            NotImplementedError: Must be implemented by concrete adapter
        """
        raise NotImplementedError("TaskRepository.get() must be implemented by adapter")

    @abstractmethod
    async def add(self, task: Task) -> Task:
        """Persist a new task.

        The task already carries its client-generated ID.

        Args:
            task: Fully-populated Task

        Returns:
            The stored Task as reported by the backend
        """
        raise NotImplementedError("TaskRepository.add() must be implemented by adapter")

    @abstractmethod
    async def update(self, task_id: str, updates: TaskUpdate) -> Task:
        """Write the explicitly-set fields of ``updates`` to a task.

        Args:
            task_id: Unique identifier for the task
            updates: TaskUpdate object with fields to update

        Returns:
            Updated Task object
        """
        raise NotImplementedError(
            "TaskRepository.update() must be implemented by adapter"
        )

    @abstractmethod
    async def soft_delete(self, task_id: str, deleted_at: datetime) -> None:
        """Mark a task as deleted without removing it.

        Args:
            task_id: Unique identifier for the task
            deleted_at: Deletion timestamp to store
        """
        raise NotImplementedError(
            "TaskRepository.soft_delete() must be implemented by adapter"
        )


class TimeEntryRepository(ABC):
    """Abstract base class for the time-tracking collaborator."""

    @abstractmethod
    async def has_time(self, task_id: str) -> bool:
        """Return True if any (non-deleted) time entry exists for the task."""
        raise NotImplementedError(
            "TimeEntryRepository.has_time() must be implemented by adapter"
        )

    @abstractmethod
    async def add_entry(self, task_id: str, duration_seconds: int) -> None:
        """Record a manual time entry for a task.

        Args:
            task_id: Task the time was spent on
            duration_seconds: Duration in seconds (> 0)
        """
        raise NotImplementedError(
            "TimeEntryRepository.add_entry() must be implemented by adapter"
        )
