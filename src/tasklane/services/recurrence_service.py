"""Recurrence service - creates the next occurrence of a completed series.

Spawning is best-effort and at-most-once: completing the original task is
authoritative, and a spawn that fails is logged and never retried.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta

from tasklane.models import (
    ChecklistItem,
    RecurrenceType,
    SpawnError,
    Task,
    TaskCreate,
    TaskStatus,
    WhenType,
)
from tasklane.utils.logger import get_logger
from tasklane.utils.recurrence import next_occurrence, should_continue

CreateTask = Callable[[TaskCreate], Awaitable[Task]]


def build_next_occurrence(task: Task, candidate: date) -> TaskCreate:
    """Build the creation payload for the occurrence following ``task``.

    Attribution fields are copied, the checklist is reset, the task is scheduled
    on ``candidate`` and the rule records one more completion.
    """
    rule = task.recurrence_rule
    deadline = task.deadline
    if rule.deadline_days_before is not None:
        deadline = candidate - timedelta(days=rule.deadline_days_before)

    return TaskCreate(
        title=task.title,
        notes=task.notes,
        status=TaskStatus.TODO,
        when_type=WhenType.SCHEDULED,
        when_date=candidate,
        deadline=deadline,
        priority=task.priority,
        assignee_id=task.assignee_id,
        project_id=task.project_id,
        area_id=task.area_id,
        heading_id=task.heading_id,
        inbox_type=task.inbox_type,
        inbox_user_id=task.inbox_user_id,
        is_inbox=task.is_inbox,
        tags=list(task.tags),
        checklist_items=[
            ChecklistItem(id=str(uuid.uuid4()), text=item.text, completed=False)
            for item in task.checklist_items
        ],
        recurrence_rule=rule.with_completion(candidate),
        created_by=task.created_by,
    )


class RecurrenceSpawner:
    """Creates the next task of an ``after_completion`` series.

    Args:
        create_task: Coroutine function inserting a task (the gateway's create)
        clock: Returns the current datetime; its date is the anchor
    """

    def __init__(
        self,
        create_task: CreateTask,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.create_task = create_task
        self.clock = clock

    def plan(self, task: Task) -> TaskCreate | None:
        """Return the next occurrence payload, or None if the series ends here."""
        rule = task.recurrence_rule
        if rule is None or rule.type is not RecurrenceType.AFTER_COMPLETION:
            return None

        candidate = next_occurrence(rule, self.clock())
        if not should_continue(rule, candidate):
            get_logger("recurrence").info(
                "series ended for task %s (completed_count=%d, candidate=%s)",
                task.id,
                rule.completed_count,
                candidate.isoformat(),
            )
            return None
        return build_next_occurrence(task, candidate)

    async def spawn(self, task: Task) -> Task | None:
        """Create the next occurrence of a just-completed task.

        Never raises: failures are logged as SpawnError.

        Returns:
            The created task, or None if nothing was created
        """
        logger = get_logger("recurrence")
        try:
            payload = self.plan(task)
            if payload is None:
                return None
            created = await self.create_task(payload)
        except Exception as e:
            error = SpawnError(f"Failed to spawn next occurrence of task {task.id}: {e}")
            logger.warning("%s", error, exc_info=e)
            return None

        logger.info(
            "spawned task %s from %s scheduled on %s",
            created.id,
            task.id,
            payload.when_date.isoformat(),
        )
        return created
