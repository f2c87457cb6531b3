"""Ordering helpers for task collections."""

from __future__ import annotations

from datetime import date

from tasklane.models import Task, WhenType


def is_task_today(task: Task, today: date | None = None) -> bool:
    """Check if a task is planned for today.

    A task is "today" when its when_type is ``today``, or when it is scheduled
    with ``when_date`` equal to today's date.
    """
    if task.when_type is WhenType.TODAY:
        return True
    if task.when_type is WhenType.SCHEDULED and task.when_date is not None:
        return task.when_date == (today or date.today())
    return False


def sort_tasks_by_sort_order(tasks: list[Task]) -> list[Task]:
    """Sort tasks by sort_order only (stable for equal keys)."""
    return sorted(tasks, key=lambda t: t.sort_order)


def sort_tasks_today_first(tasks: list[Task], today: date | None = None) -> list[Task]:
    """Sort "today" tasks first, then by sort_order within each group."""
    today = today or date.today()
    return sorted(tasks, key=lambda t: (not is_task_today(t, today), t.sort_order))
