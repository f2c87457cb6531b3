"""tasklane domain models.

This package contains Pydantic models that represent the core domain entities:
tasks, the scope of a view's collection, and recurrence rules.
"""

from .core import (
    ChecklistItem,
    InboxType,
    Task,
    TaskCreate,
    TaskPriority,
    TaskScope,
    TaskStatus,
    TaskUpdate,
    WhenType,
    default_when_type,
)
from .exceptions import (
    RemoteWriteError,
    SpawnError,
    TaskLaneError,
    TaskNotFoundError,
    ValidationError,
)
from .recurrence import (
    LAST_DAY,
    DailyRule,
    EndType,
    MonthlyRule,
    RecurrenceRule,
    RecurrenceType,
    WeeklyRule,
    YearlyRule,
    parse_rule,
)

__all__ = [
    # Task models
    "Task",
    "TaskCreate",
    "TaskUpdate",
    "TaskScope",
    "TaskStatus",
    "TaskPriority",
    "WhenType",
    "InboxType",
    "ChecklistItem",
    "default_when_type",
    # Recurrence models
    "RecurrenceRule",
    "RecurrenceType",
    "EndType",
    "DailyRule",
    "WeeklyRule",
    "MonthlyRule",
    "YearlyRule",
    "LAST_DAY",
    "parse_rule",
    # Errors
    "TaskLaneError",
    "ValidationError",
    "TaskNotFoundError",
    "RemoteWriteError",
    "SpawnError",
]
