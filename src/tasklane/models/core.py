"""Task data models."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .recurrence import RecurrenceRule


class TaskStatus(str, Enum):
    """Workflow status of a task (also the kanban column)."""

    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    CANCELED = "canceled"


class WhenType(str, Enum):
    """Which list a task is planned into."""

    INBOX = "inbox"
    TODAY = "today"
    ANYTIME = "anytime"
    SOMEDAY = "someday"
    SCHEDULED = "scheduled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class InboxType(str, Enum):
    PERSONAL = "personal"
    TEAM = "team"


class ChecklistItem(BaseModel):
    """A single checklist entry inside a task."""

    id: str
    text: str
    completed: bool = False


class Task(BaseModel):
    """Task model representing a complete task entity.

    Attributes:
        id: Unique identifier for the task
        title: Main task text
        notes: Optional free-form notes
        status: Workflow status
        completed_at: Set while the task is done
        when_type: Planning list; cleared while the task is done
        when_date: Date the task is scheduled for (when_type=scheduled)
        deadline: Optional hard deadline
        priority: Optional priority
        assignee_id: Assigned user
        project_id: Parent project
        area_id: Parent area
        heading_id: Heading inside the project
        inbox_type: Personal or team inbox attribution
        inbox_user_id: Owner of a personal inbox entry
        is_inbox: Whether the task lives in an inbox
        tags: Tag IDs
        checklist_items: Ordered checklist
        sort_order: Position key within list/kanban views
        recurrence_rule: Optional recurrence rule
        created_by: Creating user
        created_at: Creation timestamp
        updated_at: Last update timestamp
        deleted_at: Soft-deletion timestamp
    """

    id: str
    title: str
    notes: str | None = None
    status: TaskStatus = TaskStatus.TODO
    completed_at: datetime | None = None
    when_type: WhenType | None = WhenType.INBOX
    when_date: date | None = None
    deadline: date | None = None
    priority: TaskPriority | None = None
    assignee_id: str | None = None
    project_id: str | None = None
    area_id: str | None = None
    heading_id: str | None = None
    inbox_type: InboxType | None = None
    inbox_user_id: str | None = None
    is_inbox: bool = False
    tags: list[str] = Field(default_factory=list)
    checklist_items: list[ChecklistItem] = Field(default_factory=list)
    sort_order: int = 0
    recurrence_rule: Optional[RecurrenceRule] = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_done(self) -> bool:
        return self.status is TaskStatus.DONE


class TaskCreate(BaseModel):
    """Model for creating a new task.

    ``when_type`` and ``is_inbox`` are derived from ``project_id`` when omitted.
    """

    title: str = Field(min_length=1)
    notes: str | None = None
    status: TaskStatus = TaskStatus.TODO
    when_type: WhenType | None = None
    when_date: date | None = None
    deadline: date | None = None
    priority: TaskPriority | None = None
    assignee_id: str | None = None
    project_id: str | None = None
    area_id: str | None = None
    heading_id: str | None = None
    inbox_type: InboxType | None = None
    inbox_user_id: str | None = None
    is_inbox: bool | None = None
    tags: list[str] = Field(default_factory=list)
    checklist_items: list[ChecklistItem] = Field(default_factory=list)
    sort_order: int | None = None
    recurrence_rule: Optional[RecurrenceRule] = None
    created_by: str | None = None


class TaskUpdate(BaseModel):
    """Model for updating an existing task.

    All fields are optional - only explicitly provided fields are applied,
    so ``None`` can be used to clear a value.
    """

    title: str | None = Field(default=None, min_length=1)
    notes: str | None = None
    status: TaskStatus | None = None
    completed_at: datetime | None = None
    when_type: WhenType | None = None
    when_date: date | None = None
    deadline: date | None = None
    priority: TaskPriority | None = None
    assignee_id: str | None = None
    project_id: str | None = None
    area_id: str | None = None
    heading_id: str | None = None
    inbox_type: InboxType | None = None
    inbox_user_id: str | None = None
    is_inbox: bool | None = None
    tags: list[str] | None = None
    checklist_items: list[ChecklistItem] | None = None
    sort_order: int | None = None
    recurrence_rule: Optional[RecurrenceRule] = None
    deleted_at: datetime | None = None

    def changes(self) -> dict:
        """Return only the explicitly-set fields."""
        return self.model_dump(exclude_unset=True)


class TaskScope(BaseModel):
    """Describes which tasks a view's collection holds.

    Attributes:
        project_id: Only tasks of this project
        area_id: Only tasks of this area
        when_type: Only tasks planned into this list
        statuses: Only tasks in one of these statuses
        include_done: Whether done tasks belong to the view
        today_first: Sort "today" tasks ahead of the rest on fetch
    """

    project_id: str | None = None
    area_id: str | None = None
    when_type: WhenType | None = None
    statuses: list[TaskStatus] | None = None
    include_done: bool = True
    today_first: bool = False

    def matches(self, task: Task) -> bool:
        """Return True if *task* belongs in a collection with this scope."""
        if task.deleted_at is not None:
            return False
        if self.project_id is not None and task.project_id != self.project_id:
            return False
        if self.area_id is not None and task.area_id != self.area_id:
            return False
        if self.when_type is not None and task.when_type != self.when_type:
            return False
        if self.statuses is not None and task.status not in self.statuses:
            return False
        if not self.include_done and task.is_done:
            return False
        return True


def default_when_type(project_id: str | None) -> WhenType:
    """Planning list for a new task, or for a task leaving ``done``."""
    return WhenType.ANYTIME if project_id else WhenType.INBOX
