"""Per-view in-memory task collection.

The store is the only thing a view reads. It keeps tasks in display order,
keyed by id, and lets the mutation gateway snapshot and restore individual
tasks around an optimistic write.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from tasklane.models import Task, TaskNotFoundError, TaskScope


@dataclass
class _Entry:
    task: Task | None
    index: int
    version: int
    after: str | None = None


@dataclass
class StoreSnapshot:
    """Pre-mutation state of a set of tasks.

    ``task`` is ``None`` for ids that were absent when the snapshot was taken.
    ``applied`` holds the per-id versions right after the optimistic apply and
    is filled in by :meth:`TaskStore.mark_applied`.
    """

    entries: dict[str, _Entry]
    applied: dict[str, int] = field(default_factory=dict)

    @property
    def task_ids(self) -> tuple[str, ...]:
        return tuple(self.entries)

    def task(self, task_id: str) -> Task | None:
        return self.entries[task_id].task


class TaskStore:
    """Ordered, keyed collection of tasks for one view.

    Every write bumps a per-id version counter. Rollbacks use it to avoid
    clobbering a newer mutation of the same task.
    """

    def __init__(self, scope: TaskScope | None = None, tasks: Iterable[Task] = ()):
        self.scope = scope or TaskScope()
        self._order: list[str] = []
        self._tasks: dict[str, Task] = {}
        self._versions: dict[str, int] = {}
        self.generation = 0
        if tasks:
            self.replace_all(tasks)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Task]:
        return iter([self._tasks[task_id] for task_id in self._order])

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    @property
    def tasks(self) -> list[Task]:
        """Tasks in display order."""
        return list(self)

    @property
    def ids(self) -> list[str]:
        return list(self._order)

    def get(self, task_id: str) -> Task:
        """Get a task by id.

        Raises:
            TaskNotFoundError: If the task is not in this collection
        """
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskNotFoundError(task_id) from None

    def find(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def index_of(self, task_id: str) -> int:
        if task_id not in self._tasks:
            raise TaskNotFoundError(task_id)
        return self._order.index(task_id)

    def version(self, task_id: str) -> int:
        return self._versions.get(task_id, 0)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _touch(self, task_id: str) -> None:
        self._versions[task_id] = self._versions.get(task_id, 0) + 1
        self.generation += 1

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Replace the whole collection, keeping the given order.

        Raises:
            ValueError: If two tasks share an id
        """
        order: list[str] = []
        by_id: dict[str, Task] = {}
        for task in tasks:
            if task.id in by_id:
                raise ValueError(f"Duplicate task id: {task.id}")
            order.append(task.id)
            by_id[task.id] = task
        for task_id in set(self._tasks) | set(by_id):
            self._touch(task_id)
        self._order = order
        self._tasks = by_id

    def insert(self, task: Task, index: int | None = None) -> None:
        """Insert a new task at ``index`` (appended when omitted).

        Raises:
            ValueError: If a task with the same id is already present
        """
        if task.id in self._tasks:
            raise ValueError(f"Duplicate task id: {task.id}")
        if index is None:
            index = len(self._order)
        index = max(0, min(index, len(self._order)))
        self._order.insert(index, task.id)
        self._tasks[task.id] = task
        self._touch(task.id)

    def put(self, task: Task) -> None:
        """Replace an existing task in place, keeping its position."""
        if task.id not in self._tasks:
            raise TaskNotFoundError(task.id)
        self._tasks[task.id] = task
        self._touch(task.id)

    def remove(self, task_id: str) -> tuple[Task, int]:
        """Remove a task.

        Returns:
            The removed task and the index it occupied
        """
        index = self.index_of(task_id)
        self._order.pop(index)
        task = self._tasks.pop(task_id)
        self._touch(task_id)
        return task, index

    def reorder(self, task_ids: list[str]) -> None:
        """Rearrange a subset of tasks into the given relative order.

        The positions previously occupied by those tasks are refilled in the
        new order; tasks outside the subset do not move.
        """
        subset = set(task_ids)
        if len(subset) != len(task_ids):
            raise ValueError("Duplicate ids in reorder request")
        for task_id in task_ids:
            if task_id not in self._tasks:
                raise TaskNotFoundError(task_id)
        slots = [i for i, task_id in enumerate(self._order) if task_id in subset]
        for slot, task_id in zip(slots, task_ids):
            self._order[slot] = task_id
        self.generation += 1

    # ------------------------------------------------------------------
    # Snapshot / rollback
    # ------------------------------------------------------------------

    def snapshot(self, task_ids: Iterable[str]) -> StoreSnapshot:
        """Capture deep copies of the given tasks and their positions."""
        entries = {}
        for task_id in task_ids:
            task = self._tasks.get(task_id)
            if task is None:
                entries[task_id] = _Entry(None, -1, self.version(task_id))
            else:
                index = self._order.index(task_id)
                entries[task_id] = _Entry(
                    task.model_copy(deep=True),
                    index,
                    self.version(task_id),
                    self._order[index - 1] if index > 0 else None,
                )
        return StoreSnapshot(entries)

    def mark_applied(self, snapshot: StoreSnapshot) -> None:
        """Record the versions produced by the optimistic apply."""
        snapshot.applied = {task_id: self.version(task_id) for task_id in snapshot.entries}

    def restore(self, snapshot: StoreSnapshot) -> list[str]:
        """Roll the snapshotted tasks back to their captured state.

        Ids written again since the snapshot's apply (by a newer mutation or a
        refetch) are left alone.

        Returns:
            The ids that were actually restored
        """
        restored = []
        # Ascending original index, so a task's predecessor is placed first.
        for task_id, entry in sorted(snapshot.entries.items(), key=lambda kv: kv[1].index):
            expected = snapshot.applied.get(task_id, entry.version)
            if self.version(task_id) != expected:
                continue
            present = task_id in self._tasks
            if entry.task is None:
                if present:
                    self.remove(task_id)
            elif present:
                self.put(entry.task.model_copy(deep=True))
                self._order.remove(task_id)
                self._order.insert(self._restore_index(entry), task_id)
            else:
                self.insert(entry.task.model_copy(deep=True), self._restore_index(entry))
            restored.append(task_id)
        return restored

    def _restore_index(self, entry: _Entry) -> int:
        """Position right after the task that preceded the entry when captured.

        Falls back to the captured index when that neighbour is gone.
        """
        if entry.after is None:
            return 0
        if entry.after in self._tasks:
            return self._order.index(entry.after) + 1
        return entry.index
