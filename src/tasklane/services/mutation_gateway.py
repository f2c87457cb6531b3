"""Mutation gateway - the only writer of a view's task store.

Every mutation follows the same contract, enforced once by ``_attempt``:

1. compute the intended end state and apply it to the store synchronously;
2. await the remote write;
3. on success publish an invalidation event for other views and stop (no
   reconciliation fetch, which could overwrite the applied state with stale
   data);
4. on failure restore the pre-mutation snapshot of the affected tasks and
   raise ``RemoteWriteError``.

Reorders recover by refetching the scope instead of restoring a snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tasklane.config import CompletionConfig
from tasklane.models import (
    RecurrenceType,
    RemoteWriteError,
    Task,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
    ValidationError,
    default_when_type,
    parse_rule,
)
from tasklane.repositories import TaskRepository, TimeEntryRepository
from tasklane.utils.logger import get_logger
from tasklane.utils.recurrence import next_occurrence
from tasklane.utils.task_sorting import sort_tasks_by_sort_order, sort_tasks_today_first

from .invalidation import InvalidationChannel, TaskCollectionChanged
from .recurrence_service import RecurrenceSpawner
from .task_store import StoreSnapshot, TaskStore

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class CompletionOutcome(str, Enum):
    """Result of a completion request."""

    COMPLETED = "completed"
    REOPENED = "reopened"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    UNCHANGED = "unchanged"


def _validate(model: type[M], fields: M | dict[str, Any]) -> M:
    if isinstance(fields, model):
        return fields
    try:
        return model.model_validate(fields)
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


class TaskMutationGateway:
    """Applies task mutations optimistically to one view's store.

    Args:
        store: The view's TaskStore
        repository: Remote task persistence
        time_entries: Time-tracking collaborator gating completion
        channel: Invalidation channel shared between views
        config: Completion settings
        clock: Returns the current datetime
        spawner: Recurrence spawner; one wired to ``create_task`` by default
    """

    def __init__(
        self,
        store: TaskStore,
        repository: TaskRepository,
        time_entries: TimeEntryRepository,
        channel: InvalidationChannel | None = None,
        *,
        config: CompletionConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        spawner: RecurrenceSpawner | None = None,
    ):
        self.store = store
        self.repository = repository
        self.time_entries = time_entries
        self.channel = channel
        self.config = config or CompletionConfig()
        self.clock = clock
        self.spawner = spawner or RecurrenceSpawner(self.create_task, clock=clock)
        self.stale = False
        self._pending: set[str] = set()
        self._background: set[asyncio.Task] = set()
        self._unsubscribe = None
        if channel is not None:
            self._unsubscribe = channel.subscribe(self._on_invalidated)

    @property
    def logger(self) -> logging.Logger:
        return get_logger("gateway")

    @property
    def pending_completions(self) -> frozenset[str]:
        """Ids of tasks whose completion awaits a time confirmation."""
        return frozenset(self._pending)

    def close(self) -> None:
        """Stop listening for invalidation events."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Background work and invalidation
    # ------------------------------------------------------------------

    def _schedule(self, coro: Coroutine[Any, Any, Any], label: str) -> None:
        async def run() -> None:
            try:
                await coro
            except Exception:
                self.logger.exception("background %s failed", label)

        task = asyncio.get_running_loop().create_task(run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait until background spawns and refreshes have finished."""
        while self._background:
            await asyncio.gather(*list(self._background))

    def _on_invalidated(self, event: TaskCollectionChanged) -> None:
        if event.source is self:
            return
        self.stale = True
        try:
            self._schedule(self.refresh(), "refresh")
        except RuntimeError:
            # No running loop: the view refetches on its next refresh() call.
            self.logger.debug("invalidation received outside event loop (%s)", event.reason)

    def _publish(self, reason: str, task_ids: tuple[str, ...]) -> None:
        if self.channel is not None:
            self.channel.publish(source=self, reason=reason, task_ids=task_ids)

    # ------------------------------------------------------------------
    # Optimistic apply / rollback
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        snapshot: StoreSnapshot,
        apply: Callable[[], None],
        remote_call: Callable[[], Awaitable[T]],
        *,
        action: str,
        recover: Callable[[], Awaitable[None]] | None = None,
    ) -> T:
        """Apply locally, persist remotely, roll back on failure.

        Args:
            snapshot: Pre-mutation state of every task the mutation touches
            apply: Synchronous local change
            remote_call: Coroutine function performing the remote write
            action: Short description used in logs and errors
            recover: Replaces the snapshot restore on failure

        Raises:
            RemoteWriteError: If the remote write failed
        """
        apply()
        self.store.mark_applied(snapshot)
        self.logger.debug("%s applied locally for %s", action, ", ".join(snapshot.task_ids))

        try:
            result = await remote_call()
        except Exception as e:
            self.logger.warning(
                "%s failed for %s: %s", action, ", ".join(snapshot.task_ids), e
            )
            await self._recover(snapshot, recover)
            raise RemoteWriteError(f"Failed to {action}: {e}", snapshot.task_ids) from e

        self._publish(action, snapshot.task_ids)
        return result

    async def _recover(
        self,
        snapshot: StoreSnapshot,
        recover: Callable[[], Awaitable[None]] | None,
    ) -> None:
        if recover is not None:
            try:
                await recover()
                return
            except Exception:
                self.logger.exception("recovery failed, restoring local snapshot instead")
        restored = self.store.restore(snapshot)
        self.logger.info("rolled back %s", ", ".join(restored) or "nothing")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def refresh(self) -> list[Task]:
        """Fetch the view's scope and replace the store wholesale."""
        scope = self.store.scope
        tasks = [t for t in await self.repository.list_all(scope) if scope.matches(t)]
        if scope.today_first:
            tasks = sort_tasks_today_first(tasks, self.clock().date())
        else:
            tasks = sort_tasks_by_sort_order(tasks)
        self.store.replace_all(tasks)
        self._pending.intersection_update(self.store.ids)
        self.stale = False
        self.logger.debug("refreshed %d tasks", len(tasks))
        return self.store.tasks

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _next_sort_order(self) -> int:
        return max((t.sort_order for t in self.store), default=-1) + 1

    async def create_task(self, fields: TaskCreate | dict[str, Any]) -> Task:
        """Create a task, inserting it into the store before it is persisted.

        Raises:
            ValidationError: If the payload is invalid
            RemoteWriteError: If the backend rejected the task
        """
        payload = _validate(TaskCreate, fields)
        now = self.clock()
        data = payload.model_dump(exclude={"when_type", "is_inbox", "sort_order"})
        data.update(
            id=str(uuid.uuid4()),
            when_type=payload.when_type or default_when_type(payload.project_id),
            is_inbox=payload.project_id is None if payload.is_inbox is None else payload.is_inbox,
            sort_order=self._next_sort_order() if payload.sort_order is None else payload.sort_order,
            created_at=now,
            updated_at=now,
        )
        if payload.status is TaskStatus.DONE:
            data.update(completed_at=now, when_type=None)
        task = Task.model_validate(data)

        def apply() -> None:
            if self.store.scope.matches(task):
                self.store.insert(task)

        created = await self._attempt(
            self.store.snapshot([task.id]),
            apply,
            lambda: self.repository.add(task),
            action="create task",
        )
        self.logger.info("created task %s", task.id)
        return created or task

    def _transition_changes(self, current: Task, changes: dict[str, Any]) -> dict[str, Any]:
        """Stamp the fields that go with entering or leaving ``done``."""
        status = changes.get("status")
        if status is None or status is current.status:
            return changes
        changes = dict(changes)
        if status is TaskStatus.DONE:
            changes["completed_at"] = changes.get("completed_at") or self.clock()
            changes["when_type"] = None
        elif current.is_done:
            project_id = changes.get("project_id", current.project_id)
            changes["completed_at"] = None
            changes["when_type"] = changes.get("when_type") or default_when_type(project_id)
        return changes

    def _check_rule_change(self, current: Task, changes: dict[str, Any]) -> None:
        if "recurrence_rule" not in changes:
            return
        old, new = current.recurrence_rule, changes["recurrence_rule"]
        if old is not None and new is not None:
            new_count = new["completed_count"] if isinstance(new, dict) else new.completed_count
            if new_count < old.completed_count:
                raise ValidationError("completed_count can never decrease")

    async def update_task(self, task_id: str, fields: TaskUpdate | dict[str, Any]) -> Task:
        """Update fields of a task.

        A status change stamps ``completed_at``/``when_type``; entering ``done``
        launches the recurrence spawner once the write succeeded.

        Raises:
            ValidationError: If the payload is invalid
            TaskNotFoundError: If the task is not in this view
            RemoteWriteError: If the backend rejected the update
        """
        updates = _validate(TaskUpdate, fields)
        current = self.store.get(task_id)
        changes = updates.changes()
        if not changes:
            return current
        self._check_rule_change(current, changes)
        changes = self._transition_changes(current, changes)

        updated = _validate(
            Task, {**current.model_dump(), **changes, "updated_at": self.clock()}
        )
        entered_done = updated.is_done and not current.is_done

        def apply() -> None:
            if self.store.scope.matches(updated):
                self.store.put(updated)
            else:
                self.store.remove(task_id)

        result = await self._attempt(
            self.store.snapshot([task_id]),
            apply,
            lambda: self.repository.update(task_id, TaskUpdate.model_validate(changes)),
            action="update task",
        )

        if entered_done:
            self._pending.discard(task_id)
            if (
                updated.recurrence_rule is not None
                and updated.recurrence_rule.type is RecurrenceType.AFTER_COMPLETION
            ):
                self._schedule(self.spawner.spawn(updated), "spawn")
        return result or updated

    async def _has_time(self, task_id: str) -> bool:
        try:
            return await self.time_entries.has_time(task_id)
        except Exception as e:
            # Treat as tracked so a failing lookup never blocks completion.
            self.logger.warning("time entry check failed for %s: %s", task_id, e)
            return True

    async def complete_task(self, task_id: str, completed: bool = True) -> CompletionOutcome:
        """Complete or un-complete a task.

        Completing a task without tracked time is deferred until
        :meth:`confirm_completion` is called; nothing changes locally until then.

        Raises:
            TaskNotFoundError: If the task is not in this view
            RemoteWriteError: If the backend rejected the change
        """
        task = self.store.get(task_id)

        if not completed:
            self._pending.discard(task_id)
            if not task.is_done:
                return CompletionOutcome.UNCHANGED
            await self.update_task(task_id, TaskUpdate(status=TaskStatus.TODO))
            return CompletionOutcome.REOPENED

        if task.is_done:
            return CompletionOutcome.UNCHANGED
        if task_id in self._pending:
            return CompletionOutcome.AWAITING_CONFIRMATION
        if self.config.require_time_confirmation and not await self._has_time(task_id):
            self._pending.add(task_id)
            self.logger.info("completion of %s awaits time confirmation", task_id)
            return CompletionOutcome.AWAITING_CONFIRMATION

        await self.update_task(task_id, TaskUpdate(status=TaskStatus.DONE))
        return CompletionOutcome.COMPLETED

    async def confirm_completion(self, task_id: str, duration_seconds: int = 0) -> CompletionOutcome:
        """Finish a deferred completion.

        Args:
            task_id: Task awaiting confirmation
            duration_seconds: Time spent; recorded as a time entry when > 0

        Raises:
            ValidationError: If nothing awaits confirmation or the duration is negative
            RemoteWriteError: If recording the time or the completion failed
        """
        if task_id not in self._pending:
            raise ValidationError(f"No completion awaiting confirmation for task {task_id}")
        if duration_seconds < 0:
            raise ValidationError("duration_seconds must not be negative")

        if duration_seconds > 0:
            try:
                await self.time_entries.add_entry(task_id, duration_seconds)
            except Exception as e:
                self.logger.warning("recording time for %s failed: %s", task_id, e)
                raise RemoteWriteError(f"Failed to record time: {e}", (task_id,)) from e

        self._pending.discard(task_id)
        if self.store.get(task_id).is_done:
            return CompletionOutcome.UNCHANGED
        await self.update_task(task_id, TaskUpdate(status=TaskStatus.DONE))
        return CompletionOutcome.COMPLETED

    def cancel_completion(self, task_id: str) -> bool:
        """Drop a pending completion. Returns True if one was pending."""
        if task_id in self._pending:
            self._pending.discard(task_id)
            return True
        return False

    async def reorder_tasks(
        self,
        task_id: str,
        target_index: int,
        scope_ids: list[str] | None = None,
    ) -> list[Task]:
        """Move a task within a scope and renumber every task's sort_order.

        Args:
            task_id: Task being moved
            target_index: New position inside the scope (clamped)
            scope_ids: Ordered ids of the affected scope (a kanban column or
                list); defaults to the whole store

        Returns:
            The scope's tasks in their new order

        Raises:
            TaskNotFoundError: If a task is not in this view
            RemoteWriteError: If any sort_order write failed; the store then
                holds a fresh fetch of the scope
        """
        ids = list(scope_ids) if scope_ids is not None else self.store.ids
        if task_id not in ids:
            ids.append(task_id)
        tasks = {i: self.store.get(i) for i in ids}

        new_order = [i for i in ids if i != task_id]
        target_index = max(0, min(target_index, len(new_order)))
        new_order.insert(target_index, task_id)
        reordered = [
            tasks[i].model_copy(update={"sort_order": position})
            for position, i in enumerate(new_order)
        ]

        def apply() -> None:
            self.store.reorder(new_order)
            for task in reordered:
                self.store.put(task)

        async def persist() -> None:
            results = await asyncio.gather(
                *(
                    self.repository.update(task.id, TaskUpdate(sort_order=task.sort_order))
                    for task in reordered
                ),
                return_exceptions=True,
            )
            failures = [r for r in results if isinstance(r, BaseException)]
            if failures:
                raise failures[0]

        async def refetch() -> None:
            await self.refresh()

        await self._attempt(
            self.store.snapshot(new_order),
            apply,
            persist,
            action="reorder tasks",
            recover=refetch,
        )
        return [self.store.get(i) for i in new_order if i in self.store]

    async def soft_delete_task(self, task_id: str) -> None:
        """Move a task to the trash.

        Raises:
            TaskNotFoundError: If the task is not in this view
            RemoteWriteError: If the backend rejected the deletion
        """
        self.store.get(task_id)
        deleted_at = self.clock()

        def apply() -> None:
            self.store.remove(task_id)
            self._pending.discard(task_id)

        await self._attempt(
            self.store.snapshot([task_id]),
            apply,
            lambda: self.repository.soft_delete(task_id, deleted_at),
            action="delete task",
        )
        self.logger.info("deleted task %s", task_id)

    async def set_recurrence(self, task_id: str, rule: Any) -> Task:
        """Attach or replace a task's recurrence rule.

        The completion count of an existing series is carried over; scheduled
        rules get ``next_date`` from their start date (or today).

        Raises:
            ValidationError: If the rule is malformed
        """
        parsed = parse_rule(rule)
        if parsed is None:
            return await self.clear_recurrence(task_id)

        current = self.store.get(task_id).recurrence_rule
        update: dict[str, Any] = {}
        if current is not None and parsed.completed_count < current.completed_count:
            update["completed_count"] = current.completed_count
        if parsed.type is RecurrenceType.SCHEDULED and parsed.next_date is None:
            update["next_date"] = next_occurrence(
                parsed, parsed.start_date or self.clock().date()
            )
        if update:
            parsed = parsed.model_copy(update=update)
        return await self.update_task(task_id, TaskUpdate(recurrence_rule=parsed))

    async def clear_recurrence(self, task_id: str) -> Task:
        """Remove a task's recurrence rule."""
        return await self.update_task(task_id, TaskUpdate(recurrence_rule=None))
