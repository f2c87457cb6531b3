"""Tests for TaskMutationGateway - optimistic writes, rollback and completion gating."""

from __future__ import annotations

import asyncio
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from tasklane.config import CompletionConfig
from tasklane.models import (
    DailyRule,
    RemoteWriteError,
    TaskNotFoundError,
    TaskScope,
    TaskStatus,
    TaskUpdate,
    ValidationError,
    WeeklyRule,
    WhenType,
)
from tasklane.services.invalidation import InvalidationChannel
from tasklane.services.mutation_gateway import CompletionOutcome, TaskMutationGateway
from tasklane.services.task_store import TaskStore
from tests.conftest import NOW, make_task


def _gated(result=None, error: Exception | None = None):
    """AsyncMock that blocks until its gate is set."""
    started = asyncio.Event()
    gate = asyncio.Event()

    async def call(*args, **kwargs):
        started.set()
        await gate.wait()
        if error is not None:
            raise error
        return result

    return AsyncMock(side_effect=call), started, gate


# ---------------------------------------------------------------------------
# create_task
# ---------------------------------------------------------------------------


class TestCreateTask:
    @pytest.mark.asyncio
    async def test_inserted_before_remote_write_completes(self, gateway, store, mock_repo):
        mock_repo.add, started, gate = _gated()
        pending = asyncio.create_task(gateway.create_task({"title": "Buy milk"}))
        await started.wait()

        created = [t for t in store if t.title == "Buy milk"]
        assert len(created) == 1
        assert created[0].sort_order == 5
        assert created[0].when_type is WhenType.INBOX
        assert created[0].is_inbox is True
        assert created[0].created_at == NOW

        gate.set()
        result = await pending
        assert result.id == created[0].id

    @pytest.mark.asyncio
    async def test_project_task_defaults_to_anytime(self, gateway):
        task = await gateway.create_task({"title": "Plan sprint", "project_id": "p1"})
        assert task.when_type is WhenType.ANYTIME
        assert task.is_inbox is False

    @pytest.mark.asyncio
    async def test_failure_removes_task(self, gateway, store, mock_repo, channel):
        listener = MagicMock()
        channel.subscribe(listener)
        mock_repo.add = AsyncMock(side_effect=RuntimeError("rejected"))
        before = store.tasks

        with pytest.raises(RemoteWriteError):
            await gateway.create_task({"title": "Doomed"})

        assert store.tasks == before
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_payload_changes_nothing(self, gateway, store, mock_repo):
        with pytest.raises(ValidationError):
            await gateway.create_task({"title": ""})
        assert len(store) == 5
        mock_repo.add.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_out_of_scope_task_is_not_inserted(self, mock_repo, mock_time_entries):
        store = TaskStore(TaskScope(project_id="p1"))
        gw = TaskMutationGateway(store, mock_repo, mock_time_entries, clock=lambda: NOW)
        await gw.create_task({"title": "Elsewhere", "project_id": "p2"})
        assert len(store) == 0
        mock_repo.add.assert_awaited_once()


# ---------------------------------------------------------------------------
# update_task
# ---------------------------------------------------------------------------


class TestUpdateTask:
    @pytest.mark.asyncio
    async def test_applied_without_refetch(self, gateway, store, mock_repo, channel):
        listener = MagicMock()
        channel.subscribe(listener)

        updated = await gateway.update_task("task-1", {"title": "Renamed"})

        assert updated.title == "Renamed"
        assert store.get("task-1").title == "Renamed"
        assert store.get("task-1").updated_at == NOW
        mock_repo.list_all.assert_not_awaited()
        sent = mock_repo.update.await_args.args[1]
        assert isinstance(sent, TaskUpdate)
        assert sent.changes() == {"title": "Renamed"}
        listener.assert_called_once()
        assert listener.call_args.args[0].task_ids == ("task-1",)

    @pytest.mark.asyncio
    async def test_failure_restores_previous_state(self, gateway, store, mock_repo):
        before = {t.id: t.model_copy(deep=True) for t in store}
        mock_repo.update = AsyncMock(side_effect=RuntimeError("500"))

        with pytest.raises(RemoteWriteError) as exc_info:
            await gateway.update_task("task-1", {"title": "Nope", "tags": ["x"]})

        assert exc_info.value.task_ids == ("task-1",)
        assert {t.id: t for t in store} == before
        assert store.ids == ["task-0", "task-1", "task-2", "task-3", "task-4"]

    @pytest.mark.asyncio
    async def test_rollback_keeps_newer_mutation(self, gateway, store, mock_repo):
        started = asyncio.Event()
        gate = asyncio.Event()

        async def update(task_id, updates):
            if updates.title == "First":
                started.set()
                await gate.wait()
                raise RuntimeError("rejected")

        mock_repo.update = AsyncMock(side_effect=update)
        first = asyncio.create_task(gateway.update_task("task-1", {"title": "First"}))
        await started.wait()
        assert store.get("task-1").title == "First"

        await gateway.update_task("task-1", {"title": "Second"})
        gate.set()
        with pytest.raises(RemoteWriteError):
            await first

        assert store.get("task-1").title == "Second"

    @pytest.mark.asyncio
    async def test_invalid_update_raises_before_mutation(self, gateway, store, mock_repo):
        before = store.get("task-1")
        with pytest.raises(ValidationError):
            await gateway.update_task("task-1", {"title": ""})
        assert store.get("task-1") is before
        mock_repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["title", "status", "tags", "sort_order", "is_inbox"])
    async def test_clearing_required_field_is_rejected(self, gateway, store, mock_repo, field):
        before = store.get("task-1")
        with pytest.raises(ValidationError):
            await gateway.update_task("task-1", {field: None})
        assert store.get("task-1") is before
        mock_repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_task(self, gateway):
        with pytest.raises(TaskNotFoundError):
            await gateway.update_task("missing", {"title": "x"})

    @pytest.mark.asyncio
    async def test_empty_update_is_a_no_op(self, gateway, mock_repo):
        await gateway.update_task("task-1", TaskUpdate())
        mock_repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_entering_done_stamps_fields(self, gateway, store):
        await gateway.update_task("task-1", {"status": "done"})
        task = store.get("task-1")
        assert task.status is TaskStatus.DONE
        assert task.completed_at == NOW
        assert task.when_type is None

    @pytest.mark.asyncio
    async def test_leaving_done_restores_when_type(self, gateway, store):
        store.put(make_task("task-1", status="done", when_type=None, completed_at=NOW))
        await gateway.update_task("task-1", {"status": "todo"})
        task = store.get("task-1")
        assert task.completed_at is None
        assert task.when_type is WhenType.INBOX

    @pytest.mark.asyncio
    async def test_leaving_scope_removes_task(self, mock_repo, mock_time_entries):
        store = TaskStore(TaskScope(project_id="p1"), [make_task("t1", project_id="p1")])
        gw = TaskMutationGateway(store, mock_repo, mock_time_entries, clock=lambda: NOW)
        await gw.update_task("t1", {"project_id": "p2"})
        assert "t1" not in store

    @pytest.mark.asyncio
    async def test_completed_count_cannot_decrease(self, gateway, store):
        store.put(make_task("task-1", recurrence_rule=DailyRule(completed_count=3)))
        with pytest.raises(ValidationError):
            await gateway.update_task(
                "task-1", {"recurrence_rule": {"frequency": "daily", "completed_count": 1}}
            )


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class TestCompletion:
    @pytest.mark.asyncio
    async def test_completes_when_time_tracked(self, gateway, store, mock_time_entries):
        outcome = await gateway.complete_task("task-1")
        assert outcome is CompletionOutcome.COMPLETED
        assert store.get("task-1").is_done
        mock_time_entries.has_time.assert_awaited_once_with("task-1")

    @pytest.mark.asyncio
    async def test_zero_time_waits_for_confirmation(
        self, gateway, store, mock_repo, mock_time_entries
    ):
        mock_time_entries.has_time.return_value = False

        outcome = await gateway.complete_task("task-1")

        assert outcome is CompletionOutcome.AWAITING_CONFIRMATION
        assert not store.get("task-1").is_done
        assert gateway.pending_completions == {"task-1"}
        mock_repo.update.assert_not_awaited()

        again = await gateway.complete_task("task-1")
        assert again is CompletionOutcome.AWAITING_CONFIRMATION
        assert mock_time_entries.has_time.await_count == 1

        confirmed = await gateway.confirm_completion("task-1", duration_seconds=900)

        assert confirmed is CompletionOutcome.COMPLETED
        assert store.get("task-1").is_done
        mock_time_entries.add_entry.assert_awaited_once_with("task-1", 900)
        assert gateway.pending_completions == frozenset()

    @pytest.mark.asyncio
    async def test_confirm_without_time_entry(self, gateway, store, mock_time_entries):
        mock_time_entries.has_time.return_value = False
        await gateway.complete_task("task-1")
        await gateway.confirm_completion("task-1")
        mock_time_entries.add_entry.assert_not_awaited()
        assert store.get("task-1").is_done

    @pytest.mark.asyncio
    async def test_confirm_requires_pending_completion(self, gateway):
        with pytest.raises(ValidationError):
            await gateway.confirm_completion("task-1", 60)

    @pytest.mark.asyncio
    async def test_negative_duration_rejected(self, gateway, mock_time_entries):
        mock_time_entries.has_time.return_value = False
        await gateway.complete_task("task-1")
        with pytest.raises(ValidationError):
            await gateway.confirm_completion("task-1", -5)
        assert "task-1" in gateway.pending_completions

    @pytest.mark.asyncio
    async def test_failed_time_entry_keeps_task_open(self, gateway, store, mock_time_entries):
        mock_time_entries.has_time.return_value = False
        mock_time_entries.add_entry.side_effect = RuntimeError("timer service down")
        await gateway.complete_task("task-1")

        with pytest.raises(RemoteWriteError):
            await gateway.confirm_completion("task-1", 60)
        assert not store.get("task-1").is_done
        assert "task-1" in gateway.pending_completions

    @pytest.mark.asyncio
    async def test_cancel_completion(self, gateway, store, mock_time_entries):
        mock_time_entries.has_time.return_value = False
        await gateway.complete_task("task-1")

        assert gateway.cancel_completion("task-1") is True
        assert gateway.cancel_completion("task-1") is False
        assert not store.get("task-1").is_done

    @pytest.mark.asyncio
    async def test_gate_can_be_disabled(self, store, mock_repo, mock_time_entries):
        gw = TaskMutationGateway(
            store,
            mock_repo,
            mock_time_entries,
            config=CompletionConfig(require_time_confirmation=False),
            clock=lambda: NOW,
        )
        assert await gw.complete_task("task-1") is CompletionOutcome.COMPLETED
        mock_time_entries.has_time.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_time_lookup_does_not_block(self, gateway, store, mock_time_entries):
        mock_time_entries.has_time.side_effect = RuntimeError("timeout")
        assert await gateway.complete_task("task-1") is CompletionOutcome.COMPLETED
        assert store.get("task-1").is_done

    @pytest.mark.asyncio
    async def test_uncomplete(self, gateway, store):
        store.put(make_task("task-1", status="done", when_type=None, completed_at=NOW))
        assert await gateway.complete_task("task-1", completed=False) is CompletionOutcome.REOPENED
        assert store.get("task-1").status is TaskStatus.TODO

    @pytest.mark.asyncio
    async def test_uncomplete_open_task_is_unchanged(self, gateway, mock_repo):
        outcome = await gateway.complete_task("task-1", completed=False)
        assert outcome is CompletionOutcome.UNCHANGED
        mock_repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_completion_failure_rolls_back(self, gateway, store, mock_repo):
        mock_repo.update = AsyncMock(side_effect=RuntimeError("500"))
        with pytest.raises(RemoteWriteError):
            await gateway.complete_task("task-1")
        assert store.get("task-1").status is TaskStatus.TODO
        assert store.get("task-1").completed_at is None


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------


class TestRecurringCompletion:
    @pytest.mark.asyncio
    async def test_completing_spawns_exactly_one_task(self, gateway, store, mock_repo):
        store.put(make_task("task-1", recurrence_rule=DailyRule(), checklist_items=[]))

        await gateway.complete_task("task-1")
        await gateway.drain()

        assert mock_repo.add.await_count == 1
        assert len(store) == 6
        spawned = store.tasks[-1]
        assert spawned.id != "task-1"
        assert spawned.status is TaskStatus.TODO
        assert spawned.when_type is WhenType.SCHEDULED
        assert spawned.when_date == date(2024, 6, 13)
        assert spawned.recurrence_rule.completed_count == 1

        assert await gateway.complete_task("task-1") is CompletionOutcome.UNCHANGED
        await gateway.drain()
        assert mock_repo.add.await_count == 1

    @pytest.mark.asyncio
    async def test_confirmed_completion_spawns(self, gateway, store, mock_repo, mock_time_entries):
        mock_time_entries.has_time.return_value = False
        store.put(make_task("task-1", recurrence_rule=WeeklyRule(weekdays={4})))

        await gateway.complete_task("task-1")
        await gateway.drain()
        mock_repo.add.assert_not_awaited()

        await gateway.confirm_completion("task-1", 300)
        await gateway.drain()
        assert mock_repo.add.await_count == 1
        assert store.tasks[-1].when_date == date(2024, 6, 14)

    @pytest.mark.asyncio
    async def test_scheduled_rule_does_not_spawn(self, gateway, store, mock_repo):
        store.put(make_task("task-1", recurrence_rule=DailyRule(type="scheduled")))
        await gateway.complete_task("task-1")
        await gateway.drain()
        mock_repo.add.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ended_series_does_not_spawn(self, gateway, store, mock_repo):
        rule = DailyRule(end_type="after_count", end_after_count=2, completed_count=2)
        store.put(make_task("task-1", recurrence_rule=rule))
        await gateway.complete_task("task-1")
        await gateway.drain()
        mock_repo.add.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_spawn_failure_keeps_completion(self, gateway, store, mock_repo):
        mock_repo.add = AsyncMock(side_effect=RuntimeError("create failed"))
        store.put(make_task("task-1", recurrence_rule=DailyRule()))

        assert await gateway.complete_task("task-1") is CompletionOutcome.COMPLETED
        await gateway.drain()

        assert store.get("task-1").is_done
        assert len(store) == 5

    @pytest.mark.asyncio
    async def test_failed_completion_does_not_spawn(self, gateway, store, mock_repo):
        mock_repo.update = AsyncMock(side_effect=RuntimeError("500"))
        store.put(make_task("task-1", recurrence_rule=DailyRule()))
        with pytest.raises(RemoteWriteError):
            await gateway.complete_task("task-1")
        await gateway.drain()
        mock_repo.add.assert_not_awaited()


class TestSetRecurrence:
    @pytest.mark.asyncio
    async def test_scheduled_rule_gets_next_date(self, gateway, store):
        task = await gateway.set_recurrence(
            "task-1", {"frequency": "weekly", "type": "scheduled", "weekdays": ["fri"]}
        )
        assert task.recurrence_rule.next_date == date(2024, 6, 14)
        assert store.get("task-1").recurrence_rule == task.recurrence_rule

    @pytest.mark.asyncio
    async def test_completed_count_carried_over(self, gateway, store):
        store.put(make_task("task-1", recurrence_rule=DailyRule(completed_count=4)))
        task = await gateway.set_recurrence("task-1", {"frequency": "monthly", "month_day": 1})
        assert task.recurrence_rule.completed_count == 4

    @pytest.mark.asyncio
    async def test_invalid_rule(self, gateway, mock_repo):
        with pytest.raises(ValidationError):
            await gateway.set_recurrence("task-1", {"frequency": "weekly", "weekdays": []})
        mock_repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clear(self, gateway, store):
        store.put(make_task("task-1", recurrence_rule=DailyRule()))
        await gateway.clear_recurrence("task-1")
        assert store.get("task-1").recurrence_rule is None

    @pytest.mark.asyncio
    async def test_none_clears(self, gateway, store, mock_repo):
        store.put(make_task("task-1", recurrence_rule=DailyRule()))
        await gateway.set_recurrence("task-1", None)
        assert store.get("task-1").recurrence_rule is None
        assert mock_repo.update.await_args.args[1].changes() == {"recurrence_rule": None}


# ---------------------------------------------------------------------------
# reorder_tasks
# ---------------------------------------------------------------------------


class TestReorder:
    @pytest.mark.asyncio
    async def test_move_renumbers_every_task(self, gateway, store, mock_repo):
        result = await gateway.reorder_tasks("task-2", 0)

        expected = ["task-2", "task-0", "task-1", "task-3", "task-4"]
        assert [t.id for t in result] == expected
        assert store.ids == expected
        assert [t.sort_order for t in store] == [0, 1, 2, 3, 4]
        assert mock_repo.update.await_count == 5
        mock_repo.list_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_target_index_is_clamped(self, gateway, store):
        await gateway.reorder_tasks("task-0", 99)
        assert store.ids[-1] == "task-0"

    @pytest.mark.asyncio
    async def test_scope_subset(self, gateway, store, mock_repo):
        await gateway.reorder_tasks("task-3", 0, scope_ids=["task-1", "task-3"])
        assert store.ids == ["task-0", "task-3", "task-2", "task-1", "task-4"]
        assert store.get("task-3").sort_order == 0
        assert store.get("task-1").sort_order == 1
        assert mock_repo.update.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_refetches_scope(self, gateway, store, mock_repo):
        fresh = [make_task(f"task-{i}", sort_order=i, title=f"Fresh {i}") for i in range(5)]
        mock_repo.list_all.return_value = list(reversed(fresh))

        async def update(task_id, updates):
            if task_id == "task-3":
                raise RuntimeError("conflict")

        mock_repo.update = AsyncMock(side_effect=update)

        with pytest.raises(RemoteWriteError):
            await gateway.reorder_tasks("task-2", 0)

        mock_repo.list_all.assert_awaited_once()
        assert store.tasks == fresh

    @pytest.mark.asyncio
    async def test_failed_refetch_restores_snapshot(self, gateway, store, mock_repo):
        before = store.tasks
        mock_repo.update = AsyncMock(side_effect=RuntimeError("conflict"))
        mock_repo.list_all = AsyncMock(side_effect=RuntimeError("offline"))

        with pytest.raises(RemoteWriteError):
            await gateway.reorder_tasks("task-4", 1)

        assert store.tasks == before


# ---------------------------------------------------------------------------
# soft_delete_task
# ---------------------------------------------------------------------------


class TestSoftDelete:
    @pytest.mark.asyncio
    async def test_removed_and_persisted(self, gateway, store, mock_repo):
        await gateway.soft_delete_task("task-2")
        assert "task-2" not in store
        mock_repo.soft_delete.assert_awaited_once_with("task-2", NOW)

    @pytest.mark.asyncio
    async def test_rollback_ignores_unrelated_deletes(self, gateway, store, mock_repo):
        started = asyncio.Event()
        gate = asyncio.Event()

        async def soft_delete(task_id, deleted_at):
            if task_id == "task-3":
                started.set()
                await gate.wait()
                raise RuntimeError("rejected")

        mock_repo.soft_delete = AsyncMock(side_effect=soft_delete)
        pending = asyncio.create_task(gateway.soft_delete_task("task-3"))
        await started.wait()

        await gateway.soft_delete_task("task-0")
        gate.set()
        with pytest.raises(RemoteWriteError):
            await pending

        assert store.ids == ["task-1", "task-2", "task-3", "task-4"]

    @pytest.mark.asyncio
    async def test_failure_restores_position(self, gateway, store, mock_repo):
        before = store.tasks
        mock_repo.soft_delete = AsyncMock(side_effect=RuntimeError("403"))
        with pytest.raises(RemoteWriteError):
            await gateway.soft_delete_task("task-2")
        assert store.tasks == before


# ---------------------------------------------------------------------------
# Refresh and invalidation
# ---------------------------------------------------------------------------


class TestRefreshAndInvalidation:
    @pytest.mark.asyncio
    async def test_refresh_filters_and_sorts(self, mock_repo, mock_time_entries):
        mock_repo.list_all.return_value = [
            make_task("b", sort_order=2, project_id="p1"),
            make_task("a", sort_order=1, project_id="p1"),
            make_task("x", sort_order=0, project_id="p2"),
        ]
        store = TaskStore(TaskScope(project_id="p1"))
        gw = TaskMutationGateway(store, mock_repo, mock_time_entries, clock=lambda: NOW)

        tasks = await gw.refresh()

        assert [t.id for t in tasks] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_refresh_today_first(self, mock_repo, mock_time_entries):
        mock_repo.list_all.return_value = [
            make_task("later", sort_order=0),
            make_task("today", sort_order=5, when_type="today"),
            make_task("due", sort_order=9, when_type="scheduled", when_date=NOW.date()),
        ]
        store = TaskStore(TaskScope(today_first=True))
        gw = TaskMutationGateway(store, mock_repo, mock_time_entries, clock=lambda: NOW)

        await gw.refresh()

        assert store.ids == ["today", "due", "later"]

    @pytest.mark.asyncio
    async def test_other_views_refetch_after_write(
        self, gateway, mock_repo, mock_time_entries, channel
    ):
        other_store = TaskStore(TaskScope(project_id="p1"))
        other = TaskMutationGateway(
            other_store, mock_repo, mock_time_entries, channel, clock=lambda: NOW
        )
        mock_repo.list_all.return_value = [make_task("remote", project_id="p1")]

        await gateway.update_task("task-1", {"title": "Changed"})
        assert other.stale is True
        await other.drain()
        await gateway.drain()

        assert other_store.ids == ["remote"]
        assert other.stale is False
        mock_repo.list_all.assert_awaited_once()
        other.close()

    @pytest.mark.asyncio
    async def test_failed_write_does_not_invalidate(
        self, gateway, mock_repo, mock_time_entries, channel
    ):
        other = TaskMutationGateway(
            TaskStore(), mock_repo, mock_time_entries, channel, clock=lambda: NOW
        )
        mock_repo.update = AsyncMock(side_effect=RuntimeError("500"))

        with pytest.raises(RemoteWriteError):
            await gateway.update_task("task-1", {"title": "x"})
        await other.drain()

        assert other.stale is False
        mock_repo.list_all.assert_not_awaited()
        other.close()

    def test_subscribes_to_empty_channel(self, store, mock_repo, mock_time_entries):
        channel = InvalidationChannel()
        gw = TaskMutationGateway(store, mock_repo, mock_time_entries, channel)
        assert len(channel) == 1
        gw.close()

    @pytest.mark.asyncio
    async def test_refresh_drops_vanished_pending_completions(
        self, gateway, mock_repo, mock_time_entries
    ):
        mock_time_entries.has_time.return_value = False
        await gateway.complete_task("task-1")
        await gateway.complete_task("task-2")
        mock_repo.list_all.return_value = [make_task("task-2")]

        await gateway.refresh()

        assert gateway.pending_completions == {"task-2"}

    def test_close_unsubscribes(self, gateway, channel):
        assert len(channel) == 1
        gateway.close()
        assert len(channel) == 0
