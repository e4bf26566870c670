"""
Tests for the task service layer.

Tests cover:
- Tenant id handling before any store access
- Dependency edits and the pre-flight cycle check
- Status transitions for tasks and subtasks
- Task removal with edge cascade
- Subtask removal and clearing
- History entries, including a failing or disabled sink
"""

from __future__ import annotations

import uuid

import pytest

from taskgraph.core.errors import (
    ConfigurationError,
    DependencyConflictError,
    InvalidTransitionError,
    StoreError,
    TaskNotFoundError,
)
from taskgraph.services import tasks as service
from taskgraph.services.tasks import VALID_TRANSITIONS, check_transition, require_tenant
from taskgraph_shared.schemas.common import HistoryAction, IssueType, TaskStatus
from taskgraph_shared.schemas.tasks import SubtaskCreate, TaskCreate

from .fakes import subtask_uuid, task_uuid


def _actions(store) -> list[HistoryAction]:
    return [entry.action for _, entry in store.history]


# ---------------------------------------------------------------------------
# Tenant handling
# ---------------------------------------------------------------------------


class TestTenant:
    @pytest.mark.parametrize("bad", [None, "", "   "])
    async def test_missing_tenant_fails_before_store(self, store, bad):
        with pytest.raises(ConfigurationError, match="Tenant ID is required"):
            await service.validate_dependencies(store, bad)
        with pytest.raises(ConfigurationError):
            await service.fix_dependencies(store, bad)
        with pytest.raises(ConfigurationError):
            await service.find_next_task(store, bad)
        assert store.reads == 0

    async def test_malformed_tenant(self, store):
        with pytest.raises(ConfigurationError, match="Invalid tenant ID"):
            await service.find_next_task(store, "not-a-uuid")
        assert store.reads == 0

    def test_string_tenant_is_parsed(self, tenant_id):
        assert require_tenant(str(tenant_id)) == tenant_id
        assert require_tenant(tenant_id) is tenant_id

    async def test_tenants_are_isolated(self, store, tenant_id, other_tenant_id):
        store.seed_task(tenant_id, 1, deps=[1])
        store.seed_task(other_tenant_id, 9, deps=[1])

        other = await service.validate_dependencies(store, other_tenant_id)
        mine = await service.validate_dependencies(store, tenant_id)

        assert [i.type for i in other.issues] == [IssueType.MISSING_DEPENDENCY]
        assert other.tasks_checked == 1
        assert [i.type for i in mine.issues] == [IssueType.SELF_DEPENDENCY]
        assert mine.tasks_checked == 1

    async def test_other_tenant_task_is_not_found(self, store, tenant_id, other_tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(other_tenant_id, 9)

        with pytest.raises(TaskNotFoundError, match="Dependency task not found"):
            await service.add_dependency(store, tenant_id, task_uuid(1), task_uuid(9))
        with pytest.raises(TaskNotFoundError):
            await service.remove_task(store, other_tenant_id, task_uuid(1))
        assert store.dependency_writes == []

    def test_error_payload(self):
        error = ConfigurationError("Tenant ID is required")
        assert error.to_dict() == {
            "code": "CONFIGURATION_ERROR",
            "message": "Tenant ID is required",
            "details": {},
        }


# ---------------------------------------------------------------------------
# Graph operations
# ---------------------------------------------------------------------------


class TestGraphOperations:
    async def test_validate_records_history(self, store, tenant_id):
        store.seed_task(tenant_id, 1, deps=[1])

        await service.validate_dependencies(store, tenant_id)

        ((tenant, entry),) = store.history
        assert tenant == tenant_id
        assert entry.action == HistoryAction.DEPENDENCIES_VALIDATED
        assert entry.change_summary == "Dependency validation completed: 1 issues found"
        assert entry.new_value["issueTypes"] == ["self_dependency"]

    async def test_fix_records_history(self, store, tenant_id):
        store.seed_task(tenant_id, 1, deps=[1, 1])
        store.seed_task(tenant_id, 2, deps=[2])
        store.fail_updates_for.add(task_uuid(2))

        report = await service.fix_dependencies(store, tenant_id)

        assert report.is_partial
        ((_, entry),) = store.history
        assert entry.action == HistoryAction.DEPENDENCIES_FIXED
        assert entry.change_summary == "Dependency fixing completed: 1 tasks fixed"
        assert entry.new_value["fixes"] == [{"taskNumber": 1, "issuesFixed": 1}]
        assert entry.new_value["failedTaskNumbers"] == [2]

    async def test_fix_snapshot_failure_raises(self, store, tenant_id):
        store.fail_reads = True

        with pytest.raises(StoreError):
            await service.fix_dependencies(store, tenant_id)
        assert store.history == []

    async def test_find_next_task(self, store, tenant_id):
        store.seed_task(tenant_id, 1, status=TaskStatus.DONE)
        store.seed_task(tenant_id, 2, deps=[1])

        result = await service.find_next_task(store, str(tenant_id))

        assert result.task.task_number == 2

    async def test_would_create_cycle(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2, deps=[1])
        store.seed_task(tenant_id, 3, deps=[2])

        assert await service.would_create_cycle(store, tenant_id, task_uuid(1), task_uuid(3))
        assert not await service.would_create_cycle(store, tenant_id, task_uuid(3), task_uuid(1))
        assert await service.would_create_cycle(store, tenant_id, task_uuid(2), task_uuid(2))

    async def test_accepted_edges_never_make_a_cycle(self, store, tenant_id):
        """Every edge the pre-flight check accepts keeps the graph valid."""
        for n in range(1, 6):
            store.seed_task(tenant_id, n)
        for a in range(1, 6):
            for b in range(1, 6):
                if a == b:
                    continue
                if not await service.would_create_cycle(store, tenant_id, task_uuid(a), task_uuid(b)):
                    await service.add_dependency(store, tenant_id, task_uuid(a), task_uuid(b))

        report = await service.validate_dependencies(store, tenant_id)
        assert report.is_valid


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_create_task_numbers_sequentially(self, store, tenant_id):
        first = await service.create_task(store, tenant_id, TaskCreate(title="One"))
        second = await service.create_task(
            store, tenant_id, TaskCreate(title="Two", dependency_ids=[first.id])
        )

        assert (first.task_number, second.task_number) == (1, 2)
        assert second.dependency_ids == [first.id]
        assert second.status == TaskStatus.PENDING
        assert _actions(store) == [HistoryAction.CREATED, HistoryAction.CREATED]

    async def test_create_rejects_unknown_dependency(self, store, tenant_id):
        with pytest.raises(TaskNotFoundError):
            await service.create_task(
                store, tenant_id, TaskCreate(title="x", dependency_ids=[uuid.uuid4()])
            )
        assert store.tasks == {}

    async def test_create_rejects_duplicate_dependencies(self, store, tenant_id):
        store.seed_task(tenant_id, 1)

        with pytest.raises(DependencyConflictError):
            await service.create_task(
                store, tenant_id, TaskCreate(title="x", dependency_ids=[task_uuid(1)] * 2)
            )

    async def test_add_subtask(self, store, tenant_id):
        store.seed_task(tenant_id, 1)

        first = await service.add_subtask(store, tenant_id, task_uuid(1), SubtaskCreate(title="a"))
        second = await service.add_subtask(store, tenant_id, task_uuid(1), SubtaskCreate(title="b"))

        assert (first.subtask_number, second.subtask_number) == (1, 2)
        assert store.history[-1][1].change_summary == "Created subtask 1.2"

    async def test_add_subtask_to_unknown_task(self, store, tenant_id):
        with pytest.raises(TaskNotFoundError):
            await service.add_subtask(store, tenant_id, uuid.uuid4(), SubtaskCreate(title="a"))


class TestSubtaskRemoval:
    async def test_removed_subtask_is_no_longer_next(self, store, tenant_id):
        store.seed_task(tenant_id, 1, status=TaskStatus.IN_PROGRESS)
        store.seed_subtask(tenant_id, 1, 1)
        store.seed_subtask(tenant_id, 1, 2)

        before = await service.find_next_task(store, tenant_id)
        removed = await service.remove_subtask(store, tenant_id, task_uuid(1), subtask_uuid(1, 1))
        after = await service.find_next_task(store, tenant_id)

        assert before.display_id == "1.1"
        assert removed.subtask_number == 1
        assert after.display_id == "1.2"
        ((_, entry),) = store.history
        assert entry.action == HistoryAction.SUBTASK_REMOVED
        assert entry.change_summary == "Removed subtask 1.1"

    async def test_remove_subtask_of_other_task(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2)
        store.seed_subtask(tenant_id, 2, 1)

        with pytest.raises(TaskNotFoundError, match="Subtask not found"):
            await service.remove_subtask(store, tenant_id, task_uuid(1), subtask_uuid(2, 1))
        assert subtask_uuid(2, 1) in store.subtasks

    async def test_clear_subtasks_returns_parent_to_scheduler(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_subtask(tenant_id, 1, 1)
        store.seed_subtask(tenant_id, 1, 2, status=TaskStatus.DONE)
        store.seed_subtask(tenant_id, 2, 1)

        cleared = await service.clear_subtasks(store, tenant_id, task_uuid(1))
        result = await service.find_next_task(store, tenant_id)

        assert cleared == 2
        assert result.task.task_number == 1
        assert not result.is_subtask
        assert list(store.subtasks) == [subtask_uuid(2, 1)]
        ((_, entry),) = store.history
        assert entry.action == HistoryAction.SUBTASKS_CLEARED
        assert entry.change_summary == "All 2 subtasks cleared from task #1"
        assert [s["id"] for s in entry.new_value["subtasks"]] == ["1.1", "1.2"]

    async def test_clear_without_subtasks(self, store, tenant_id):
        store.seed_task(tenant_id, 1)

        assert await service.clear_subtasks(store, tenant_id, task_uuid(1)) == 0
        assert store.history == []

    async def test_clear_subtasks_of_unknown_task(self, store, tenant_id):
        with pytest.raises(TaskNotFoundError):
            await service.clear_subtasks(store, tenant_id, uuid.uuid4())


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestTransitionValidation:
    """Transition table for task and subtask statuses."""

    def test_all_valid_transitions(self):
        for current, targets in VALID_TRANSITIONS.items():
            for target in targets:
                check_transition(current, target)

    def test_invalid_skip(self):
        with pytest.raises(InvalidTransitionError):
            check_transition(TaskStatus.PENDING, TaskStatus.DONE)

    def test_terminal_states(self):
        for status in TaskStatus:
            with pytest.raises(InvalidTransitionError):
                check_transition(TaskStatus.DONE, status)
            with pytest.raises(InvalidTransitionError):
                check_transition(TaskStatus.CANCELLED, status)

    def test_same_status_not_allowed(self):
        for status in TaskStatus:
            with pytest.raises(InvalidTransitionError):
                check_transition(status, status)

    async def test_transition_task(self, store, tenant_id):
        store.seed_task(tenant_id, 1)

        await service.transition_task(store, tenant_id, task_uuid(1), TaskStatus.IN_PROGRESS)
        done = await service.transition_task(store, tenant_id, task_uuid(1), TaskStatus.DONE)

        assert done.status == TaskStatus.DONE
        assert done.completed_at is not None
        summaries = [entry.change_summary for _, entry in store.history]
        assert summaries == ["Task #1: pending → in-progress", "Task #1: in-progress → done"]

    async def test_invalid_transition_leaves_task(self, store, tenant_id):
        store.seed_task(tenant_id, 1)

        with pytest.raises(InvalidTransitionError, match="Cannot transition from 'pending' to 'done'"):
            await service.transition_task(store, tenant_id, task_uuid(1), TaskStatus.DONE)
        assert store.tasks[task_uuid(1)].status == TaskStatus.PENDING
        assert store.history == []

    async def test_transition_subtask(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_subtask(tenant_id, 1, 1)

        updated = await service.transition_subtask(
            store, tenant_id, task_uuid(1), subtask_uuid(1, 1), TaskStatus.IN_PROGRESS
        )

        assert updated.status == TaskStatus.IN_PROGRESS
        assert store.history[-1][1].change_summary == "Subtask 1.1: pending → in-progress"

    async def test_transition_subtask_of_other_task(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2)
        store.seed_subtask(tenant_id, 2, 1)

        with pytest.raises(TaskNotFoundError, match="Subtask not found"):
            await service.transition_subtask(
                store, tenant_id, task_uuid(1), subtask_uuid(2, 1), TaskStatus.IN_PROGRESS
            )

    async def test_finishing_blocker_unblocks_dependent(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2, deps=[1])

        await service.transition_task(store, tenant_id, task_uuid(1), TaskStatus.IN_PROGRESS)
        await service.transition_task(store, tenant_id, task_uuid(1), TaskStatus.DONE)

        result = await service.find_next_task(store, tenant_id)
        assert result.task.task_number == 2


# ---------------------------------------------------------------------------
# Dependency edits
# ---------------------------------------------------------------------------


class TestDependencyEdits:
    async def test_add_dependency(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2)

        updated = await service.add_dependency(store, tenant_id, task_uuid(2), task_uuid(1))

        assert updated.dependency_ids == [task_uuid(1)]
        ((_, entry),) = store.history
        assert entry.action == HistoryAction.DEPENDENCY_ADDED
        assert entry.change_summary == "Added dependency: Task #2 depends on #1"

    async def test_add_self_dependency(self, store, tenant_id):
        store.seed_task(tenant_id, 1)

        with pytest.raises(DependencyConflictError, match="cannot depend on itself"):
            await service.add_dependency(store, tenant_id, task_uuid(1), task_uuid(1))

    async def test_add_duplicate_dependency(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2, deps=[1])

        with pytest.raises(DependencyConflictError, match="already depends on task #1"):
            await service.add_dependency(store, tenant_id, task_uuid(2), task_uuid(1))

    async def test_add_cycle_rejected(self, store, tenant_id):
        store.seed_task(tenant_id, 1, deps=[2])
        store.seed_task(tenant_id, 2, deps=[3])
        store.seed_task(tenant_id, 3)

        with pytest.raises(DependencyConflictError, match="circular dependency"):
            await service.add_dependency(store, tenant_id, task_uuid(3), task_uuid(1))
        assert store.dependency_writes == []

    async def test_add_dependency_on_unknown_task(self, store, tenant_id):
        store.seed_task(tenant_id, 1)

        with pytest.raises(TaskNotFoundError, match="Dependency task not found"):
            await service.add_dependency(store, tenant_id, task_uuid(1), uuid.uuid4())
        with pytest.raises(TaskNotFoundError, match="Task not found"):
            await service.add_dependency(store, tenant_id, uuid.uuid4(), task_uuid(1))

    async def test_remove_dependency(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2)
        store.seed_task(tenant_id, 3, deps=[1, 2, 1])

        updated = await service.remove_dependency(store, tenant_id, task_uuid(3), task_uuid(1))

        assert updated.dependency_ids == [task_uuid(2)]
        assert _actions(store) == [HistoryAction.DEPENDENCY_REMOVED]

    async def test_remove_absent_dependency(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2)

        with pytest.raises(TaskNotFoundError, match="Dependency not found"):
            await service.remove_dependency(store, tenant_id, task_uuid(2), task_uuid(1))


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


class TestRemoveTask:
    async def test_remove_cascades_edges(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2, deps=[1])
        store.seed_task(tenant_id, 3, deps=[2, 1])
        store.seed_task(tenant_id, 4, deps=[2])

        updated = await service.remove_task(store, tenant_id, task_uuid(1))

        assert sorted(updated) == [2, 3]
        assert store.dependency_numbers(2) == []
        assert store.dependency_numbers(3) == [2]
        assert store.dependency_numbers(4) == [2]
        assert task_uuid(1) in store.deleted
        report = await service.validate_dependencies(store, tenant_id)
        assert report.is_valid
        assert HistoryAction.DELETED in _actions(store)

    async def test_remove_unknown_task(self, store, tenant_id):
        with pytest.raises(TaskNotFoundError):
            await service.remove_task(store, tenant_id, uuid.uuid4())

    async def test_failed_cascade_is_repairable(self, store, tenant_id):
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2, deps=[1])
        store.fail_updates_for.add(task_uuid(2))

        with pytest.raises(StoreError):
            await service.remove_task(store, tenant_id, task_uuid(1))
        assert task_uuid(1) in store.deleted

        store.fail_updates_for.clear()
        report = await service.fix_dependencies(store, tenant_id)
        assert report.fixed_count == 1
        assert store.dependency_numbers(2) == []


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class TestHistory:
    async def test_history_failure_does_not_fail_operation(self, store, tenant_id):
        store.seed_task(tenant_id, 1, deps=[1])
        store.fail_history = True

        report = await service.fix_dependencies(store, tenant_id)

        assert report.fixed_count == 1
        assert store.dependency_numbers(1) == []
        assert store.history == []

    async def test_history_disabled(self, store, tenant_id, monkeypatch):
        monkeypatch.setenv("TG_HISTORY_ENABLED", "false")
        store.seed_task(tenant_id, 1)
        store.seed_task(tenant_id, 2)

        await service.validate_dependencies(store, tenant_id)
        await service.add_dependency(store, tenant_id, task_uuid(2), task_uuid(1))

        assert store.history == []
