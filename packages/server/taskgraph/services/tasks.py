"""
Task service layer: the operations callers use on one tenant's task graph.

Handles:
- Dependency validation, repair and next-task selection
- Pre-flight cycle checks before new edges are added
- Task / subtask creation and removal, status transitions, task deletion with edge cascade
- History entries for every run and every change

Every function takes the graph store and an explicit tenant id; nothing falls
back to a default tenant.
"""

from __future__ import annotations

import uuid
from typing import Optional, Union

import structlog

from taskgraph.core.config import get_settings
from taskgraph.core.errors import (
    ConfigurationError,
    DependencyConflictError,
    InvalidTransitionError,
    StoreError,
    TaskNotFoundError,
)
from taskgraph.core.logging import tenant_context
from taskgraph.services.graph import CycleDetector, build_adjacency, duplicated_ids, ordered_tasks
from taskgraph.services.repair import DependencyRepairer
from taskgraph.services.scheduler import ReadinessScheduler
from taskgraph.services.store import GraphStore
from taskgraph.services.validation import DependencyValidator
from taskgraph_shared.schemas.common import HistoryAction, TaskStatus
from taskgraph_shared.schemas.dependencies import (
    HistoryEntryCreate,
    NextTaskResult,
    RepairReport,
    ValidationReport,
)
from taskgraph_shared.schemas.tasks import SubtaskCreate, SubtaskRead, TaskCreate, TaskRead

log = structlog.get_logger()

TenantRef = Union[uuid.UUID, str, None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def require_tenant(tenant_id: TenantRef) -> uuid.UUID:
    """Resolve the tenant id or fail before touching the store."""
    if tenant_id is None or (isinstance(tenant_id, str) and not tenant_id.strip()):
        raise ConfigurationError("Tenant ID is required")
    if isinstance(tenant_id, uuid.UUID):
        return tenant_id
    try:
        return uuid.UUID(str(tenant_id))
    except ValueError as exc:
        raise ConfigurationError(f"Invalid tenant ID: {tenant_id!r}") from exc


async def get_task_or_404(store: GraphStore, tenant_id: uuid.UUID, task_id: uuid.UUID) -> TaskRead:
    task = await store.get_task(tenant_id, task_id)
    if task is None:
        raise TaskNotFoundError("Task not found", {"task_id": str(task_id)})
    return task


async def get_subtask_or_404(
    store: GraphStore, tenant_id: uuid.UUID, task_id: uuid.UUID, subtask_id: uuid.UUID
) -> SubtaskRead:
    subtask: Optional[SubtaskRead] = next(
        (s for s in await store.list_subtasks(tenant_id, task_id) if s.id == subtask_id),
        None,
    )
    if subtask is None:
        raise TaskNotFoundError("Subtask not found", {"subtask_id": str(subtask_id)})
    return subtask


async def _record_history(store: GraphStore, tenant_id: uuid.UUID, entry: HistoryEntryCreate) -> None:
    """Append to the audit trail; a failing sink never fails the caller."""
    if not get_settings().history_enabled:
        return
    try:
        await store.append_history_entry(tenant_id, entry)
    except StoreError as exc:
        log.warning("history.append_failed", action=entry.action.value, error=exc.message)


# ---------------------------------------------------------------------------
# Graph operations
# ---------------------------------------------------------------------------


async def validate_dependencies(store: GraphStore, tenant_id: TenantRef) -> ValidationReport:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "validate_dependencies"):
        report = await DependencyValidator(store).validate(tenant_id)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.DEPENDENCIES_VALIDATED,
                change_summary=f"Dependency validation completed: {report.issue_count} issues found",
                new_value={
                    "tasksChecked": report.tasks_checked,
                    "tasksWithDependencies": report.tasks_with_dependencies,
                    "issueCount": report.issue_count,
                    "issueTypes": [t.value for t in report.issue_types],
                },
            ),
        )
        return report


async def fix_dependencies(store: GraphStore, tenant_id: TenantRef) -> RepairReport:
    """Repair the tenant's graph.

    Succeeds even when some per-task writes fail; those are listed in
    ``report.failures``. Only a failed snapshot read raises.
    """
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "fix_dependencies"):
        report = await DependencyRepairer(store).repair(tenant_id)
        if report.is_partial:
            log.warning(
                "dependencies.fix_partial",
                fixed=report.fixed_count,
                failed=len(report.failures),
            )
        else:
            log.info("dependencies.fixed", fixed=report.fixed_count, removed=report.removed_count)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.DEPENDENCIES_FIXED,
                change_summary=f"Dependency fixing completed: {report.fixed_count} tasks fixed",
                new_value={
                    "tasksChecked": report.tasks_checked,
                    "tasksFixed": report.fixed_count,
                    "fixes": [
                        {"taskNumber": fix.task_number, "issuesFixed": len(fix.removed)}
                        for fix in report.fixes
                    ],
                    "failedTaskNumbers": [f.task_number for f in report.failures],
                },
            ),
        )
        return report


async def find_next_task(store: GraphStore, tenant_id: TenantRef) -> NextTaskResult:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "find_next_task"):
        return await ReadinessScheduler(store).find_next(tenant_id)


async def would_create_cycle(
    store: GraphStore,
    tenant_id: TenantRef,
    task_id: uuid.UUID,
    candidate_id: uuid.UUID,
) -> bool:
    """Pre-flight check: would ``task_id`` depending on ``candidate_id`` close a cycle?"""
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "would_create_cycle"):
        tasks = await store.list_tasks(tenant_id)
        return CycleDetector(build_adjacency(tasks)).would_create_cycle(task_id, candidate_id)


# ---------------------------------------------------------------------------
# Tasks and subtasks
# ---------------------------------------------------------------------------


async def create_task(store: GraphStore, tenant_id: TenantRef, task_in: TaskCreate) -> TaskRead:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "create_task"):
        if task_in.dependency_ids:
            live = {t.id for t in await store.list_tasks(tenant_id)}
            unknown = [d for d in task_in.dependency_ids if d not in live]
            if unknown:
                raise TaskNotFoundError(
                    "Dependency task not found", {"dependency_ids": [str(d) for d in unknown]}
                )
            if duplicated_ids(task_in.dependency_ids):
                raise DependencyConflictError("Duplicate dependencies in request")

        task = await store.insert_task(tenant_id, task_in)
        log.info("task.created", task_number=task.task_number)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.CREATED,
                change_summary=f"Created task #{task.task_number}",
                task_id=task.id,
                new_value={"title": task.title, "dependencies": [str(d) for d in task.dependency_ids]},
            ),
        )
        return task


async def add_subtask(
    store: GraphStore,
    tenant_id: TenantRef,
    task_id: uuid.UUID,
    subtask_in: SubtaskCreate,
) -> SubtaskRead:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "add_subtask"):
        task = await get_task_or_404(store, tenant_id, task_id)
        subtask = await store.insert_subtask(tenant_id, task.id, subtask_in)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.CREATED,
                change_summary=f"Created subtask {task.task_number}.{subtask.subtask_number}",
                task_id=task.id,
                new_value={"title": subtask.title, "subtaskNumber": subtask.subtask_number},
            ),
        )
        return subtask


async def remove_subtask(
    store: GraphStore,
    tenant_id: TenantRef,
    task_id: uuid.UUID,
    subtask_id: uuid.UUID,
) -> SubtaskRead:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "remove_subtask"):
        task = await get_task_or_404(store, tenant_id, task_id)
        subtask = await get_subtask_or_404(store, tenant_id, task.id, subtask_id)
        await store.soft_delete_subtask(tenant_id, subtask.id)
        log.info("subtask.deleted", subtask=f"{task.task_number}.{subtask.subtask_number}")
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.SUBTASK_REMOVED,
                change_summary=f"Removed subtask {task.task_number}.{subtask.subtask_number}",
                task_id=task.id,
                new_value={"title": subtask.title, "subtaskNumber": subtask.subtask_number},
            ),
        )
        return subtask


async def clear_subtasks(store: GraphStore, tenant_id: TenantRef, task_id: uuid.UUID) -> int:
    """Remove every subtask of a task; returns how many were removed.

    A task without subtasks is left alone and records no history entry.
    """
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "clear_subtasks"):
        task = await get_task_or_404(store, tenant_id, task_id)
        subtasks = await store.list_subtasks(tenant_id, task.id)
        if not subtasks:
            return 0
        cleared = await store.soft_delete_subtasks(tenant_id, task.id)
        log.info("subtasks.cleared", task_number=task.task_number, cleared=cleared)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.SUBTASKS_CLEARED,
                change_summary=f"All {cleared} subtasks cleared from task #{task.task_number}",
                task_id=task.id,
                new_value={
                    "subtaskCount": cleared,
                    "subtasks": [
                        {
                            "id": f"{task.task_number}.{s.subtask_number}",
                            "title": s.title,
                            "status": s.status.value,
                        }
                        for s in sorted(subtasks, key=lambda s: s.subtask_number)
                    ],
                },
            ),
        )
        return cleared


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS = {
    TaskStatus.PENDING: [TaskStatus.IN_PROGRESS, TaskStatus.DEFERRED, TaskStatus.CANCELLED],
    TaskStatus.IN_PROGRESS: [
        TaskStatus.DONE,
        TaskStatus.REVIEW,
        TaskStatus.DEFERRED,
        TaskStatus.CANCELLED,
    ],
    TaskStatus.REVIEW: [TaskStatus.IN_PROGRESS, TaskStatus.PENDING],
    TaskStatus.DEFERRED: [TaskStatus.IN_PROGRESS, TaskStatus.PENDING],
    TaskStatus.DONE: [],
    TaskStatus.CANCELLED: [],
}


def check_transition(current: TaskStatus, to_status: TaskStatus) -> None:
    allowed = VALID_TRANSITIONS.get(current, [])
    if to_status not in allowed:
        raise InvalidTransitionError(
            f"Cannot transition from '{current.value}' to '{to_status.value}'. "
            f"Allowed: {[s.value for s in allowed]}",
        )


async def transition_task(
    store: GraphStore,
    tenant_id: TenantRef,
    task_id: uuid.UUID,
    to_status: TaskStatus,
) -> TaskRead:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "transition_task"):
        task = await get_task_or_404(store, tenant_id, task_id)
        check_transition(task.status, to_status)
        updated = await store.update_task_status(tenant_id, task.id, to_status)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.STATUS_CHANGED,
                change_summary=f"Task #{task.task_number}: {task.status.value} → {to_status.value}",
                task_id=task.id,
                new_value={"from": task.status.value, "to": to_status.value},
            ),
        )
        return updated


async def transition_subtask(
    store: GraphStore,
    tenant_id: TenantRef,
    task_id: uuid.UUID,
    subtask_id: uuid.UUID,
    to_status: TaskStatus,
) -> SubtaskRead:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "transition_subtask"):
        task = await get_task_or_404(store, tenant_id, task_id)
        subtask = await get_subtask_or_404(store, tenant_id, task.id, subtask_id)
        check_transition(subtask.status, to_status)
        updated = await store.update_subtask_status(tenant_id, subtask.id, to_status)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.STATUS_CHANGED,
                change_summary=(
                    f"Subtask {task.task_number}.{subtask.subtask_number}: "
                    f"{subtask.status.value} → {to_status.value}"
                ),
                task_id=task.id,
                new_value={"from": subtask.status.value, "to": to_status.value},
            ),
        )
        return updated


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


async def add_dependency(
    store: GraphStore,
    tenant_id: TenantRef,
    task_id: uuid.UUID,
    depends_on_id: uuid.UUID,
) -> TaskRead:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "add_dependency"):
        if task_id == depends_on_id:
            raise DependencyConflictError("A task cannot depend on itself")

        tasks = {t.id: t for t in await store.list_tasks(tenant_id)}
        task = tasks.get(task_id)
        blocker = tasks.get(depends_on_id)
        if task is None:
            raise TaskNotFoundError("Task not found", {"task_id": str(task_id)})
        if blocker is None:
            raise TaskNotFoundError("Dependency task not found", {"task_id": str(depends_on_id)})

        if depends_on_id in task.dependency_ids:
            raise DependencyConflictError(
                f"Task #{task.task_number} already depends on task #{blocker.task_number}"
            )

        detector = CycleDetector(build_adjacency(tasks.values()))
        if detector.would_create_cycle(task_id, depends_on_id):
            raise DependencyConflictError(
                "Adding this dependency would create a circular dependency",
                {"task_number": task.task_number, "depends_on": blocker.task_number},
            )

        updated = await store.update_dependencies(
            tenant_id, task_id, [*task.dependency_ids, depends_on_id]
        )
        log.info("dependency.added", task_number=task.task_number, depends_on=blocker.task_number)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.DEPENDENCY_ADDED,
                change_summary=(
                    f"Added dependency: Task #{task.task_number} depends on #{blocker.task_number}"
                ),
                task_id=task.id,
                new_value={"taskNumber": task.task_number, "dependsOn": blocker.task_number},
            ),
        )
        return updated


async def remove_dependency(
    store: GraphStore,
    tenant_id: TenantRef,
    task_id: uuid.UUID,
    depends_on_id: uuid.UUID,
) -> TaskRead:
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "remove_dependency"):
        task = await get_task_or_404(store, tenant_id, task_id)
        if depends_on_id not in task.dependency_ids:
            raise TaskNotFoundError("Dependency not found", {"depends_on_id": str(depends_on_id)})
        remaining = [d for d in task.dependency_ids if d != depends_on_id]
        updated = await store.update_dependencies(tenant_id, task.id, remaining)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.DEPENDENCY_REMOVED,
                change_summary=f"Removed dependency from task #{task.task_number}",
                task_id=task.id,
                new_value={"taskNumber": task.task_number, "removed": str(depends_on_id)},
            ),
        )
        return updated


async def remove_task(store: GraphStore, tenant_id: TenantRef, task_id: uuid.UUID) -> list[int]:
    """Soft-delete a task and drop every edge pointing at it.

    Returns the numbers of the dependents that were updated. If one of those
    writes fails the error propagates; the dangling edges it leaves behind are
    what ``fix_dependencies`` removes.
    """
    tenant_id = require_tenant(tenant_id)
    with tenant_context(tenant_id, "remove_task"):
        tasks = ordered_tasks(await store.list_tasks(tenant_id))
        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            raise TaskNotFoundError("Task not found", {"task_id": str(task_id)})

        await store.soft_delete_task(tenant_id, task.id)

        updated: list[int] = []
        for dependent in tasks:
            if dependent.id == task.id or task.id not in dependent.dependency_ids:
                continue
            await store.update_dependencies(
                tenant_id,
                dependent.id,
                [d for d in dependent.dependency_ids if d != task.id],
            )
            updated.append(dependent.task_number)

        log.info("task.deleted", task_number=task.task_number, dependents_updated=updated)
        await _record_history(
            store,
            tenant_id,
            HistoryEntryCreate(
                action=HistoryAction.DELETED,
                change_summary=f"Deleted task #{task.task_number}",
                task_id=task.id,
                new_value={"taskNumber": task.task_number, "dependentsUpdated": updated},
            ),
        )
        return updated
