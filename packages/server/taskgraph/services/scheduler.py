"""
Next-task selection.

Greedy and single-pass: the first task (by task number) whose dependencies are
all done wins, drilling into its subtasks when it has any.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping

import structlog

from taskgraph.services.graph import ordered_tasks
from taskgraph.services.store import GraphStore
from taskgraph_shared.schemas.common import (
    ACTIONABLE_STATUSES,
    CLOSED_STATUSES,
    SATISFIED_STATUSES,
    TaskStatus,
)
from taskgraph_shared.schemas.dependencies import NextTaskResult
from taskgraph_shared.schemas.tasks import TaskRead

log = structlog.get_logger()

NO_ELIGIBLE_TASK = (
    "No eligible next task found. All tasks are either completed or have "
    "unsatisfied dependencies"
)


def dependencies_satisfied(task: TaskRead, statuses: Mapping[uuid.UUID, TaskStatus]) -> bool:
    """True when every dependency target exists and is done.

    A dependency on a missing or cancelled task is never satisfied.
    """
    return all(statuses.get(dep_id) in SATISFIED_STATUSES for dep_id in task.dependency_ids)


class ReadinessScheduler:
    def __init__(self, store: GraphStore):
        self._store = store

    async def find_next(self, tenant_id: uuid.UUID) -> NextTaskResult:
        tasks = ordered_tasks(await self._store.list_tasks(tenant_id))
        statuses = {task.id: task.status for task in tasks}
        eligible = [task for task in tasks if task.status not in CLOSED_STATUSES]
        log.debug("scheduler.candidates", eligible=len(eligible))

        for task in eligible:
            if not dependencies_satisfied(task, statuses):
                log.debug("scheduler.blocked", task_number=task.task_number)
                continue

            subtasks = await self._store.list_subtasks(tenant_id, task.id)
            if subtasks:
                subtasks.sort(key=lambda s: s.subtask_number)
                for subtask in subtasks:
                    if subtask.status in ACTIONABLE_STATUSES:
                        result = NextTaskResult(task=task, subtask=subtask, is_subtask=True)
                        result.message = f"Next subtask: {result.display_id} - {subtask.title}"
                        log.info("scheduler.next_found", unit=result.display_id, is_subtask=True)
                        return result
                if task.status == TaskStatus.PENDING:
                    return self._task_result(task)
                continue

            if task.status in ACTIONABLE_STATUSES:
                return self._task_result(task)

        log.info("scheduler.nothing_eligible", tasks=len(tasks))
        return NextTaskResult(message=NO_ELIGIBLE_TASK)

    @staticmethod
    def _task_result(task: TaskRead) -> NextTaskResult:
        log.info("scheduler.next_found", unit=str(task.task_number), is_subtask=False)
        return NextTaskResult(
            task=task,
            is_subtask=False,
            message=f"Next task: #{task.task_number} - {task.title}",
        )
