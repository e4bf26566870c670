"""
Dependency repair: prune invalid edges task by task.

Each task's dependency list is normalized in four steps (dangling targets,
self references, duplicates, cycle-closing edges) and written back on its own.
A run is a fixed point: repairing an already repaired graph changes nothing.
"""

from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import dataclass, field

import structlog

from taskgraph.core.errors import TaskGraphError
from taskgraph.services.graph import (
    CycleDetector,
    build_adjacency,
    ordered_tasks,
    task_numbers,
    unique_in_order,
)
from taskgraph.services.store import GraphStore
from taskgraph_shared.schemas.common import IssueType
from taskgraph_shared.schemas.dependencies import (
    DependencyFix,
    FixFailure,
    RemovedDependency,
    RepairReport,
)
from taskgraph_shared.schemas.tasks import TaskRead

log = structlog.get_logger()

REASON_MISSING = "target no longer exists"
REASON_SELF = "self-dependency"
REASON_DUPLICATE = "duplicate removed"
REASON_CYCLE = "would create circular dependency"


@dataclass
class _Normalized:
    kept: list[uuid.UUID] = field(default_factory=list)
    removed: list[RemovedDependency] = field(default_factory=list)


class DependencyRepairer:
    def __init__(self, store: GraphStore):
        self._store = store

    async def repair(self, tenant_id: uuid.UUID) -> RepairReport:
        tasks = ordered_tasks(await self._store.list_tasks(tenant_id))
        if not tasks:
            return RepairReport(message="No tasks found to fix dependencies")

        numbers = task_numbers(tasks)
        # Working graph for this run: processed tasks carry their repaired
        # lists, the rest still carry what the snapshot had.
        working = build_adjacency(tasks)
        detector = CycleDetector(working)

        report = RepairReport(tasks_checked=len(tasks))
        for task in tasks:
            if not task.dependency_ids:
                continue
            result = self.normalize(task, numbers, detector)
            working[task.id] = result.kept
            if not result.removed:
                continue

            fix = DependencyFix(
                task_number=task.task_number,
                task_id=task.id,
                original_dependency_count=len(task.dependency_ids),
                fixed_dependency_count=len(result.kept),
                dependency_ids=result.kept,
                removed=result.removed,
                message=(
                    f"Fixed dependencies for task #{task.task_number}: "
                    f"{len(task.dependency_ids)} → {len(result.kept)}"
                ),
            )
            try:
                await self._store.update_dependencies(tenant_id, task.id, result.kept)
            except TaskGraphError as exc:
                # Includes tasks deleted after the snapshot was read.
                log.warning(
                    "dependencies.fix_failed",
                    task_number=task.task_number,
                    error=exc.message,
                )
                report.failures.append(
                    FixFailure(
                        task_number=task.task_number,
                        task_id=task.id,
                        error=exc.message,
                        attempted=fix,
                    )
                )
                continue

            log.info(
                "dependencies.task_fixed",
                task_number=task.task_number,
                removed=len(task.dependency_ids) - len(result.kept),
            )
            report.fixes.append(fix)

        report.message = self._summarize(report)
        return report

    def normalize(
        self,
        task: TaskRead,
        numbers: dict[uuid.UUID, int],
        detector: CycleDetector,
    ) -> _Normalized:
        result = _Normalized()
        original = task.dependency_ids

        # 1. dangling targets
        remaining = []
        missing: Counter[uuid.UUID] = Counter()
        for dep_id in original:
            if dep_id in numbers:
                remaining.append(dep_id)
            else:
                missing[dep_id] += 1
        for dep_id, count in missing.items():
            result.removed.append(
                RemovedDependency(
                    type=IssueType.MISSING_DEPENDENCY,
                    reason=REASON_MISSING,
                    dependency_id=dep_id,
                    count=count,
                )
            )

        # 2. self references
        self_count = remaining.count(task.id)
        if self_count:
            remaining = [d for d in remaining if d != task.id]
            result.removed.append(
                RemovedDependency(
                    type=IssueType.SELF_DEPENDENCY,
                    reason=REASON_SELF,
                    dependency_id=task.id,
                    dependency_task_number=task.task_number,
                    count=self_count,
                )
            )

        # 3. duplicates, first occurrence wins
        unique = unique_in_order(remaining)
        duplicate_count = len(remaining) - len(unique)
        if duplicate_count:
            result.removed.append(
                RemovedDependency(
                    type=IssueType.DUPLICATE_DEPENDENCY,
                    reason=REASON_DUPLICATE,
                    count=duplicate_count,
                )
            )

        # 4. cycle-closing edges, in list order: earlier entries are kept
        for dep_id in unique:
            if detector.would_create_cycle(task.id, dep_id):
                result.removed.append(
                    RemovedDependency(
                        type=IssueType.CIRCULAR_DEPENDENCY,
                        reason=REASON_CYCLE,
                        dependency_id=dep_id,
                        dependency_task_number=numbers[dep_id],
                    )
                )
            else:
                result.kept.append(dep_id)

        return result

    @staticmethod
    def _summarize(report: RepairReport) -> str:
        if report.fixed_count:
            message = (
                f"Fixed dependencies for {report.fixed_count} task(s). "
                f"Total issues resolved: {report.removed_count}."
            )
        elif not report.failures:
            message = (
                f"No dependency issues found. All {report.tasks_checked} tasks "
                f"have valid dependencies."
            )
        else:
            message = "No dependency fixes could be persisted."
        if report.failures:
            message += f" {len(report.failures)} task(s) could not be updated."
        return message
