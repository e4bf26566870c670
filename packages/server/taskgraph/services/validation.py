"""
Read-only dependency integrity scan.
"""

from __future__ import annotations

import uuid

import structlog

from taskgraph.services.graph import (
    CycleDetector,
    build_adjacency,
    duplicated_ids,
    format_path,
    ordered_tasks,
    task_numbers,
    unique_in_order,
)
from taskgraph.services.store import GraphStore
from taskgraph_shared.schemas.common import IssueType
from taskgraph_shared.schemas.dependencies import DependencyIssue, ValidationReport
from taskgraph_shared.schemas.tasks import TaskRead

log = structlog.get_logger()


def _describe(dep_id: uuid.UUID, numbers: dict[uuid.UUID, int]) -> str:
    number = numbers.get(dep_id)
    return f"#{number}" if number is not None else str(dep_id)


class DependencyValidator:
    """Reports missing, self, duplicate and circular dependencies without writing anything."""

    def __init__(self, store: GraphStore):
        self._store = store

    async def validate(self, tenant_id: uuid.UUID) -> ValidationReport:
        tasks = ordered_tasks(await self._store.list_tasks(tenant_id))
        if not tasks:
            return ValidationReport(message="No tasks found to validate dependencies")

        numbers = task_numbers(tasks)
        detector = CycleDetector(build_adjacency(tasks))

        issues: list[DependencyIssue] = []
        with_dependencies = 0
        for task in tasks:
            if not task.dependency_ids:
                continue
            with_dependencies += 1
            issues.extend(self.check_task(task, numbers, detector))

        report = ValidationReport(
            issues=issues,
            tasks_checked=len(tasks),
            tasks_with_dependencies=with_dependencies,
        )
        if report.is_valid:
            report.message = (
                f"Dependencies validation passed. Checked {len(tasks)} tasks "
                f"({with_dependencies} with dependencies)."
            )
            log.info("dependencies.validated", tasks_checked=len(tasks), issues=0)
        else:
            types = ", ".join(t.value for t in report.issue_types)
            report.message = (
                f"Dependencies validation found {report.issue_count} issue(s) across "
                f"{len(tasks)} tasks. Issue types: {types}."
            )
            log.warning(
                "dependencies.validated",
                tasks_checked=len(tasks),
                issues=report.issue_count,
                issue_types=types,
            )
            for issue in issues:
                log.warning("dependencies.issue", type=issue.type.value, detail=issue.message)
        return report

    def check_task(
        self,
        task: TaskRead,
        numbers: dict[uuid.UUID, int],
        detector: CycleDetector,
    ) -> list[DependencyIssue]:
        """Issues anchored at one task, in missing / self / duplicate / circular order."""
        issues: list[DependencyIssue] = []
        deps = task.dependency_ids

        for dep_id in unique_in_order(deps):
            if dep_id not in numbers:
                issues.append(
                    DependencyIssue(
                        type=IssueType.MISSING_DEPENDENCY,
                        task_number=task.task_number,
                        task_id=task.id,
                        dependency_id=dep_id,
                        message=f"Task #{task.task_number} depends on non-existent task (ID: {dep_id})",
                    )
                )

        if task.id in deps:
            issues.append(
                DependencyIssue(
                    type=IssueType.SELF_DEPENDENCY,
                    task_number=task.task_number,
                    task_id=task.id,
                    dependency_id=task.id,
                    dependency_task_number=task.task_number,
                    message=f"Task #{task.task_number} depends on itself",
                )
            )

        duplicates = duplicated_ids(deps)
        if duplicates:
            listed = ", ".join(_describe(d, numbers) for d in duplicates)
            issues.append(
                DependencyIssue(
                    type=IssueType.DUPLICATE_DEPENDENCY,
                    task_number=task.task_number,
                    task_id=task.id,
                    duplicates=duplicates,
                    message=f"Task #{task.task_number} has duplicate dependencies: {listed}",
                )
            )

        cycle = detector.find_cycle_containing(task.id)
        if cycle:
            path = [numbers[node] for node in cycle]
            issues.append(
                DependencyIssue(
                    type=IssueType.CIRCULAR_DEPENDENCY,
                    task_number=task.task_number,
                    task_id=task.id,
                    dependency_id=cycle[1],
                    dependency_task_number=path[1],
                    path=path,
                    message=f"Task #{task.task_number} has circular dependency: {format_path(path)}",
                )
            )

        return issues
