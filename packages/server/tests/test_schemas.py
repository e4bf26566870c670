"""
Tests for the shared task and report schemas.
"""

from __future__ import annotations

import uuid

import pytest
from pydantic import ValidationError

from taskgraph_shared.schemas.common import (
    ACTIONABLE_STATUSES,
    CLOSED_STATUSES,
    SATISFIED_STATUSES,
    IssueType,
    TaskPriority,
    TaskStatus,
)
from taskgraph_shared.schemas.dependencies import (
    DependencyFix,
    DependencyIssue,
    NextTaskResult,
    RemovedDependency,
    RepairReport,
    ValidationReport,
)
from taskgraph_shared.schemas.tasks import SubtaskRead, TaskCreate, TaskRead


class TestTaskSchemas:
    def test_task_create_defaults(self):
        task = TaskCreate(title="Write docs")
        assert task.priority == TaskPriority.MEDIUM
        assert task.dependency_ids == []
        assert task.description is None

    def test_task_create_rejects_bad_ids(self):
        with pytest.raises(ValidationError):
            TaskCreate(title="x", dependency_ids=["not-a-uuid"])

    def test_status_values(self):
        assert TaskStatus("in-progress") == TaskStatus.IN_PROGRESS
        with pytest.raises(ValueError):
            TaskStatus("blocked")

    def test_status_groups(self):
        assert SATISFIED_STATUSES == {TaskStatus.DONE}
        assert ACTIONABLE_STATUSES == {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}
        assert TaskStatus.CANCELLED in CLOSED_STATUSES
        assert not SATISFIED_STATUSES & {TaskStatus.CANCELLED}


class TestReports:
    def test_issue_wire_names(self):
        issue = DependencyIssue(
            type=IssueType.CIRCULAR_DEPENDENCY,
            task_number=1,
            task_id=uuid.uuid4(),
            message="Task #1 has circular dependency: 1 → 2 → 1",
            dependency_task_number=2,
            path=[1, 2],
        )
        data = issue.model_dump(mode="json", by_alias=True)
        assert data["type"] == "circular_dependency"
        assert data["taskNumber"] == 1
        assert data["dependencyTaskNumber"] == 2
        assert data["path"] == [1, 2]

    def test_populate_by_wire_name(self):
        report = ValidationReport.model_validate({"tasksChecked": 4, "tasksWithDependencies": 1})
        assert report.tasks_checked == 4
        assert report.is_valid
        assert report.issue_types == []

    def test_repair_counts(self):
        task_id = uuid.uuid4()
        fix = DependencyFix(
            task_number=1,
            task_id=task_id,
            original_dependency_count=4,
            fixed_dependency_count=1,
            removed=[
                RemovedDependency(type=IssueType.DUPLICATE_DEPENDENCY, reason="duplicate removed", count=2),
                RemovedDependency(type=IssueType.SELF_DEPENDENCY, reason="self-dependency"),
            ],
        )
        report = RepairReport(tasks_checked=3, fixes=[fix])
        assert report.fixed_count == 1
        assert report.removed_count == 3
        assert not report.is_partial
        assert report.wire()["fixedCount"] == 1


class TestNextTaskResult:
    def test_display_ids(self):
        tenant = uuid.uuid4()
        task = TaskRead(id=uuid.uuid4(), tenant_id=tenant, task_number=7, title="t")
        subtask = SubtaskRead(
            id=uuid.uuid4(), tenant_id=tenant, parent_task_id=task.id, subtask_number=3, title="s"
        )
        assert NextTaskResult(task=task).display_id == "7"
        assert NextTaskResult(task=task).unit == task
        assert NextTaskResult(task=task, subtask=subtask, is_subtask=True).display_id == "7.3"
        assert NextTaskResult().display_id is None
