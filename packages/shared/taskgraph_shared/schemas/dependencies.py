"""Records produced by dependency validation, repair and next-task selection.

Field names follow the camelCase wire vocabulary when dumped with
``by_alias=True`` (``taskNumber``, ``dependencyId``, ``tasksChecked`` ...).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .common import HistoryAction, IssueType, WireModel
from .tasks import SubtaskRead, TaskRead


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class DependencyIssue(WireModel):
    """One graph-integrity violation anchored at a task."""
    type: IssueType
    task_number: int
    task_id: UUID
    message: str
    dependency_id: Optional[UUID] = None
    dependency_task_number: Optional[int] = None
    duplicates: List[UUID] = Field(default_factory=list)
    path: List[int] = Field(default_factory=list)


class ValidationReport(WireModel):
    issues: List[DependencyIssue] = Field(default_factory=list)
    tasks_checked: int = 0
    tasks_with_dependencies: int = 0
    message: str = ""

    @property
    def issue_count(self) -> int:
        return len(self.issues)

    @property
    def issue_types(self) -> List[IssueType]:
        seen: List[IssueType] = []
        for issue in self.issues:
            if issue.type not in seen:
                seen.append(issue.type)
        return seen

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def wire(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        data["issueCount"] = self.issue_count
        data["issueTypes"] = [t.value for t in self.issue_types]
        return data


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

class RemovedDependency(WireModel):
    type: IssueType
    reason: str
    dependency_id: Optional[UUID] = None
    dependency_task_number: Optional[int] = None
    count: int = 1


class DependencyFix(WireModel):
    """Edges removed from one task during a repair run."""
    task_number: int
    task_id: UUID
    original_dependency_count: int
    fixed_dependency_count: int
    dependency_ids: List[UUID] = Field(default_factory=list)
    removed: List[RemovedDependency] = Field(default_factory=list)
    message: str = ""


class FixFailure(WireModel):
    """A computed fix that could not be persisted."""
    task_number: int
    task_id: UUID
    error: str
    attempted: DependencyFix


class RepairReport(WireModel):
    tasks_checked: int = 0
    fixes: List[DependencyFix] = Field(default_factory=list, alias="perTaskFixes")
    failures: List[FixFailure] = Field(default_factory=list)
    message: str = ""

    @property
    def fixed_count(self) -> int:
        return len(self.fixes)

    @property
    def removed_count(self) -> int:
        return sum(entry.count for fix in self.fixes for entry in fix.removed)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)

    def wire(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        data["fixedCount"] = self.fixed_count
        return data


# ---------------------------------------------------------------------------
# Next task
# ---------------------------------------------------------------------------

class NextTaskResult(WireModel):
    task: Optional[TaskRead] = None
    subtask: Optional[SubtaskRead] = None
    is_subtask: bool = False
    message: str = ""

    @property
    def unit(self) -> TaskRead | SubtaskRead | None:
        return self.subtask if self.is_subtask else self.task

    @property
    def display_id(self) -> Optional[str]:
        """Task number, or ``"<task>.<subtask>"`` for subtasks."""
        if self.task is None:
            return None
        if self.subtask is not None:
            return f"{self.task.task_number}.{self.subtask.subtask_number}"
        return str(self.task.task_number)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

class HistoryEntryCreate(BaseModel):
    action: HistoryAction
    change_summary: str
    task_id: Optional[UUID] = None
    new_value: Dict[str, Any] = Field(default_factory=dict)
