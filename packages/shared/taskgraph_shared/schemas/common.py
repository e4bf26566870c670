from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    DONE = "done"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssueType(str, Enum):
    MISSING_DEPENDENCY = "missing_dependency"
    SELF_DEPENDENCY = "self_dependency"
    DUPLICATE_DEPENDENCY = "duplicate_dependency"
    CIRCULAR_DEPENDENCY = "circular_dependency"


class HistoryAction(str, Enum):
    CREATED = "created"
    DELETED = "deleted"
    STATUS_CHANGED = "status_changed"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    DEPENDENCIES_VALIDATED = "dependencies_validated"
    DEPENDENCIES_FIXED = "dependencies_fixed"
    SUBTASK_REMOVED = "subtask_removed"
    SUBTASKS_CLEARED = "subtasks_cleared"


# Only "done" satisfies a dependency; cancelled blockers stay unsatisfied.
SATISFIED_STATUSES = frozenset({TaskStatus.DONE})

# Statuses a unit of work can be picked up in
ACTIONABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})

# Tasks in these statuses are never offered as "next"
CLOSED_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.CANCELLED})


class WireModel(BaseModel):
    """Base for records handed to callers: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
