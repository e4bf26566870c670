"""
Exception hierarchy for the task graph engine.

Only conditions that stop an operation are raised. Integrity issues found by
validation and per-task repair failures are returned as data instead.
"""

from __future__ import annotations

from typing import Any, Optional


class TaskGraphError(Exception):
    code = "TASK_GRAPH_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ConfigurationError(TaskGraphError):
    """Raised before any store access when a call is missing required context."""

    code = "CONFIGURATION_ERROR"


class StoreError(TaskGraphError):
    """The graph store failed to read or write."""

    code = "STORE_ERROR"


class TaskNotFoundError(TaskGraphError):
    code = "TASK_NOT_FOUND"


class DependencyConflictError(TaskGraphError):
    code = "DEPENDENCY_CONFLICT"


class InvalidTransitionError(TaskGraphError):
    code = "INVALID_TRANSITION"
