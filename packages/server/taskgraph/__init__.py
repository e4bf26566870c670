"""
Task Graph Engine

Validates, repairs and schedules a tenant's task dependency graph: integrity
checks, idempotent edge repair and next-task selection over tasks and subtasks.
"""

__version__ = "0.1.0"
