"""Task and subtask schemas shared by the graph engine and its callers."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .common import TaskPriority, TaskStatus


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

class TaskBase(BaseModel):
    title: str
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM


class TaskCreate(TaskBase):
    dependency_ids: List[UUID] = Field(default_factory=list)


class TaskRead(BaseModel):
    """One live task as seen in a tenant snapshot."""
    id: UUID
    tenant_id: UUID
    task_number: int
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    dependency_ids: List[UUID] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Subtasks
# ---------------------------------------------------------------------------

class SubtaskCreate(BaseModel):
    title: str
    description: Optional[str] = None


class SubtaskRead(BaseModel):
    id: UUID
    tenant_id: UUID
    parent_task_id: UUID
    subtask_number: int
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

