"""Subtask model."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import SoftDeleteMixin, TimestampMixin, UUIDMixin


class Subtask(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "subtasks"
    __table_args__ = (
        sa.UniqueConstraint("parent_task_id", "subtask_number", name="subtasks_number_parent_unique"),
    )

    tenant_id: uuid.UUID = Field(nullable=False, index=True)
    parent_task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    subtask_number: int = Field(nullable=False)
    title: str = Field(nullable=False)
    description: Optional[str] = None
    status: str = Field(nullable=False, default="pending")
