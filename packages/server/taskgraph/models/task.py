"""Task model."""

from typing import List, Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, SoftDeleteMixin, TimestampMixin, UUIDMixin


class Task(UUIDMixin, TimestampMixin, SoftDeleteMixin, SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "task_number", name="tasks_number_tenant_unique"),
    )

    tenant_id: uuid.UUID = Field(nullable=False, index=True)
    task_number: int = Field(nullable=False)
    title: str = Field(nullable=False)
    description: Optional[str] = None
    status: str = Field(nullable=False, default="pending")  # pending | in-progress | review | done | deferred | cancelled
    priority: str = Field(nullable=False, default="medium")  # low | medium | high | critical
    # Ordered task ids (as strings). Kept as a plain list so duplicate, self and
    # dangling references stay representable until repaired.
    dependencies: List[str] = Field(default_factory=list, sa_type=JSONType, nullable=False)
