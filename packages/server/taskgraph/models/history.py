"""Task history model (append-only audit trail)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import JSONType, utcnow


class TaskHistory(SQLModel, table=True):
    __tablename__ = "task_history"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: uuid.UUID = Field(nullable=False, index=True)
    task_id: Optional[uuid.UUID] = Field(default=None, index=True)  # no FK: entries outlive deleted tasks
    action: str = Field(nullable=False)  # e.g. dependencies_fixed, status_changed
    change_summary: str = Field(nullable=False, default="")
    new_value: dict = Field(default_factory=dict, sa_type=JSONType, nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.text("CURRENT_TIMESTAMP")},
        sa_type=sa.DateTime(timezone=True),
    )
