"""
Graph store: the persistence boundary of the engine.

``GraphStore`` is what the validator, repairer and scheduler consume.
``SqlGraphStore`` implements it on SQLModel tables; every call opens its own
session, so each write commits (or fails) on its own.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from taskgraph.core.database import SessionFactory, session_scope
from taskgraph.core.errors import StoreError, TaskNotFoundError
from taskgraph.models.base import utcnow
from taskgraph.models.history import TaskHistory
from taskgraph.models.subtask import Subtask
from taskgraph.models.task import Task
from taskgraph_shared.schemas.common import TaskStatus
from taskgraph_shared.schemas.dependencies import HistoryEntryCreate
from taskgraph_shared.schemas.tasks import SubtaskCreate, SubtaskRead, TaskCreate, TaskRead


class GraphStore(Protocol):
    async def list_tasks(self, tenant_id: uuid.UUID) -> list[TaskRead]: ...

    async def list_subtasks(self, tenant_id: uuid.UUID, task_id: uuid.UUID) -> list[SubtaskRead]: ...

    async def update_dependencies(
        self, tenant_id: uuid.UUID, task_id: uuid.UUID, dependency_ids: Sequence[uuid.UUID]
    ) -> TaskRead: ...

    async def append_history_entry(self, tenant_id: uuid.UUID, entry: HistoryEntryCreate) -> None: ...

    async def get_task(self, tenant_id: uuid.UUID, task_id: uuid.UUID) -> Optional[TaskRead]: ...

    async def insert_task(self, tenant_id: uuid.UUID, task_in: TaskCreate) -> TaskRead: ...

    async def insert_subtask(
        self, tenant_id: uuid.UUID, task_id: uuid.UUID, subtask_in: SubtaskCreate
    ) -> SubtaskRead: ...

    async def update_task_status(
        self, tenant_id: uuid.UUID, task_id: uuid.UUID, status: TaskStatus
    ) -> TaskRead: ...

    async def update_subtask_status(
        self, tenant_id: uuid.UUID, subtask_id: uuid.UUID, status: TaskStatus
    ) -> SubtaskRead: ...

    async def soft_delete_task(self, tenant_id: uuid.UUID, task_id: uuid.UUID) -> None: ...

    async def soft_delete_subtask(self, tenant_id: uuid.UUID, subtask_id: uuid.UUID) -> None: ...

    async def soft_delete_subtasks(self, tenant_id: uuid.UUID, task_id: uuid.UUID) -> int: ...


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def task_to_read(task: Task) -> TaskRead:
    return TaskRead(
        id=task.id,
        tenant_id=task.tenant_id,
        task_number=task.task_number,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        dependency_ids=[uuid.UUID(str(d)) for d in task.dependencies or []],
        completed_at=task.completed_at,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def subtask_to_read(subtask: Subtask) -> SubtaskRead:
    return SubtaskRead(
        id=subtask.id,
        tenant_id=subtask.tenant_id,
        parent_task_id=subtask.parent_task_id,
        subtask_number=subtask.subtask_number,
        title=subtask.title,
        description=subtask.description,
        status=subtask.status,
        completed_at=subtask.completed_at,
        created_at=subtask.created_at,
        updated_at=subtask.updated_at,
    )


def _completed_at(status: TaskStatus, current: Optional[datetime]) -> Optional[datetime]:
    if status == TaskStatus.DONE:
        return current or utcnow()
    return None


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------


class SqlGraphStore:
    """GraphStore backed by the ``tasks`` / ``subtasks`` / ``task_history`` tables."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def _get_live_task(self, session, tenant_id: uuid.UUID, task_id: uuid.UUID) -> Task:
        task = await session.get(Task, task_id)
        if not task or task.tenant_id != tenant_id or task.deleted_at is not None:
            raise TaskNotFoundError("Task not found", {"task_id": str(task_id)})
        return task

    async def list_tasks(self, tenant_id: uuid.UUID) -> list[TaskRead]:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(Task)
                    .where(Task.tenant_id == tenant_id, Task.deleted_at.is_(None))
                    .order_by(Task.task_number)
                )
                return [task_to_read(t) for t in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load tasks: {exc}", {"tenant_id": str(tenant_id)}) from exc

    async def list_subtasks(self, tenant_id: uuid.UUID, task_id: uuid.UUID) -> list[SubtaskRead]:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(Subtask)
                    .where(
                        Subtask.tenant_id == tenant_id,
                        Subtask.parent_task_id == task_id,
                        Subtask.deleted_at.is_(None),
                    )
                    .order_by(Subtask.subtask_number)
                )
                return [subtask_to_read(s) for s in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Failed to load subtasks: {exc}",
                {"tenant_id": str(tenant_id), "task_id": str(task_id)},
            ) from exc

    async def get_task(self, tenant_id: uuid.UUID, task_id: uuid.UUID) -> Optional[TaskRead]:
        try:
            async with session_scope(self._session_factory) as session:
                task = await session.get(Task, task_id)
                if not task or task.tenant_id != tenant_id or task.deleted_at is not None:
                    return None
                return task_to_read(task)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load task: {exc}", {"task_id": str(task_id)}) from exc

    async def update_dependencies(
        self, tenant_id: uuid.UUID, task_id: uuid.UUID, dependency_ids: Sequence[uuid.UUID]
    ) -> TaskRead:
        try:
            async with session_scope(self._session_factory) as session:
                task = await self._get_live_task(session, tenant_id, task_id)
                # Assign a fresh list so the JSON column is flagged dirty.
                task.dependencies = [str(d) for d in dependency_ids]
                session.add(task)
                await session.flush()
                await session.refresh(task)
                return task_to_read(task)
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Failed to update dependencies: {exc}", {"task_id": str(task_id)}
            ) from exc

    async def insert_task(self, tenant_id: uuid.UUID, task_in: TaskCreate) -> TaskRead:
        try:
            async with session_scope(self._session_factory) as session:
                # Deleted rows keep their numbers; numbers are never reused.
                result = await session.execute(
                    select(func.max(Task.task_number)).where(Task.tenant_id == tenant_id)
                )
                next_number = (result.scalar() or 0) + 1
                task = Task(
                    tenant_id=tenant_id,
                    task_number=next_number,
                    title=task_in.title,
                    description=task_in.description,
                    priority=task_in.priority.value,
                    status=TaskStatus.PENDING.value,
                    dependencies=[str(d) for d in task_in.dependency_ids],
                )
                session.add(task)
                await session.flush()
                await session.refresh(task)
                return task_to_read(task)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to create task: {exc}", {"tenant_id": str(tenant_id)}) from exc

    async def insert_subtask(
        self, tenant_id: uuid.UUID, task_id: uuid.UUID, subtask_in: SubtaskCreate
    ) -> SubtaskRead:
        try:
            async with session_scope(self._session_factory) as session:
                await self._get_live_task(session, tenant_id, task_id)
                result = await session.execute(
                    select(func.max(Subtask.subtask_number)).where(Subtask.parent_task_id == task_id)
                )
                subtask = Subtask(
                    tenant_id=tenant_id,
                    parent_task_id=task_id,
                    subtask_number=(result.scalar() or 0) + 1,
                    title=subtask_in.title,
                    description=subtask_in.description,
                    status=TaskStatus.PENDING.value,
                )
                session.add(subtask)
                await session.flush()
                await session.refresh(subtask)
                return subtask_to_read(subtask)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to create subtask: {exc}", {"task_id": str(task_id)}) from exc

    async def update_task_status(
        self, tenant_id: uuid.UUID, task_id: uuid.UUID, status: TaskStatus
    ) -> TaskRead:
        try:
            async with session_scope(self._session_factory) as session:
                task = await self._get_live_task(session, tenant_id, task_id)
                task.status = status.value
                task.completed_at = _completed_at(status, task.completed_at)
                session.add(task)
                await session.flush()
                await session.refresh(task)
                return task_to_read(task)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to update task status: {exc}", {"task_id": str(task_id)}) from exc

    async def update_subtask_status(
        self, tenant_id: uuid.UUID, subtask_id: uuid.UUID, status: TaskStatus
    ) -> SubtaskRead:
        try:
            async with session_scope(self._session_factory) as session:
                subtask = await session.get(Subtask, subtask_id)
                if not subtask or subtask.tenant_id != tenant_id or subtask.deleted_at is not None:
                    raise TaskNotFoundError("Subtask not found", {"subtask_id": str(subtask_id)})
                subtask.status = status.value
                subtask.completed_at = _completed_at(status, subtask.completed_at)
                session.add(subtask)
                await session.flush()
                await session.refresh(subtask)
                return subtask_to_read(subtask)
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Failed to update subtask status: {exc}", {"subtask_id": str(subtask_id)}
            ) from exc

    async def soft_delete_task(self, tenant_id: uuid.UUID, task_id: uuid.UUID) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                task = await self._get_live_task(session, tenant_id, task_id)
                now = utcnow()
                task.deleted_at = now
                session.add(task)
                result = await session.execute(
                    select(Subtask).where(
                        Subtask.parent_task_id == task_id, Subtask.deleted_at.is_(None)
                    )
                )
                for subtask in result.scalars().all():
                    subtask.deleted_at = now
                    session.add(subtask)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete task: {exc}", {"task_id": str(task_id)}) from exc

    async def soft_delete_subtask(self, tenant_id: uuid.UUID, subtask_id: uuid.UUID) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                subtask = await session.get(Subtask, subtask_id)
                if not subtask or subtask.tenant_id != tenant_id or subtask.deleted_at is not None:
                    raise TaskNotFoundError("Subtask not found", {"subtask_id": str(subtask_id)})
                subtask.deleted_at = utcnow()
                session.add(subtask)
        except SQLAlchemyError as exc:
            raise StoreError(
                f"Failed to delete subtask: {exc}", {"subtask_id": str(subtask_id)}
            ) from exc

    async def soft_delete_subtasks(self, tenant_id: uuid.UUID, task_id: uuid.UUID) -> int:
        """Soft-delete every live subtask of a task; returns how many were removed."""
        try:
            async with session_scope(self._session_factory) as session:
                await self._get_live_task(session, tenant_id, task_id)
                result = await session.execute(
                    select(Subtask).where(
                        Subtask.tenant_id == tenant_id,
                        Subtask.parent_task_id == task_id,
                        Subtask.deleted_at.is_(None),
                    )
                )
                subtasks = result.scalars().all()
                now = utcnow()
                for subtask in subtasks:
                    subtask.deleted_at = now
                    session.add(subtask)
                return len(subtasks)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to clear subtasks: {exc}", {"task_id": str(task_id)}) from exc

    async def append_history_entry(self, tenant_id: uuid.UUID, entry: HistoryEntryCreate) -> None:
        try:
            async with session_scope(self._session_factory) as session:
                session.add(
                    TaskHistory(
                        tenant_id=tenant_id,
                        task_id=entry.task_id,
                        action=entry.action.value,
                        change_summary=entry.change_summary,
                        new_value=entry.model_dump(mode="json")["new_value"],
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to append history entry: {exc}", {"action": entry.action.value}) from exc

    async def list_history(self, tenant_id: uuid.UUID) -> list[TaskHistory]:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(TaskHistory)
                    .where(TaskHistory.tenant_id == tenant_id)
                    .order_by(TaskHistory.created_at)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load history: {exc}", {"tenant_id": str(tenant_id)}) from exc
