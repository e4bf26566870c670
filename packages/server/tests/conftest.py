"""
Shared fixtures: tenants, the in-memory store and a SQLite-backed SqlGraphStore.
"""

from __future__ import annotations

import uuid

import pytest

from taskgraph.bootstrap import open_store
from taskgraph.core.config import Settings, get_settings

from .fakes import InMemoryGraphStore


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def other_tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
async def sql_store(tmp_path):
    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'taskgraph.db'}",
        log_level="warning",
        log_format="text",
    )
    runtime = await open_store(settings)
    yield runtime.store
    await runtime.close()
