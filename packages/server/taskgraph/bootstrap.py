"""
Task graph engine bootstrap.

Wires settings, logging and the database into a ready ``SqlGraphStore`` for
whatever front end (tool server, CLI, worker) embeds the engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from taskgraph.core.config import Settings, get_settings
from taskgraph.core.database import build_engine, build_session_factory, init_db
from taskgraph.core.logging import configure_logging
from taskgraph.services.store import SqlGraphStore

log = structlog.get_logger()


@dataclass
class GraphRuntime:
    settings: Settings
    engine: AsyncEngine
    store: SqlGraphStore

    async def close(self) -> None:
        await self.engine.dispose()
        log.info("taskgraph.stopped")


async def open_store(settings: Optional[Settings] = None, create_tables: bool = True) -> GraphRuntime:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    engine = build_engine(settings)
    if create_tables:
        await init_db(engine)
    store = SqlGraphStore(build_session_factory(engine))
    log.info("taskgraph.started", history_enabled=settings.history_enabled)
    return GraphRuntime(settings=settings, engine=engine, store=store)
