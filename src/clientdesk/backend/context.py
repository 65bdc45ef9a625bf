"""Explicitly constructed handle on every backend capability."""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import Engine

from clientdesk.backend.database import Database
from clientdesk.backend.realtime import RealtimeBroker
from clientdesk.backend.storage import ObjectStorage, build_storage
from clientdesk.core.settings import Settings
from clientdesk.db.session import build_engine, build_session_factory, create_tables

logger = logging.getLogger(__name__)


class BackendContext:
    """Owns the engine, database capability, realtime broker and storage.

    The application builds one context at startup, passes it to the chat
    services and closes it at shutdown.
    """

    def __init__(
        self,
        engine: Engine,
        database: Database,
        storage: ObjectStorage,
        *,
        auto_create_tables: bool = False,
    ) -> None:
        self.engine = engine
        self.database = database
        self.storage = storage
        self._auto_create_tables = auto_create_tables
        self._closed = False

    @property
    def broker(self) -> RealtimeBroker:
        return self.database.broker

    @classmethod
    def from_settings(cls, settings: Settings) -> BackendContext:
        engine = build_engine(settings.database_url_sync, echo=settings.sql_debug)
        broker = RealtimeBroker(max_queue=settings.realtime_queue_size)
        database = Database(build_session_factory(engine), broker)
        return cls(
            engine,
            database,
            build_storage(settings),
            auto_create_tables=settings.auto_create_tables,
        )

    async def start(self) -> None:
        if self._auto_create_tables:
            await asyncio.to_thread(create_tables, self.engine)
        logger.info("Backend context started (%s)", self.engine.url.render_as_string())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.broker.close()
        self.engine.dispose()
        logger.info("Backend context closed")
