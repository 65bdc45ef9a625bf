# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

_TMP_DIR = tempfile.mkdtemp(prefix="clientdesk-tests-")
os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STORAGE_ROOT", os.path.join(_TMP_DIR, "storage"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'unused.db')}")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")

from clientdesk.backend.context import BackendContext
from clientdesk.backend.database import Database
from clientdesk.backend.realtime import RealtimeBroker
from clientdesk.backend.storage import LocalObjectStorage
from clientdesk.core.security import create_access_token
from clientdesk.core.settings import settings
from clientdesk.db.session import build_engine, build_session_factory, create_tables, drop_tables
from clientdesk.main import app as fastapi_app
from clientdesk.models import ROLE_ADMIN, ROLE_CLIENT, Client, ClientMessage, Profile
from clientdesk.schemas.chat_message import ChatMessage
from clientdesk.services.chat import ChatServices
from clientdesk.services.identity import IdentityResolver
from clientdesk.services.message_store import MessageStore

STORAGE_BASE_URL = "http://test/storage"


@dataclass(frozen=True)
class Seed:
    """Ids of the rows every chat test starts from."""

    admin_id: str = "00000000-0000-0000-0000-00000000a001"
    admin_name: str = "Avery Admin"
    client_user_id: str = "00000000-0000-0000-0000-00000000c001"
    client_user_name: str = "Casey Client"
    client_id: str = "10000000-0000-0000-0000-000000000001"
    other_user_id: str = "00000000-0000-0000-0000-00000000c002"
    other_client_id: str = "10000000-0000-0000-0000-000000000002"


@pytest.fixture()
def engine(tmp_path: Path) -> Iterator[Engine]:
    # A file database per test; the database capability uses worker threads.
    engine = build_engine(f"sqlite:///{tmp_path / 'chat.db'}")
    create_tables(engine)
    try:
        yield engine
    finally:
        drop_tables(engine)
        engine.dispose()


@pytest.fixture()
def broker() -> RealtimeBroker:
    return RealtimeBroker(max_queue=32)


@pytest.fixture()
def database(engine: Engine, broker: RealtimeBroker) -> Database:
    return Database(build_session_factory(engine), broker)


@pytest.fixture()
def storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "storage", STORAGE_BASE_URL)


@pytest.fixture()
def backend(engine: Engine, database: Database, storage: LocalObjectStorage) -> BackendContext:
    return BackendContext(engine, database, storage)


@pytest.fixture()
def chat_services(backend: BackendContext) -> ChatServices:
    return ChatServices.from_context(backend, settings)


@pytest.fixture()
def resolver(database: Database) -> IdentityResolver:
    return IdentityResolver(database)


@pytest.fixture()
def store(database: Database, resolver: IdentityResolver) -> MessageStore:
    return MessageStore(database, resolver)


@pytest.fixture()
def seeded(engine: Engine) -> Seed:
    """Two client conversations, one admin and one portal user per client."""
    seed = Seed()
    session = build_session_factory(engine)()
    with session:
        session.add_all(
            [
                Profile(id=seed.admin_id, full_name=seed.admin_name, role=ROLE_ADMIN),
                Profile(id=seed.client_user_id, full_name=seed.client_user_name, role=ROLE_CLIENT),
                Profile(id=seed.other_user_id, full_name="Olive Other", role=ROLE_CLIENT),
                Client(
                    id=seed.client_id,
                    name="Acme Corp",
                    email="hello@acme.test",
                    company="Acme",
                    user_id=seed.client_user_id,
                ),
                Client(
                    id=seed.other_client_id,
                    name="Bolt Ltd",
                    email="team@bolt.test",
                    company="Bolt",
                    user_id=seed.other_user_id,
                ),
            ]
        )
        session.commit()
    return seed


@pytest.fixture()
def add_message(engine: Engine) -> Callable[..., ClientMessage]:
    """Insert a message row directly, bypassing the realtime feed."""
    session_factory = build_session_factory(engine)

    def _add(
        client_id: str,
        sender_id: str,
        *,
        is_from_client: bool,
        created_at: datetime,
        message: str = "",
        **fields: Any,
    ) -> ClientMessage:
        row = ClientMessage(
            client_id=client_id,
            sender_id=sender_id,
            is_from_client=is_from_client,
            created_at=created_at,
            message=message,
            **fields,
        )
        with session_factory() as session:
            session.add(row)
            session.commit()
        return row

    return _add


@pytest.fixture()
def rename_profile(engine: Engine) -> Callable[[str, str], None]:
    """Change a profile's full name directly in the database."""
    session_factory = build_session_factory(engine)

    def _rename(profile_id: str, full_name: str) -> None:
        with session_factory() as session:
            session.get(Profile, profile_id).full_name = full_name
            session.commit()

    return _rename


@pytest.fixture()
def collector() -> tuple[list[ChatMessage], Callable[[ChatMessage], Awaitable[None]]]:
    """A message handler that records what it receives."""
    received: list[ChatMessage] = []

    async def _handler(message: ChatMessage) -> None:
        received.append(message)

    return received, _handler


@pytest.fixture()
def app(backend: BackendContext, chat_services: ChatServices) -> Iterator[FastAPI]:
    fastapi_app.state.backend = backend
    fastapi_app.state.chat = chat_services
    fastapi_app.state.owns_backend = False
    try:
        yield fastapi_app
    finally:
        fastapi_app.state.backend = None
        fastapi_app.state.chat = None


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    # The context manager keeps one event loop for every request and socket.
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def admin_headers(seeded: Seed) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(seeded.admin_id)}"}


@pytest.fixture()
def client_headers(seeded: Seed) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(seeded.client_user_id)}"}


@pytest.fixture()
def other_headers(seeded: Seed) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(seeded.other_user_id)}"}
