"""Shared pytest fixtures for database-backed service tests."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from llm_gateway.db.base import Base
from llm_gateway.db.models import core  # noqa: F401


class _AsyncSessionWrapper:
    """Async facade over a sync session.

    Every statement first yields to the event loop so concurrent coroutines
    interleave between statements the way they would against a real server.
    """

    def __init__(self, sync_session) -> None:
        self._sync = sync_session

    async def execute(self, *args, **kwargs):
        await asyncio.sleep(0)
        return self._sync.execute(*args, **kwargs)

    async def get(self, *args, **kwargs):
        await asyncio.sleep(0)
        return self._sync.get(*args, **kwargs)

    def add(self, obj) -> None:
        self._sync.add(obj)

    def add_all(self, objs) -> None:
        self._sync.add_all(objs)

    def get_bind(self):
        return self._sync.get_bind()

    async def flush(self) -> None:
        self._sync.flush()

    async def commit(self) -> None:
        await asyncio.sleep(0)
        self._sync.commit()

    async def rollback(self) -> None:
        self._sync.rollback()

    async def close(self) -> None:
        self._sync.close()


class DummyDatabase:
    """Stands in for ``Database``: every ``session()`` yields the shared wrapper."""

    def __init__(self, session: _AsyncSessionWrapper) -> None:
        self._session = session
        self.fail_with: Exception | None = None

    @asynccontextmanager
    async def session(self):
        if self.fail_with is not None:
            raise self.fail_with
        try:
            yield self._session
        except Exception:
            await self._session.rollback()
            raise


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sync_session = SessionLocal()
    try:
        yield _AsyncSessionWrapper(sync_session)
    finally:
        sync_session.close()


@pytest.fixture
def database(session):
    return DummyDatabase(session)
