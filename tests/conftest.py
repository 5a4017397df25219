"""Shared test fixtures for the deal room engine.

Provides:
- FakeClock: controllable UTC clock injected into DealRoomService
- In-memory stores and a DealRoomService wired to them
- An in-memory SQLite engine (aiosqlite + StaticPool) with all tables created
- SQL stores and a DealRoomService wired to them
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.app.core.database import Base
from src.app.deal_room import models  # noqa: F401 -- registers tables on Base.metadata
from src.app.deal_room.service import DealRoomService
from src.app.deal_room.store.memory import (
    InMemoryConflictStore,
    InMemoryDealRoomStore,
    InMemoryDraftStore,
    InMemoryVersionStore,
)
from src.app.deal_room.store.sql import (
    SqlConflictStore,
    SqlDealRoomStore,
    SqlDraftStore,
    SqlVersionStore,
)


class FakeClock:
    """Clock returning a fixed instant that tests move forward explicitly."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── In-memory backend ───────────────────────────────────────────────────────


@pytest.fixture
def memory_stores() -> dict:
    return {
        "deal_rooms": InMemoryDealRoomStore(),
        "drafts": InMemoryDraftStore(),
        "versions": InMemoryVersionStore(),
        "conflicts": InMemoryConflictStore(),
    }


@pytest.fixture
def service(memory_stores, clock) -> DealRoomService:
    """DealRoomService over in-memory stores with a fake clock."""
    return DealRoomService(**memory_stores, clock=clock)


# ── SQL backend ─────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def sql_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with every deal room table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_session_factory(sql_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sql_stores(sql_session_factory) -> dict:
    return {
        "deal_rooms": SqlDealRoomStore(sql_session_factory),
        "drafts": SqlDraftStore(sql_session_factory),
        "versions": SqlVersionStore(sql_session_factory),
        "conflicts": SqlConflictStore(sql_session_factory),
    }


@pytest.fixture
def sql_service(sql_stores, clock) -> DealRoomService:
    """DealRoomService over SQLite-backed stores with a fake clock."""
    return DealRoomService(**sql_stores, clock=clock)
