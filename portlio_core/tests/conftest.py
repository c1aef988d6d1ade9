"""Shared fixtures for portlio_core tests."""

from __future__ import annotations

import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from portlio_core.state.tables import Base, UserTable


@pytest_asyncio.fixture
async def async_session():
    """Provide an async session backed by an in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def user_id(async_session) -> str:
    """Insert a user row and return its id."""
    row = UserTable(id="user-1", email="owner@example.com", password_hash="x", user_metadata={})
    async_session.add(row)
    await async_session.flush()
    return row.id
