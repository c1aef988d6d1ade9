"""Tests for the engine and session factory helpers."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from portlio_core.state.database import create_session_factory, get_engine
from portlio_core.state.sqlite_adapter import create_local_tables
from portlio_core.state.tables import UserTable


class TestSessionFactory:
    @pytest.mark.asyncio
    async def test_sqlite_url_round_trip(self, tmp_path):
        engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'portlio.db'}")
        await create_local_tables(engine)
        factory = create_session_factory(engine)

        async with factory() as session:
            session.add(UserTable(id="user-1", email="owner@example.com", password_hash="x", user_metadata={}))
            await session.commit()

        async with factory() as session:
            row = (await session.execute(select(UserTable).where(UserTable.id == "user-1"))).scalar_one()

        assert row.email == "owner@example.com"
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_attributes_survive_commit(self, tmp_path):
        engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'portlio.db'}")
        await create_local_tables(engine)
        factory = create_session_factory(engine)

        async with factory() as session:
            user = UserTable(id="user-2", email="two@example.com", password_hash="x", user_metadata={})
            session.add(user)
            await session.commit()
            assert user.email == "two@example.com"

        await engine.dispose()
