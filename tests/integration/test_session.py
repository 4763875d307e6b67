"""
Integration tests for the process-wide engine helpers.
"""

import uuid

import pytest
from sqlalchemy import func, select

pytestmark = pytest.mark.asyncio(loop_scope="session")

import urbanwatch.db.session as db_session_mod
from urbanwatch.db.models import User, UserRole


class TestSessionLifecycle:
    async def test_health_check(self, test_engine, monkeypatch):
        monkeypatch.setattr(db_session_mod, "_engine", test_engine)
        assert await db_session_mod.health_check() is True

    async def test_health_check_without_engine(self, monkeypatch):
        monkeypatch.setattr(db_session_mod, "_engine", None)
        assert await db_session_mod.health_check() is False

    async def test_uninitialized_factory(self, monkeypatch):
        monkeypatch.setattr(db_session_mod, "_async_session_factory", None)
        with pytest.raises(RuntimeError, match="init_db"):
            db_session_mod.get_session_factory()

    async def test_get_session_rolls_back_on_error(self, session_factory, monkeypatch):
        monkeypatch.setattr(db_session_mod, "_async_session_factory", session_factory)

        with pytest.raises(ValueError):
            async with db_session_mod.get_session() as session:
                session.add(
                    User(
                        id=uuid.uuid4(),
                        name="Half Written",
                        email="half@example.com",
                        password_hash="x",
                        role=UserRole.citizen,
                    )
                )
                await session.flush()
                raise ValueError("abort")

        async with db_session_mod.get_session() as session:
            count = (await session.execute(select(func.count(User.id)))).scalar_one()
        assert count == 0
