"""Unit tests for the database engine lifecycle."""

import asyncio

from sqlmodel import select

from reportforge.db import session as db_session
from reportforge.db.models import Template


class TestSessionLifecycle:
    """Test suite for init_db, get_async_session and close_db."""

    def test_init_session_and_close(self, settings):
        """Test that tables are created, sessions work and the engine is released."""

        async def scenario():
            await db_session.init_db(settings)
            try:
                async for session in db_session.get_async_session(settings):
                    session.add(Template(name="Phase I", variables=[{"id": "v1", "name": "client"}]))
                    await session.commit()

                rows = []
                async for session in db_session.get_async_session(settings):
                    rows = (await session.execute(select(Template))).scalars().all()
                return [(t.name, t.variables) for t in rows]
            finally:
                await db_session.close_db()

        assert asyncio.run(scenario()) == [("Phase I", [{"id": "v1", "name": "client"}])]
        assert db_session._engine is None

    def test_close_without_engine_is_noop(self):
        asyncio.run(db_session.close_db())
        assert db_session._engine is None
