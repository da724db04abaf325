import asyncio
import os

os.environ.setdefault("TELEGRAM_BOT_TOKEN", "test-token-000")

from zoneinfo import ZoneInfo

import aiosqlite
import pytest

import billminder.db.database as db_mod
import billminder.jobs.dispatcher as dispatcher_mod
import billminder.services.bill_service as bill_service_mod
from billminder.clock import FireTimePolicy


@pytest.fixture(autouse=True)
async def test_db(monkeypatch):
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.executescript(db_mod.SCHEMA)
    await conn.commit()

    async def _get_db():
        return conn

    monkeypatch.setattr(db_mod, "get_db", _get_db)
    monkeypatch.setattr(db_mod, "_db", conn)
    monkeypatch.setattr(dispatcher_mod, "_transports", None)
    monkeypatch.setattr(db_mod, "_write_lock", asyncio.Lock())
    bill_service_mod._bill_locks.clear()
    bill_service_mod._bill_lock_users.clear()

    yield conn

    await conn.close()


@pytest.fixture
def policy() -> FireTimePolicy:
    return FireTimePolicy(tz=ZoneInfo("Asia/Kolkata"), hour=9, minute=0)
