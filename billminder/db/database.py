import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar

import aiosqlite

from billminder.config import settings

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL DEFAULT 'User',
    phone TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS user_preferences (
    user_id INTEGER PRIMARY KEY,
    push_enabled BOOLEAN NOT NULL DEFAULT 1,
    sms_enabled BOOLEAN NOT NULL DEFAULT 0,
    whatsapp_enabled BOOLEAN NOT NULL DEFAULT 0,
    reminder_days TEXT NOT NULL DEFAULT '7,3,0',
    language TEXT NOT NULL DEFAULT 'en',
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS bills (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    category TEXT NOT NULL,
    amount TEXT NOT NULL CHECK(CAST(amount AS REAL) >= 0),
    due_date DATE NOT NULL,
    frequency TEXT NOT NULL DEFAULT 'Monthly',
    is_recurring BOOLEAN NOT NULL DEFAULT 1,
    status TEXT NOT NULL DEFAULT 'due' CHECK(status IN ('due', 'paid')),
    notes TEXT,
    institution TEXT,
    account_info TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS reminders (
    id INTEGER PRIMARY KEY,
    bill_id INTEGER NOT NULL REFERENCES bills(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL,
    scheduled_at TIMESTAMP NOT NULL,
    days_before INTEGER NOT NULL CHECK(days_before >= 0),
    message TEXT NOT NULL,
    channel TEXT NOT NULL CHECK(channel IN ('push', 'sms', 'whatsapp')),
    status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending', 'sent', 'failed')),
    sent_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS sweep_leases (
    name TEXT PRIMARY KEY,
    holder TEXT NOT NULL,
    expires_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bills_user_due ON bills(user_id, due_date);
CREATE INDEX IF NOT EXISTS idx_reminders_bill_status ON reminders(bill_id, status);
CREATE INDEX IF NOT EXISTS idx_reminders_status_scheduled ON reminders(status, scheduled_at);
CREATE INDEX IF NOT EXISTS idx_reminders_user ON reminders(user_id, scheduled_at DESC);
"""

_db: aiosqlite.Connection | None = None

# One writer at a time on the shared connection; a commit or rollback ends
# every statement issued since the last one, whichever coroutine issued it.
_write_lock = asyncio.Lock()
_in_transaction: ContextVar[bool] = ContextVar("in_transaction", default=False)


async def get_db() -> aiosqlite.Connection:
    global _db
    if _db is None:
        _db = await aiosqlite.connect(settings.db_path)
        _db.row_factory = aiosqlite.Row
        await _db.execute("PRAGMA journal_mode=WAL")
        await _db.execute("PRAGMA foreign_keys=ON")
    return _db


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Commit the writes made inside the block, or roll them back on error.

    Blocks are serialized across coroutines. A nested block joins the
    enclosing one and leaves commit to it.
    """
    db = await get_db()
    if _in_transaction.get():
        yield db
        return

    async with _write_lock:
        token = _in_transaction.set(True)
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        else:
            await db.commit()
        finally:
            _in_transaction.reset(token)


async def close_db():
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def init_db():
    db = await get_db()
    await db.executescript(SCHEMA)
    await db.commit()
