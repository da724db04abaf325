"""Periodic sweep that delivers due reminders.

Each run loads pending reminders whose fire time has passed, sends them through
the transport for their channel, and writes every outcome back in one batch.
Delivery is at-least-once: if that final write fails the reminders are still
pending in storage and the next sweep picks them up again.
"""

import asyncio
import logging
import os
import socket
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from billminder.clock import to_storage, utc_now
from billminder.config import settings
from billminder.db.database import get_db, transaction
from billminder.db.models import Channel, ReminderStatus
from billminder.errors import PersistenceError
from billminder.transports import Delivery, Transport, build_transports

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "send-due-reminders"
SWEEP_LEASE = "reminder-sweep"

HOLDER_ID = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

_sweep_lock = asyncio.Lock()
_transports: dict[Channel, Transport] | None = None


@dataclass(slots=True)
class SweepResult:
    due: int = 0
    sent: int = 0
    failed: int = 0
    loaded: bool = True
    persisted: bool = True
    skipped: bool = False


def set_transports(transports: dict[Channel, Transport]) -> None:
    global _transports
    _transports = transports


def get_transports() -> dict[Channel, Transport]:
    global _transports
    if _transports is None:
        _transports = build_transports()
    return _transports


def delivery_key(reminder_id: int, scheduled_at: str) -> str:
    return f"reminder-{reminder_id}-{scheduled_at}"


async def acquire_lease(now: datetime, holder: str = HOLDER_ID, ttl_seconds: int | None = None) -> bool:
    """Take or renew the sweep lease; False while another holder's lease is unexpired."""
    ttl = ttl_seconds if ttl_seconds is not None else settings.sweep_lease_seconds
    async with transaction() as db:
        cursor = await db.execute(
            """INSERT INTO sweep_leases (name, holder, expires_at) VALUES (?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET holder = excluded.holder, expires_at = excluded.expires_at
            WHERE sweep_leases.expires_at <= ? OR sweep_leases.holder = excluded.holder""",
            (SWEEP_LEASE, holder, to_storage(now + timedelta(seconds=ttl)), to_storage(now)),
        )
    return cursor.rowcount > 0


async def release_lease(holder: str = HOLDER_ID) -> None:
    async with transaction() as db:
        await db.execute(
            "DELETE FROM sweep_leases WHERE name = ? AND holder = ?",
            (SWEEP_LEASE, holder),
        )


async def load_due_reminders(now: datetime) -> list[dict]:
    db = await get_db()
    cursor = await db.execute(
        """SELECT r.id, r.user_id, r.scheduled_at, r.message, r.channel, u.phone
        FROM reminders r
        LEFT JOIN users u ON u.id = r.user_id
        WHERE r.status = ? AND r.scheduled_at <= ?""",
        (ReminderStatus.PENDING.value, to_storage(now)),
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]


async def _deliver(row: dict, transports: dict[Channel, Transport]) -> bool:
    channel = Channel(row["channel"])
    delivery = Delivery(
        reminder_id=row["id"],
        user_id=row["user_id"],
        phone=row["phone"],
        text=row["message"],
        delivery_key=delivery_key(row["id"], row["scheduled_at"]),
    )
    return await asyncio.wait_for(transports[channel].send(delivery), timeout=settings.transport_timeout)


async def _persist_outcomes(outcomes: list[tuple[str, str | None, int]]) -> None:
    try:
        async with transaction() as db:
            await db.executemany(
                "UPDATE reminders SET status = ?, sent_at = ? WHERE id = ? AND status = 'pending'",
                outcomes,
            )
    except Exception as exc:
        raise PersistenceError(f"Could not persist {len(outcomes)} reminder outcomes") from exc


async def _deliver_all(
    due: list[dict],
    transports: dict[Channel, Transport],
    now: datetime,
    started: float,
    result: SweepResult,
) -> list[tuple[str, str | None, int]]:
    outcomes: list[tuple[str, str | None, int]] = []
    for row in due:
        try:
            sent = await _deliver(row, transports)
        except Exception:
            logger.error(
                "Failed to send reminder %s",
                row["id"],
                exc_info=True,
                extra={"reminder_id": row["id"], "channel": row["channel"]},
            )
            sent = False

        if sent:
            result.sent += 1
            outcomes.append((ReminderStatus.SENT.value, to_storage(utc_now()), row["id"]))
        else:
            result.failed += 1
            outcomes.append((ReminderStatus.FAILED.value, None, row["id"]))
        logger.info(
            "Reminder %s %s",
            row["id"],
            "sent" if sent else "failed",
            extra={"reminder_id": row["id"], "user_id": row["user_id"], "channel": row["channel"]},
        )

        # a long backlog must not outlive the lease
        renew_at = now + timedelta(seconds=time.monotonic() - started)
        try:
            renewed = await acquire_lease(renew_at)
        except Exception:
            logger.warning("Could not renew sweep lease", exc_info=True)
            renewed = False
        if not renewed:
            logger.warning("Lost sweep lease, leaving %d reminders for the next run", len(due) - len(outcomes))
            break
    return outcomes


async def run_sweep(
    transports: dict[Channel, Transport] | None = None,
    *,
    now: datetime | None = None,
) -> SweepResult:
    """One pass over the due set. Never raises; failures are logged and counted."""
    result = SweepResult()
    if _sweep_lock.locked():
        logger.info("Sweep already running in this process, skipping")
        result.skipped = True
        return result

    async with _sweep_lock:
        now = now or utc_now()
        transports = transports or get_transports()
        started = time.monotonic()

        try:
            acquired = await acquire_lease(now)
        except Exception:
            logger.error("Could not take sweep lease", exc_info=True)
            result.loaded = False
            return result
        if not acquired:
            logger.info("Sweep lease held by another worker, skipping")
            result.skipped = True
            return result

        try:
            try:
                due = await load_due_reminders(now)
            except Exception:
                logger.error("Could not load due reminders", exc_info=True)
                result.loaded = False
                return result

            result.due = len(due)
            logger.info("Processing %d pending reminders.", result.due)

            outcomes = await _deliver_all(due, transports, now, started, result)
            if outcomes:
                try:
                    await _persist_outcomes(outcomes)
                except PersistenceError:
                    result.persisted = False
                    logger.error(
                        "Failed to persist reminder statuses. %d reminders may resend on next run.",
                        len(outcomes),
                        exc_info=True,
                    )
        finally:
            try:
                await release_lease()
            except Exception:
                logger.warning("Could not release sweep lease; it expires on its own", exc_info=True)

        logger.info(
            "Sweep done: %d sent, %d failed",
            result.sent,
            result.failed,
            extra={"latency_ms": round((time.monotonic() - started) * 1000, 1)},
        )
        return result


def start_scheduler(transports: dict[Channel, Transport] | None = None) -> AsyncIOScheduler:
    if transports is not None:
        set_transports(transports)
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_sweep,
        "interval",
        minutes=settings.sweep_interval_minutes,
        id=SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=utc_now(),
    )
    scheduler.start()
    logger.info("Reminder sweep scheduled every %d minutes", settings.sweep_interval_minutes)
    return scheduler
