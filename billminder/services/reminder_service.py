import logging
from datetime import date, datetime, timedelta

from billminder.clock import FireTimePolicy, default_policy, from_storage, to_storage, to_utc, utc_now
from billminder.db.database import get_db, transaction
from billminder.db.models import Bill, Channel, Reminder, ReminderStatus, UserPreference
from billminder.errors import InvalidInputError, NotFoundError
from billminder.messages import render
from billminder.services.preference_service import parse_reminder_days

logger = logging.getLogger(__name__)


def choose_channel(prefs: UserPreference | None) -> Channel:
    if prefs is None:
        return Channel.PUSH
    if prefs.whatsapp_enabled:
        return Channel.WHATSAPP
    if prefs.sms_enabled:
        return Channel.SMS
    return Channel.PUSH


def plan_reminders(
    bill: Bill,
    prefs: UserPreference | None,
    *,
    today: date | None = None,
    policy: FireTimePolicy | None = None,
) -> list[Reminder]:
    """Occurrences for a bill: one per configured offset, none dated before today."""
    policy = policy or default_policy()
    today = today or policy.today()
    channel = choose_channel(prefs)
    created_at = utc_now()

    reminders = []
    for days_before in parse_reminder_days(prefs.reminder_days if prefs else None):
        reminder_date = bill.due_date - timedelta(days=days_before)
        if reminder_date < today:
            continue
        reminders.append(
            Reminder(
                id=None,
                bill_id=bill.id,
                user_id=bill.user_id,
                scheduled_at=policy.fire_at(reminder_date),
                days_before=days_before,
                message=render(bill, days_before, channel),
                channel=channel,
                created_at=created_at,
            )
        )
    return reminders


async def generate_reminders(
    bill: Bill,
    prefs: UserPreference | None,
    *,
    today: date | None = None,
    policy: FireTimePolicy | None = None,
) -> list[Reminder]:
    reminders = plan_reminders(bill, prefs, today=today, policy=policy)
    async with transaction() as db:
        await db.executemany(
            """INSERT INTO reminders
            (bill_id, user_id, scheduled_at, days_before, message, channel, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    r.bill_id,
                    r.user_id,
                    to_storage(r.scheduled_at),
                    r.days_before,
                    r.message,
                    r.channel.value,
                    r.status.value,
                    to_storage(r.created_at),
                )
                for r in reminders
            ],
        )
    logger.debug("Generated %d reminders", len(reminders), extra={"bill_id": bill.id})
    return reminders


async def cancel_pending(bill_id: int) -> int:
    async with transaction() as db:
        cursor = await db.execute(
            "DELETE FROM reminders WHERE bill_id = ? AND status = ?",
            (bill_id, ReminderStatus.PENDING.value),
        )
    return cursor.rowcount


async def reschedule_reminders(
    bill: Bill,
    prefs: UserPreference | None,
    *,
    today: date | None = None,
    policy: FireTimePolicy | None = None,
) -> list[Reminder]:
    """Replace a bill's pending reminders in one transaction; sent/failed rows stay."""
    async with transaction():
        await cancel_pending(bill.id)
        return await generate_reminders(bill, prefs, today=today, policy=policy)


def _row_to_reminder(row) -> Reminder:
    return Reminder(
        id=row["id"],
        bill_id=row["bill_id"],
        user_id=row["user_id"],
        scheduled_at=from_storage(row["scheduled_at"]),
        days_before=row["days_before"],
        message=row["message"],
        channel=Channel(row["channel"]),
        status=ReminderStatus(row["status"]),
        sent_at=from_storage(row["sent_at"]),
        created_at=from_storage(row["created_at"]),
    )


async def get_reminder(reminder_id: int, user_id: int) -> Reminder:
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM reminders WHERE id = ? AND user_id = ?",
        (reminder_id, user_id),
    )
    row = await cursor.fetchone()
    if not row:
        raise NotFoundError("reminder", reminder_id)
    return _row_to_reminder(row)


async def get_bill_reminders(bill_id: int) -> list[Reminder]:
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM reminders WHERE bill_id = ? ORDER BY scheduled_at, id",
        (bill_id,),
    )
    rows = await cursor.fetchall()
    return [_row_to_reminder(row) for row in rows]


async def list_reminders(
    user_id: int,
    status: str | None = None,
    bill_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[dict], int]:
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)
    where = "r.user_id = ?"
    params: list = [user_id]
    if status:
        where += " AND r.status = ?"
        params.append(status.lower())
    if bill_id is not None:
        where += " AND r.bill_id = ?"
        params.append(bill_id)

    db = await get_db()
    cursor = await db.execute(f"SELECT COUNT(*) FROM reminders r WHERE {where}", params)
    total = (await cursor.fetchone())[0]
    cursor = await db.execute(
        f"""SELECT r.*, b.title AS bill_title FROM reminders r
        JOIN bills b ON b.id = r.bill_id
        WHERE {where}
        ORDER BY r.scheduled_at DESC, r.id DESC
        LIMIT ? OFFSET ?""",
        [*params, page_size, (page - 1) * page_size],
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows], total


async def reschedule_reminder(
    reminder_id: int,
    user_id: int,
    new_at: datetime,
    *,
    now: datetime | None = None,
) -> Reminder:
    """Move one reminder to a new instant and make it pending again.

    Naive datetimes are read as UTC.
    """
    new_at = to_utc(new_at)
    if new_at <= (now or utc_now()):
        raise InvalidInputError("Reminder date must be in the future.")

    await get_reminder(reminder_id, user_id)
    async with transaction() as db:
        await db.execute(
            "UPDATE reminders SET scheduled_at = ?, status = ?, sent_at = NULL WHERE id = ?",
            (to_storage(new_at), ReminderStatus.PENDING.value, reminder_id),
        )
    logger.info("Rescheduled reminder to %s", to_storage(new_at), extra={"reminder_id": reminder_id})
    return await get_reminder(reminder_id, user_id)


async def delete_reminder(reminder_id: int, user_id: int) -> None:
    async with transaction() as db:
        cursor = await db.execute(
            "DELETE FROM reminders WHERE id = ? AND user_id = ?",
            (reminder_id, user_id),
        )
    if cursor.rowcount == 0:
        raise NotFoundError("reminder", reminder_id)


def preview_reminder(bill: Bill, channel: Channel, today: date) -> str:
    return render(bill, max((bill.due_date - today).days, 0), channel)
