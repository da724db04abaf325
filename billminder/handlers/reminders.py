import logging
from datetime import datetime, time

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from billminder.clock import default_policy
from billminder.db.models import Channel, ReminderStatus
from billminder.errors import InvalidInputError
from billminder.handlers.bills import parse_date, parse_id
from billminder.services.bill_service import get_bill
from billminder.services.preference_service import get_preferences
from billminder.services.reminder_service import (
    choose_channel,
    delete_reminder,
    list_reminders,
    preview_reminder,
    reschedule_reminder,
)

logger = logging.getLogger(__name__)
router = Router()

_STATUS_ICONS = {
    ReminderStatus.PENDING: "⏳",
    ReminderStatus.SENT: "📨",
    ReminderStatus.FAILED: "⚠️",
}


def parse_local_time(date_arg: str, time_arg: str | None) -> datetime:
    """A date and optional HH:MM in the reminder timezone, as an aware datetime."""
    policy = default_policy()
    day = parse_date(date_arg)
    if time_arg is None:
        at = time(policy.hour, policy.minute)
    else:
        try:
            at = time.fromisoformat(time_arg)
        except ValueError:
            raise InvalidInputError(f"Invalid time '{time_arg}'. Use HH:MM.") from None
    return datetime.combine(day, at, tzinfo=policy.tz)


def _format_local(value: str) -> str:
    local = datetime.fromisoformat(value).astimezone(default_policy().tz)
    return local.strftime("%Y-%m-%d %H:%M")


@router.message(Command("reminders"))
async def cmd_reminders(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    status = None
    if len(parts) > 1:
        status = parts[1].strip().lower()
        if status not in {s.value for s in ReminderStatus}:
            await message.answer("Usage: /reminders [pending|sent|failed]")
            return

    rows, total = await list_reminders(message.chat.id, status=status, page_size=30)
    if not rows:
        await message.answer("No reminders yet.")
        return

    lines = [
        f"{_STATUS_ICONS[ReminderStatus(r['status'])]} #{r['id']} {r['bill_title']}: "
        f"{_format_local(r['scheduled_at'])} via {r['channel']}"
        for r in rows
    ]
    text = "🔔 Reminders:\n" + "\n".join(lines)
    if total > len(rows):
        text += f"\n\n... and {total - len(rows)} more"
    await message.answer(text)


@router.message(Command("reschedule"))
async def cmd_reschedule(message: Message):
    args = message.text.split()[1:] if message.text else []
    if len(args) not in (2, 3) or not args[0].lstrip("#").isdigit():
        await message.answer("Usage: /reschedule <reminder id> <YYYY-MM-DD> [HH:MM]")
        return

    reminder_id = int(args[0].lstrip("#"))
    new_at = parse_local_time(args[1], args[2] if len(args) == 3 else None)
    reminder = await reschedule_reminder(reminder_id, message.chat.id, new_at)
    local = reminder.scheduled_at.astimezone(default_policy().tz)
    await message.answer(f"Reminder #{reminder.id} moved to {local:%Y-%m-%d %H:%M}.")


@router.message(Command("delreminder"))
async def cmd_delreminder(message: Message):
    reminder_id = parse_id(message)
    if reminder_id is None:
        await message.answer("Usage: /delreminder 12")
        return

    await delete_reminder(reminder_id, message.chat.id)
    await message.answer(f"Deleted reminder #{reminder_id}.")


@router.message(Command("testreminder"))
async def cmd_testreminder(message: Message):
    args = message.text.split()[1:] if message.text else []
    if not args or not args[0].lstrip("#").isdigit():
        await message.answer("Usage: /testreminder <bill id> [push|sms|whatsapp]")
        return

    if len(args) > 1:
        try:
            channel = Channel(args[1].lower())
        except ValueError:
            await message.answer(f"Unknown channel '{args[1]}'. Use push, sms or whatsapp.")
            return
    else:
        channel = choose_channel(await get_preferences(message.chat.id))

    view = await get_bill(int(args[0].lstrip("#")), message.chat.id)
    text = preview_reminder(view.bill, channel, default_policy().today())
    await message.answer(f"Preview ({channel}):\n\n{text}")
