import logging
import re
import shlex
from datetime import date

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from billminder.db.models import CATEGORIES, ComputedStatus, Frequency
from billminder.errors import InvalidInputError
from billminder.messages import format_due_date
from billminder.money import format_amount
from billminder.services.bill_service import (
    BillView,
    create_bill,
    delete_bill,
    get_bill,
    list_bills,
    mark_paid,
    mark_unpaid,
    update_bill,
)
from billminder.services.reminder_service import get_bill_reminders

logger = logging.getLogger(__name__)
router = Router()

ADDBILL_USAGE = (
    "Usage: /addbill <title> <amount> <YYYY-MM-DD> [category] [frequency]\n"
    "e.g. /addbill Home Loan 25000 2025-01-10 EMI Monthly\n"
    f"Categories: {', '.join(CATEGORIES)} (or your own)\n"
    f"Frequencies: {', '.join(f.value for f in Frequency)}"
)

EDITBILL_USAGE = (
    "Usage: /editbill <id> field=value ...\n"
    'e.g. /editbill 3 amount=1200 due=2025-02-10 title="Car Loan"\n'
    "Fields: title, category, amount, due, frequency, recurring (yes/no), notes, institution, account"
)

_ADDBILL_RE = re.compile(
    r"^(?P<title>.+?)\s+(?P<amount>\d[\d,]*(?:\.\d{1,2})?)\s+(?P<due>\d{4}-\d{2}-\d{2})(?:\s+(?P<rest>.+))?$"
)

_EDIT_FIELDS = {
    "title": "title",
    "category": "category",
    "amount": "amount",
    "due": "due_date",
    "due_date": "due_date",
    "frequency": "frequency",
    "recurring": "is_recurring",
    "notes": "notes",
    "institution": "institution",
    "account": "account_info",
}

_STATUS_ICONS = {
    ComputedStatus.DUE: "🟡",
    ComputedStatus.OVERDUE: "🔴",
    ComputedStatus.PAID: "✅",
}


def _match_frequency(token: str) -> str | None:
    for f in Frequency:
        if f.value.lower() == token.lower() or (f == Frequency.ONE_TIME and token.lower() in ("once", "onetime")):
            return f.value
    return None


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidInputError(f"Invalid date '{value}'. Use YYYY-MM-DD.") from None


def parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in ("yes", "y", "true", "on", "1"):
        return True
    if lowered in ("no", "n", "false", "off", "0"):
        return False
    raise InvalidInputError(f"Expected yes or no, got '{value}'.")


def parse_id(message: Message) -> int | None:
    parts = message.text.split(maxsplit=1) if message.text else []
    if len(parts) < 2 or not parts[1].strip().lstrip("#").isdigit():
        return None
    return int(parts[1].strip().lstrip("#"))


def parse_addbill_args(args: str) -> dict:
    m = _ADDBILL_RE.match(args.strip())
    if not m:
        raise InvalidInputError(ADDBILL_USAGE)

    fields = {
        "title": m["title"],
        "amount": m["amount"],
        "due_date": parse_date(m["due"]),
        "category": "Other",
        "frequency": Frequency.MONTHLY.value,
        "is_recurring": True,
    }
    rest = (m["rest"] or "").split()
    if rest and (frequency := _match_frequency(rest[-1])):
        fields["frequency"] = frequency
        rest = rest[:-1]
    if rest:
        fields["category"] = " ".join(rest)
    if fields["frequency"] == Frequency.ONE_TIME:
        fields["is_recurring"] = False
    return fields


def parse_edit_args(args: str) -> tuple[int, dict]:
    try:
        tokens = shlex.split(args)
    except ValueError:
        raise InvalidInputError(EDITBILL_USAGE) from None
    if len(tokens) < 2 or not tokens[0].lstrip("#").isdigit():
        raise InvalidInputError(EDITBILL_USAGE)

    bill_id = int(tokens[0].lstrip("#"))
    fields: dict = {}
    for token in tokens[1:]:
        key, sep, value = token.partition("=")
        field = _EDIT_FIELDS.get(key.lower())
        if not sep or field is None:
            raise InvalidInputError(f"Unknown field '{key}'.\n\n{EDITBILL_USAGE}")
        if field == "due_date":
            fields[field] = parse_date(value)
        elif field == "is_recurring":
            fields[field] = parse_bool(value)
        elif field == "frequency":
            fields[field] = _match_frequency(value) or value
        else:
            fields[field] = value
    return bill_id, fields


def format_bill_line(view: BillView) -> str:
    bill = view.bill
    icon = _STATUS_ICONS[view.computed_status]
    line = f"{icon} #{bill.id} {bill.title}: {format_amount(bill.amount)} due {format_due_date(bill.due_date)}"
    if view.computed_status == ComputedStatus.OVERDUE:
        line += f" (overdue {view.overdue_days}d)"
    elif view.is_due_within_7_days:
        line += " (due soon)"
    return line


def format_bill_details(view: BillView) -> str:
    bill = view.bill
    lines = [
        f"#{bill.id} {bill.title}",
        f"💰 {format_amount(bill.amount)}",
        f"📅 {format_due_date(bill.due_date)} · {view.computed_status}",
        f"🏷 {bill.category} · {bill.frequency}{'' if bill.is_recurring else ' (not recurring)'}",
    ]
    if bill.institution:
        lines.append(f"🏦 {bill.institution}")
    if bill.account_info:
        lines.append(f"🔢 {bill.account_info}")
    if bill.notes:
        lines.append(f"📝 {bill.notes}")
    return "\n".join(lines)


@router.message(Command("addbill"))
async def cmd_addbill(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    if len(parts) < 2:
        await message.answer(ADDBILL_USAGE)
        return

    fields = parse_addbill_args(parts[1])
    view = await create_bill(message.chat.id, **fields)
    await message.answer(f"Added bill:\n{format_bill_details(view)}\n\nReminders scheduled. See /reminders")


@router.message(Command("bills"))
async def cmd_bills(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    status = None
    category = None
    if len(parts) > 1:
        arg = parts[1].strip()
        if arg.lower() in {s.value for s in ComputedStatus}:
            status = arg.lower()
        else:
            category = arg

    views, total = await list_bills(message.chat.id, status=status, category=category, page_size=50)
    if not views:
        await message.answer("No bills found. Use /addbill to add one.")
        return

    text = "📋 Bills:\n" + "\n".join(format_bill_line(v) for v in views)
    if total > len(views):
        text += f"\n\n... and {total - len(views)} more"
    await message.answer(text)


@router.message(Command("bill"))
async def cmd_bill(message: Message):
    bill_id = parse_id(message)
    if bill_id is None:
        await message.answer("Usage: /bill 3")
        return

    view = await get_bill(bill_id, message.chat.id)
    reminders = await get_bill_reminders(bill_id)
    text = format_bill_details(view)
    if reminders:
        text += "\n\n🔔 Reminders:\n" + "\n".join(
            f"  #{r.id} {r.scheduled_at:%Y-%m-%d %H:%M} UTC · {r.channel} · {r.status}" for r in reminders
        )
    await message.answer(text)


@router.message(Command("editbill"))
async def cmd_editbill(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    if len(parts) < 2:
        await message.answer(EDITBILL_USAGE)
        return

    bill_id, fields = parse_edit_args(parts[1])
    view = await update_bill(bill_id, message.chat.id, **fields)
    await message.answer(f"Updated:\n{format_bill_details(view)}")


@router.message(Command("paid"))
async def cmd_paid(message: Message):
    bill_id = parse_id(message)
    if bill_id is None:
        await message.answer("Usage: /paid 3")
        return

    result = await mark_paid(bill_id, message.chat.id)
    text = f"✅ Paid: {result.bill.bill.title} ({format_amount(result.bill.bill.amount)})"
    if result.next_bill:
        text += f"\n\nNext one added: #{result.next_bill.id} due {format_due_date(result.next_bill.bill.due_date)}"
    await message.answer(text)


@router.message(Command("unpaid"))
async def cmd_unpaid(message: Message):
    bill_id = parse_id(message)
    if bill_id is None:
        await message.answer("Usage: /unpaid 3")
        return

    view = await mark_unpaid(bill_id, message.chat.id)
    await message.answer(f"Marked unpaid:\n{format_bill_line(view)}")


@router.message(Command("delbill"))
async def cmd_delbill(message: Message):
    bill_id = parse_id(message)
    if bill_id is None:
        await message.answer("Usage: /delbill 3")
        return

    await delete_bill(bill_id, message.chat.id)
    await message.answer(f"Deleted bill #{bill_id} and its reminders.")
