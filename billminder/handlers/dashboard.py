import logging
from datetime import date, datetime
from pathlib import Path

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import FSInputFile, Message

from billminder.charts import bills_by_category_chart, monthly_obligations_chart
from billminder.clock import default_policy
from billminder.errors import InvalidInputError
from billminder.handlers.bills import format_bill_line
from billminder.messages import format_due_date
from billminder.money import format_amount
from billminder.services.dashboard_service import (
    calendar_view,
    monthly_summary,
    monthly_totals,
    notification_history,
    overdue,
    summary,
    upcoming,
)

logger = logging.getLogger(__name__)
router = Router()


def parse_month(arg: str | None) -> tuple[int | None, int | None]:
    """Month and year from "YYYY-MM" or "MM"; (None, None) means the current month."""
    if not arg:
        return None, None
    arg = arg.strip()
    try:
        if "-" in arg:
            year, month = arg.split("-", 1)
            return int(month), int(year)
        return int(arg), None
    except ValueError:
        raise InvalidInputError("Use /month YYYY-MM, e.g. /month 2025-01") from None


async def _answer_with_chart(message: Message, chart_path: str | None, text: str) -> None:
    if chart_path:
        try:
            await message.answer_photo(FSInputFile(chart_path), caption=text)
        finally:
            Path(chart_path).unlink(missing_ok=True)
    else:
        await message.answer(text)


@router.message(Command("summary"))
async def cmd_summary(message: Message):
    data = await summary(message.chat.id)
    if not data["total_bills"]:
        await message.answer("No bills yet. Use /addbill to add one.")
        return

    await message.answer(
        "📊 Dashboard\n\n"
        f"Due: {format_amount(data['total_due_amount'])} across {data['pending_bills']} bills\n"
        f"Overdue: {format_amount(data['total_overdue_amount'])} ({data['bills_overdue']} bills)\n"
        f"Paid this month: {format_amount(data['total_paid_this_month'])}\n"
        f"Due in the next 7 days: {data['bills_due_next_7_days']}\n\n"
        f"{data['total_bills']} bills total, {data['paid_bills']} paid."
    )


@router.message(Command("upcoming"))
async def cmd_upcoming(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    days = int(parts[1]) if len(parts) > 1 and parts[1].strip().isdigit() else 7

    views = await upcoming(message.chat.id, days=days)
    if not views:
        await message.answer("Nothing due soon. 🎉")
        return
    await message.answer("📅 Coming up:\n" + "\n".join(format_bill_line(v) for v in views))


@router.message(Command("overdue"))
async def cmd_overdue(message: Message):
    views, total = await overdue(message.chat.id)
    if not views:
        await message.answer("No overdue bills. 👍")
        return
    await message.answer(
        "🔴 Overdue:\n" + "\n".join(format_bill_line(v) for v in views) + f"\n\nTotal: {format_amount(total)}"
    )


@router.message(Command("month"))
async def cmd_month(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    month, year = parse_month(parts[1] if len(parts) > 1 else None)

    data = await monthly_summary(message.chat.id, month=month, year=year)
    label = date(data["year"], data["month"], 1).strftime("%Y-%m")
    if not data["category_breakdown"]:
        await message.answer(f"No bills due in {label}.")
        return

    lines = [
        f"• {row['category']}: {format_amount(row['amount'])} ({row['count']} bills, {row['percentage']:.0f}%)"
        for row in data["category_breakdown"]
    ]
    text = (
        f"🗓 {label}\n\n"
        + "\n".join(lines)
        + f"\n\nTotal: {format_amount(data['total_amount'])}"
        + f"\nPaid: {format_amount(data['paid_amount'])} ({data['payment_percentage']:.0f}%)"
        + f"\nPending: {format_amount(data['pending_amount'])}"
    )
    chart_path = await bills_by_category_chart(data["category_breakdown"], title=f"Bills for {label}")
    await _answer_with_chart(message, chart_path, text)


@router.message(Command("calendar"))
async def cmd_calendar(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    month, year = parse_month(parts[1] if len(parts) > 1 else None)

    grouped = await calendar_view(message.chat.id, month=month, year=year)
    if not grouped:
        await message.answer("No bills due that month.")
        return

    lines = []
    for day in sorted(grouped):
        lines.append(f"{format_due_date(date.fromisoformat(day))}:")
        lines.extend(f"  {format_bill_line(v)}" for v in grouped[day])
    await message.answer("\n".join(lines))


@router.message(Command("history"))
async def cmd_history(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    page = int(parts[1]) if len(parts) > 1 and parts[1].strip().isdigit() else 1

    rows, total = await notification_history(message.chat.id, page=page, page_size=10)
    if not rows:
        await message.answer("No reminders sent yet.")
        return

    tz = default_policy().tz
    lines = [
        f"📨 {datetime.fromisoformat(r['sent_at']).astimezone(tz):%Y-%m-%d %H:%M} "
        f"{r['bill_title']} via {r['channel']}"
        for r in rows
    ]
    pages = (total + 9) // 10
    await message.answer(f"Sent reminders (page {page}/{pages}):\n" + "\n".join(lines))


@router.message(Command("trend"))
async def cmd_trend(message: Message):
    data = await monthly_totals(message.chat.id, months=6)
    if not data:
        await message.answer("No bill history yet.")
        return

    lines = [
        f"• {row['month']}: {format_amount(row['total'])} ({format_amount(row['paid'])} paid, {row['count']} bills)"
        for row in reversed(data)
    ]
    text = "📈 Monthly obligations:\n\n" + "\n".join(lines)
    chart_path = await monthly_obligations_chart(list(reversed(data)))
    await _answer_with_chart(message, chart_path, text)
