import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from billminder.services.preference_service import ensure_user

logger = logging.getLogger(__name__)
router = Router()


@router.message(Command("start"))
async def cmd_start(message: Message):
    name = message.from_user.full_name if message.from_user else None
    await ensure_user(message.chat.id, name)
    await message.answer(
        "Welcome to BillMinder! I keep track of your EMIs and bills and remind you before they are due.\n\n"
        "Add a bill:\n"
        "  /addbill Home Loan 25000 2025-01-10 EMI Monthly\n\n"
        "By default you get reminders 7 days, 3 days and on the day a bill is due, at 9:00.\n"
        "Mark it paid with /paid <id> and the next one is scheduled for you.\n\n"
        "Type /help for all commands."
    )


@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(
        "Bills:\n"
        "  /addbill <title> <amount> <YYYY-MM-DD> [category] [frequency]\n"
        "  /bills [due|overdue|paid|category] · list bills\n"
        "  /bill <id> · details and reminders\n"
        "  /editbill <id> field=value ... · change a bill\n"
        "  /paid <id> · mark paid (schedules the next one)\n"
        "  /unpaid <id> · undo a payment\n"
        "  /delbill <id> · delete a bill\n\n"
        "Reminders:\n"
        "  /reminders [pending|sent|failed]\n"
        "  /reschedule <id> <YYYY-MM-DD> [HH:MM]\n"
        "  /delreminder <id>\n"
        "  /testreminder <bill id> [push|sms|whatsapp] · preview the message\n\n"
        "Overview:\n"
        "  /summary · totals at a glance\n"
        "  /upcoming [days] · due soon\n"
        "  /overdue · past due\n"
        "  /month [YYYY-MM] · month breakdown + chart\n"
        "  /calendar [YYYY-MM] · bills by day\n"
        "  /trend · last 6 months + chart\n"
        "  /history [page] · sent reminders\n\n"
        "Settings:\n"
        "  /prefs · view reminder settings\n"
        "  /setprefs days=7,3,0 whatsapp=on · change them\n"
        "  /phone <number> · for SMS and WhatsApp"
    )
