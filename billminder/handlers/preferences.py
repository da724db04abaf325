import logging

from aiogram import Router
from aiogram.filters import Command
from aiogram.types import Message

from billminder.errors import InvalidInputError, NotFoundError
from billminder.handlers.bills import parse_bool
from billminder.services.preference_service import (
    LANGUAGES,
    get_preferences,
    get_user,
    parse_reminder_days,
    set_phone,
    update_preferences,
)
from billminder.services.reminder_service import choose_channel

logger = logging.getLogger(__name__)
router = Router()

SETPREFS_USAGE = (
    "Usage: /setprefs key=value ...\n"
    "e.g. /setprefs days=7,3,1,0 whatsapp=on sms=off\n"
    f"Keys: days, push, sms, whatsapp (on/off), lang ({', '.join(sorted(LANGUAGES))})"
)

_PREF_KEYS = {
    "days": "reminder_days",
    "push": "push_enabled",
    "sms": "sms_enabled",
    "whatsapp": "whatsapp_enabled",
    "lang": "language",
    "language": "language",
}


def parse_prefs_args(args: str) -> dict:
    fields: dict = {}
    for token in args.split():
        key, sep, value = token.partition("=")
        field = _PREF_KEYS.get(key.lower())
        if not sep or field is None:
            raise InvalidInputError(f"Unknown setting '{key}'.\n\n{SETPREFS_USAGE}")
        fields[field] = parse_bool(value) if field.endswith("_enabled") else value.strip()
    return fields


def _on_off(flag: bool) -> str:
    return "on" if flag else "off"


@router.message(Command("prefs"))
async def cmd_prefs(message: Message):
    prefs = await get_preferences(message.chat.id)
    try:
        phone = (await get_user(message.chat.id)).phone
    except NotFoundError:
        phone = None

    days = ", ".join(str(d) for d in parse_reminder_days(prefs.reminder_days))
    await message.answer(
        "⚙️ Reminder settings:\n"
        f"  Days before due: {days}\n"
        f"  Push: {_on_off(prefs.push_enabled)}\n"
        f"  SMS: {_on_off(prefs.sms_enabled)}\n"
        f"  WhatsApp: {_on_off(prefs.whatsapp_enabled)}\n"
        f"  Language: {prefs.language}\n"
        f"  Phone: {phone or 'not set (use /phone)'}\n\n"
        f"New reminders go out via {choose_channel(prefs)}.\n"
        "Change with /setprefs"
    )


@router.message(Command("setprefs"))
async def cmd_setprefs(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    if len(parts) < 2:
        await message.answer(SETPREFS_USAGE)
        return

    prefs = await update_preferences(message.chat.id, **parse_prefs_args(parts[1]))
    reply = f"Saved. New reminders go out via {choose_channel(prefs)}."
    if prefs.sms_enabled or prefs.whatsapp_enabled:
        try:
            has_phone = bool((await get_user(message.chat.id)).phone)
        except NotFoundError:
            has_phone = False
        if not has_phone:
            reply += "\nSet a phone number with /phone so SMS and WhatsApp can be delivered."
    await message.answer(reply + "\nExisting reminders keep their channel until the bill changes.")


@router.message(Command("phone"))
async def cmd_phone(message: Message):
    parts = message.text.split(maxsplit=1) if message.text else []
    if len(parts) < 2 or not parts[1].strip():
        await message.answer("Usage: /phone +919876543210")
        return

    user = await set_phone(message.chat.id, parts[1])
    logger.info("Phone number updated", extra={"chat_id": message.chat.id})
    await message.answer(f"Phone set to {user.phone}.")
