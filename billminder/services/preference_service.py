import logging
import re

from billminder.config import settings
from billminder.db.database import get_db, transaction
from billminder.db.models import User, UserPreference
from billminder.errors import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_DAYS: tuple[int, ...] = (7, 3, 0)
MAX_REMINDER_DAY = 30
LANGUAGES = frozenset({"en", "hi", "ta", "te", "kn", "mr", "gu", "bn"})

_PHONE_STRIP = re.compile(r"[\s\-()]")


def parse_reminder_days(spec: str | None) -> list[int]:
    """Offsets from a "7,3,0" style string: de-duplicated, non-negative, in given order.

    Unparseable tokens are dropped; an unset or fully invalid spec yields the default.
    """
    if not spec:
        return list(DEFAULT_REMINDER_DAYS)
    days: list[int] = []
    for token in spec.split(","):
        try:
            value = int(token.strip())
        except ValueError:
            continue
        if value >= 0 and value not in days:
            days.append(value)
    return days or list(DEFAULT_REMINDER_DAYS)


def validate_reminder_days(spec: str) -> str:
    tokens = [t.strip() for t in spec.split(",")] if spec and spec.strip() else []
    if not tokens:
        raise InvalidInputError("Reminder days must be comma-separated integers (e.g. '7,3,1,0').")
    for token in tokens:
        if not token.isdigit() or int(token) > MAX_REMINDER_DAY:
            raise InvalidInputError(
                f"Reminder days must be comma-separated integers between 0 and {MAX_REMINDER_DAY} (e.g. '7,3,1,0')."
            )
    return ",".join(tokens)


def normalize_phone(phone: str) -> str:
    """E.164 form; bare national numbers get the default country code."""
    cleaned = _PHONE_STRIP.sub("", phone.strip())
    if not re.fullmatch(r"\+?\d{7,15}", cleaned):
        raise InvalidInputError(f"Invalid phone number: {phone}")
    if cleaned.startswith("+"):
        return cleaned
    cc = settings.default_country_code
    if len(cleaned) == 10:
        return f"+{cc}{cleaned}"
    if cleaned.startswith(cc) and len(cleaned) == len(cc) + 10:
        return f"+{cleaned}"
    return f"+{cc}{cleaned}"


def _row_to_preference(row) -> UserPreference:
    return UserPreference(
        user_id=row["user_id"],
        push_enabled=bool(row["push_enabled"]),
        sms_enabled=bool(row["sms_enabled"]),
        whatsapp_enabled=bool(row["whatsapp_enabled"]),
        reminder_days=row["reminder_days"],
        language=row["language"],
    )


async def get_preferences(user_id: int) -> UserPreference:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM user_preferences WHERE user_id = ?", (user_id,))
    row = await cursor.fetchone()
    if row:
        return _row_to_preference(row)
    return UserPreference(user_id=user_id, reminder_days=settings.default_reminder_days)


async def update_preferences(user_id: int, **fields) -> UserPreference:
    """Partial update: only keys present (and not None) change."""
    prefs = await get_preferences(user_id)
    if (days := fields.get("reminder_days")) is not None:
        prefs.reminder_days = validate_reminder_days(days)
    if (language := fields.get("language")) is not None:
        if language not in LANGUAGES:
            raise InvalidInputError(f"Language must be one of: {', '.join(sorted(LANGUAGES))}.")
        prefs.language = language
    for flag in ("push_enabled", "sms_enabled", "whatsapp_enabled"):
        if fields.get(flag) is not None:
            setattr(prefs, flag, bool(fields[flag]))

    async with transaction() as db:
        await db.execute(
            """INSERT OR REPLACE INTO user_preferences
            (user_id, push_enabled, sms_enabled, whatsapp_enabled, reminder_days, language, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)""",
            (
                user_id,
                prefs.push_enabled,
                prefs.sms_enabled,
                prefs.whatsapp_enabled,
                prefs.reminder_days,
                prefs.language,
            ),
        )
    logger.debug("Updated preferences", extra={"user_id": user_id})
    return prefs


async def ensure_user(user_id: int, name: str | None = None) -> User:
    async with transaction() as db:
        await db.execute(
            "INSERT OR IGNORE INTO users (id, name) VALUES (?, ?)",
            (user_id, name or "User"),
        )
    return await get_user(user_id)


async def get_user(user_id: int) -> User:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = await cursor.fetchone()
    if not row:
        raise NotFoundError("user", user_id)
    return User(**dict(row))


async def set_phone(user_id: int, phone: str) -> User:
    normalized = normalize_phone(phone)
    await ensure_user(user_id)
    async with transaction() as db:
        await db.execute("UPDATE users SET phone = ? WHERE id = ?", (normalized, user_id))
    return await get_user(user_id)
