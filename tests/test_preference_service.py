import pytest

from billminder.errors import InvalidInputError, NotFoundError
from billminder.services.preference_service import (
    ensure_user,
    get_preferences,
    get_user,
    normalize_phone,
    parse_reminder_days,
    set_phone,
    update_preferences,
    validate_reminder_days,
)


def test_parse_reminder_days():
    assert parse_reminder_days("7,3,0") == [7, 3, 0]
    assert parse_reminder_days("7, 3, 3, 0") == [7, 3, 0]
    assert parse_reminder_days("5,x,-1,2") == [5, 2]


def test_parse_reminder_days_falls_back_to_default():
    assert parse_reminder_days(None) == [7, 3, 0]
    assert parse_reminder_days("") == [7, 3, 0]
    assert parse_reminder_days("nope") == [7, 3, 0]


def test_validate_reminder_days():
    assert validate_reminder_days("7, 3 ,1,0") == "7,3,1,0"
    for bad in ("", "31", "a,b", "-1", "3,,1"):
        with pytest.raises(InvalidInputError):
            validate_reminder_days(bad)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("9876543210", "+919876543210"),
        ("98765 43210", "+919876543210"),
        ("919876543210", "+919876543210"),
        ("+1 (555) 123-4567", "+15551234567"),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_normalize_phone_rejects_garbage():
    with pytest.raises(InvalidInputError):
        normalize_phone("call me")
    with pytest.raises(InvalidInputError):
        normalize_phone("123")


async def test_preferences_default_when_unset():
    prefs = await get_preferences(1)
    assert prefs.user_id == 1
    assert prefs.push_enabled is True
    assert prefs.sms_enabled is False
    assert prefs.whatsapp_enabled is False
    assert prefs.reminder_days == "7,3,0"
    assert prefs.language == "en"


async def test_update_preferences_is_partial():
    await update_preferences(1, reminder_days="5,1", sms_enabled=True)
    prefs = await update_preferences(1, whatsapp_enabled=True)
    assert prefs.reminder_days == "5,1"
    assert prefs.sms_enabled is True
    assert prefs.whatsapp_enabled is True

    stored = await get_preferences(1)
    assert stored == prefs


async def test_update_preferences_validates():
    with pytest.raises(InvalidInputError):
        await update_preferences(1, reminder_days="45")
    with pytest.raises(InvalidInputError):
        await update_preferences(1, language="xx")
    assert (await get_preferences(1)).reminder_days == "7,3,0"


async def test_ensure_user_is_idempotent():
    user = await ensure_user(42, "Asha")
    again = await ensure_user(42, "Someone Else")
    assert user.id == again.id == 42
    assert again.name == "Asha"


async def test_get_user_missing():
    with pytest.raises(NotFoundError):
        await get_user(404)


async def test_set_phone_creates_user():
    user = await set_phone(7, "9876543210")
    assert user.phone == "+919876543210"
    assert (await get_user(7)).phone == "+919876543210"
