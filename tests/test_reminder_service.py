from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from billminder.db.models import Bill, Channel, ReminderStatus, UserPreference
from billminder.errors import InvalidInputError, NotFoundError
from billminder.services.bill_service import create_bill
from billminder.services.reminder_service import (
    cancel_pending,
    choose_channel,
    delete_reminder,
    get_bill_reminders,
    get_reminder,
    list_reminders,
    plan_reminders,
    preview_reminder,
    reschedule_reminder,
    reschedule_reminders,
)

TODAY = date(2025, 1, 1)


def _make_bill(**overrides) -> Bill:
    defaults = dict(
        id=1,
        user_id=1,
        title="Home Loan",
        category="EMI",
        amount=Decimal("15000"),
        due_date=date(2025, 1, 10),
    )
    defaults.update(overrides)
    return Bill(**defaults)


async def _create(policy, **overrides):
    fields = dict(
        user_id=1,
        title="Home Loan",
        category="EMI",
        amount="15000",
        due_date=date(2025, 1, 10),
    )
    fields.update(overrides)
    return await create_bill(**fields, today=TODAY, policy=policy)


def test_choose_channel_priority():
    assert choose_channel(None) == Channel.PUSH
    assert choose_channel(UserPreference(user_id=1)) == Channel.PUSH
    assert choose_channel(UserPreference(user_id=1, sms_enabled=True)) == Channel.SMS
    assert choose_channel(UserPreference(user_id=1, sms_enabled=True, whatsapp_enabled=True)) == Channel.WHATSAPP
    assert choose_channel(UserPreference(user_id=1, push_enabled=False)) == Channel.PUSH


def test_plan_default_offsets(policy):
    reminders = plan_reminders(_make_bill(), UserPreference(user_id=1), today=TODAY, policy=policy)

    assert [r.days_before for r in reminders] == [7, 3, 0]
    assert [r.scheduled_at for r in reminders] == [
        datetime(2025, 1, 3, 3, 30, tzinfo=UTC),
        datetime(2025, 1, 7, 3, 30, tzinfo=UTC),
        datetime(2025, 1, 10, 3, 30, tzinfo=UTC),
    ]
    assert all(r.channel == Channel.PUSH for r in reminders)
    assert all(r.status == ReminderStatus.PENDING for r in reminders)
    assert reminders[0].message == "Your Home Loan payment of ₹15,000 is due in 7 days."
    assert reminders[2].message == "Your Home Loan payment of ₹15,000 is due today."


def test_plan_skips_dates_before_today(policy):
    reminders = plan_reminders(_make_bill(due_date=TODAY), None, today=TODAY, policy=policy)
    assert [r.days_before for r in reminders] == [0]

    reminders = plan_reminders(_make_bill(due_date=date(2025, 1, 5)), None, today=TODAY, policy=policy)
    assert [r.days_before for r in reminders] == [3, 0]


def test_plan_past_due_bill_gets_nothing(policy):
    assert plan_reminders(_make_bill(due_date=date(2024, 12, 31)), None, today=TODAY, policy=policy) == []


def test_plan_uses_custom_days_and_channel(policy):
    prefs = UserPreference(user_id=1, sms_enabled=True, reminder_days="5,1,1")
    reminders = plan_reminders(_make_bill(), prefs, today=TODAY, policy=policy)
    assert [r.days_before for r in reminders] == [5, 1]
    assert all(r.channel == Channel.SMS for r in reminders)
    assert reminders[0].message.startswith("EMI Reminder: Home Loan - Rs.15,000 due in 5 days")


async def test_create_bill_persists_planned_reminders(policy):
    view = await _create(policy)
    reminders = await get_bill_reminders(view.id)
    assert [r.scheduled_at.date() for r in reminders] == [date(2025, 1, 3), date(2025, 1, 7), date(2025, 1, 10)]
    assert all(r.scheduled_at.hour == 3 and r.scheduled_at.minute == 30 for r in reminders)


async def test_cancel_pending_keeps_history(policy, test_db):
    view = await _create(policy)
    reminders = await get_bill_reminders(view.id)
    await test_db.execute("UPDATE reminders SET status = 'sent' WHERE id = ?", (reminders[0].id,))
    await test_db.execute("UPDATE reminders SET status = 'failed' WHERE id = ?", (reminders[1].id,))
    await test_db.commit()

    removed = await cancel_pending(view.id)
    assert removed == 1
    left = await get_bill_reminders(view.id)
    assert {r.status for r in left} == {ReminderStatus.SENT, ReminderStatus.FAILED}


async def test_reschedule_reminders_replaces_pending(policy):
    view = await _create(policy)
    prefs = UserPreference(user_id=1, whatsapp_enabled=True, reminder_days="1")
    new = await reschedule_reminders(view.bill, prefs, today=TODAY, policy=policy)

    stored = await get_bill_reminders(view.id)
    assert len(new) == len(stored) == 1
    assert stored[0].channel == Channel.WHATSAPP
    assert stored[0].days_before == 1


async def test_reschedule_single_reminder(policy, test_db):
    view = await _create(policy)
    reminder = (await get_bill_reminders(view.id))[0]
    await test_db.execute("UPDATE reminders SET status = 'failed' WHERE id = ?", (reminder.id,))
    await test_db.commit()

    new_at = datetime(2025, 1, 5, 6, 0, tzinfo=UTC)
    moved = await reschedule_reminder(reminder.id, 1, new_at, now=datetime(2025, 1, 1, tzinfo=UTC))
    assert moved.scheduled_at == new_at
    assert moved.status == ReminderStatus.PENDING
    assert moved.sent_at is None


async def test_reschedule_rejects_past(policy):
    view = await _create(policy)
    reminder = (await get_bill_reminders(view.id))[0]
    with pytest.raises(InvalidInputError):
        await reschedule_reminder(
            reminder.id,
            1,
            datetime(2024, 12, 31, tzinfo=UTC),
            now=datetime(2025, 1, 1, tzinfo=UTC),
        )


async def test_reschedule_other_users_reminder(policy):
    view = await _create(policy)
    reminder = (await get_bill_reminders(view.id))[0]
    with pytest.raises(NotFoundError):
        await reschedule_reminder(reminder.id, 2, datetime(2030, 1, 1, tzinfo=UTC))


async def test_list_reminders_filters(policy, test_db):
    view = await _create(policy)
    await _create(policy, title="Electricity", category="Utilities", amount="1200")
    first = (await get_bill_reminders(view.id))[0]
    await test_db.execute("UPDATE reminders SET status = 'sent' WHERE id = ?", (first.id,))
    await test_db.commit()

    rows, total = await list_reminders(1)
    assert total == 6
    assert rows[0]["scheduled_at"] >= rows[-1]["scheduled_at"]

    rows, total = await list_reminders(1, status="sent")
    assert total == 1
    assert rows[0]["bill_title"] == "Home Loan"

    rows, total = await list_reminders(1, bill_id=view.id, page_size=2)
    assert total == 3
    assert len(rows) == 2

    assert await list_reminders(2) == ([], 0)


async def test_delete_reminder(policy):
    view = await _create(policy)
    reminder = (await get_bill_reminders(view.id))[0]
    await delete_reminder(reminder.id, 1)
    with pytest.raises(NotFoundError):
        await get_reminder(reminder.id, 1)
    with pytest.raises(NotFoundError):
        await delete_reminder(reminder.id, 1)


def test_preview_reminder():
    bill = _make_bill()
    assert preview_reminder(bill, Channel.PUSH, TODAY) == "Your Home Loan payment of ₹15,000 is due in 9 days."
    assert preview_reminder(bill, Channel.PUSH, date(2025, 2, 1)).endswith("is due today.")
