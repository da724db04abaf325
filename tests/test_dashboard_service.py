from datetime import date
from decimal import Decimal

import pytest

from billminder.errors import InvalidInputError
from billminder.services.bill_service import create_bill, mark_paid
from billminder.services.dashboard_service import (
    calendar_view,
    monthly_summary,
    monthly_totals,
    notification_history,
    overdue,
    summary,
    upcoming,
)

TODAY = date(2025, 1, 1)
LATER = date(2025, 1, 8)


@pytest.fixture
async def bills(policy):
    async def add(title, category, amount, due, **kw):
        return await create_bill(
            1, title, category, amount, due, today=TODAY, policy=policy, **kw
        )

    loan = await add("Home Loan", "EMI", "25000", date(2025, 1, 10))
    power = await add("Electricity", "Utilities", "1200", date(2025, 1, 5))
    netflix = await add("Netflix", "Subscriptions", "649", date(2025, 1, 20))
    card = await add("Visa", "Credit Card", "30000", date(2025, 1, 15))
    await mark_paid(card.id, 1, today=TODAY, policy=policy)
    # another user's bill never shows up
    await create_bill(2, "Other", "EMI", "999", date(2025, 1, 6), today=TODAY, policy=policy)
    return {"loan": loan, "power": power, "netflix": netflix, "card": card}


async def test_summary(bills):
    data = await summary(1, today=LATER)
    # Visa successor due 2025-02-15 is unpaid
    assert data["total_bills"] == 5
    assert data["paid_bills"] == 1
    assert data["pending_bills"] == 4
    assert data["total_due_amount"] == Decimal("25000") + Decimal("1200") + Decimal("649") + Decimal("30000")
    assert data["total_overdue_amount"] == Decimal("1200.00")
    assert data["bills_overdue"] == 1
    assert data["total_paid_this_month"] == Decimal("30000.00")
    assert data["bills_due_next_7_days"] == 1


async def test_summary_empty():
    data = await summary(1, today=LATER)
    assert data["total_bills"] == 0
    assert data["total_due_amount"] == Decimal(0)


async def test_upcoming(bills):
    views = await upcoming(1, days=7, today=LATER)
    assert [v.bill.title for v in views] == ["Home Loan"]

    views = await upcoming(1, days=30, today=LATER)
    assert [v.bill.title for v in views] == ["Home Loan", "Netflix"]


async def test_upcoming_out_of_range_days_falls_back(bills):
    assert [v.id for v in await upcoming(1, days=0, today=LATER)] == [
        v.id for v in await upcoming(1, days=7, today=LATER)
    ]
    assert len(await upcoming(1, days=365, today=LATER)) == 1


async def test_overdue(bills):
    views, total = await overdue(1, today=date(2025, 1, 16))
    assert [v.bill.title for v in views] == ["Electricity", "Home Loan"]
    assert views[0].overdue_days == 11
    assert total == Decimal("26200.00")


async def test_monthly_summary(bills):
    data = await monthly_summary(1, month=1, year=2025, today=LATER)
    assert data["total_amount"] == Decimal("56849.00")
    assert data["paid_amount"] == Decimal("30000.00")
    assert data["pending_amount"] == Decimal("26849.00")
    assert data["payment_percentage"] == 52.8

    breakdown = data["category_breakdown"]
    assert [row["category"] for row in breakdown] == ["Credit Card", "EMI", "Utilities", "Subscriptions"]
    assert breakdown[0]["count"] == 1
    assert breakdown[0]["percentage"] == 52.8


async def test_monthly_summary_defaults_to_current_month(bills):
    data = await monthly_summary(1, today=date(2025, 2, 3))
    assert (data["month"], data["year"]) == (2, 2025)
    assert data["total_amount"] == Decimal("30000.00")


async def test_monthly_summary_rejects_bad_month():
    with pytest.raises(InvalidInputError):
        await monthly_summary(1, month=13, year=2025)


async def test_calendar_view(bills):
    grouped = await calendar_view(1, month=1, year=2025, today=LATER)
    assert sorted(grouped) == ["2025-01-05", "2025-01-10", "2025-01-15", "2025-01-20"]
    assert grouped["2025-01-05"][0].computed_status == "overdue"
    assert grouped["2025-01-15"][0].computed_status == "paid"


async def test_monthly_totals(bills):
    rows = await monthly_totals(1)
    assert [row["month"] for row in rows] == ["2025-02", "2025-01"]
    assert rows[1]["total"] == Decimal("56849.00")
    assert rows[1]["paid"] == Decimal("30000.00")
    assert rows[1]["count"] == 4


async def test_notification_history(bills, test_db):
    await test_db.execute(
        "UPDATE reminders SET status = 'sent', sent_at = '2025-01-03T03:30:05+00:00' "
        "WHERE bill_id = ? AND days_before = 7",
        (bills["loan"].id,),
    )
    await test_db.execute(
        "UPDATE reminders SET status = 'sent', sent_at = '2025-01-07T03:30:05+00:00' "
        "WHERE bill_id = ? AND days_before = 3",
        (bills["loan"].id,),
    )
    await test_db.commit()

    rows, total = await notification_history(1)
    assert total == 2
    assert [row["sent_at"] for row in rows] == ["2025-01-07T03:30:05+00:00", "2025-01-03T03:30:05+00:00"]
    assert rows[0]["bill_title"] == "Home Loan"

    rows, total = await notification_history(1, page=2, page_size=1)
    assert total == 2
    assert len(rows) == 1
    assert await notification_history(2) == ([], 0)
