import calendar
from collections import defaultdict
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from billminder.clock import default_policy
from billminder.db.database import get_db
from billminder.db.models import BillStatus, ReminderStatus
from billminder.errors import InvalidInputError
from billminder.services.bill_service import BillView, get_user_bills

UPCOMING_DEFAULT_DAYS = 7
UPCOMING_MAX_DAYS = 90


def _pct(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return float((part / whole * 100).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _month_bounds(month: int | None, year: int | None, today: date) -> tuple[date, date]:
    month = month or today.month
    year = year or today.year
    if not 1 <= month <= 12:
        raise InvalidInputError("Month must be between 1 and 12.")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


async def summary(user_id: int, today: date | None = None) -> dict:
    today = today or default_policy().today()
    month_start, month_end = _month_bounds(None, None, today)
    next_week = today + timedelta(days=7)

    bills = await get_user_bills(user_id)
    unpaid = [b for b in bills if b.status != BillStatus.PAID]
    paid = [b for b in bills if b.status == BillStatus.PAID]
    overdue = [b for b in unpaid if b.due_date < today]

    return {
        "total_due_amount": sum((b.amount for b in unpaid), Decimal(0)),
        "total_overdue_amount": sum((b.amount for b in overdue), Decimal(0)),
        "total_paid_this_month": sum(
            (b.amount for b in paid if month_start <= b.due_date <= month_end), Decimal(0)
        ),
        "bills_due_next_7_days": sum(1 for b in unpaid if today <= b.due_date <= next_week),
        "bills_overdue": len(overdue),
        "total_bills": len(bills),
        "paid_bills": len(paid),
        "pending_bills": len(unpaid),
    }


async def upcoming(user_id: int, days: int = UPCOMING_DEFAULT_DAYS, today: date | None = None) -> list[BillView]:
    today = today or default_policy().today()
    if not 1 <= days <= UPCOMING_MAX_DAYS:
        days = UPCOMING_DEFAULT_DAYS
    bills = await get_user_bills(user_id, today, today + timedelta(days=days))
    return [BillView.from_bill(b, today) for b in bills if b.status != BillStatus.PAID]


async def overdue(user_id: int, today: date | None = None) -> tuple[list[BillView], Decimal]:
    """Unpaid bills past due, most overdue first, and their total."""
    today = today or default_policy().today()
    bills = await get_user_bills(user_id, end=today - timedelta(days=1))
    views = [BillView.from_bill(b, today) for b in bills if b.status != BillStatus.PAID]
    return views, sum((v.bill.amount for v in views), Decimal(0))


async def monthly_summary(
    user_id: int,
    month: int | None = None,
    year: int | None = None,
    today: date | None = None,
) -> dict:
    today = today or default_policy().today()
    start, end = _month_bounds(month, year, today)
    bills = await get_user_bills(user_id, start, end)

    total = sum((b.amount for b in bills), Decimal(0))
    paid = sum((b.amount for b in bills if b.status == BillStatus.PAID), Decimal(0))

    by_category: dict[str, list] = defaultdict(lambda: [Decimal(0), 0])
    for b in bills:
        by_category[b.category][0] += b.amount
        by_category[b.category][1] += 1
    breakdown = [
        {"category": category, "amount": amount, "count": count, "percentage": _pct(amount, total)}
        for category, (amount, count) in by_category.items()
    ]
    breakdown.sort(key=lambda row: row["amount"], reverse=True)

    return {
        "month": start.month,
        "year": start.year,
        "total_amount": total,
        "paid_amount": paid,
        "pending_amount": total - paid,
        "payment_percentage": _pct(paid, total),
        "category_breakdown": breakdown,
    }


async def calendar_view(
    user_id: int,
    month: int | None = None,
    year: int | None = None,
    today: date | None = None,
) -> dict[str, list[BillView]]:
    today = today or default_policy().today()
    start, end = _month_bounds(month, year, today)
    grouped: dict[str, list[BillView]] = {}
    for b in await get_user_bills(user_id, start, end):
        grouped.setdefault(b.due_date.isoformat(), []).append(BillView.from_bill(b, today))
    return grouped


async def monthly_totals(user_id: int, months: int = 6) -> list[dict]:
    """Per-month due totals for the most recent `months` months that have bills, newest first."""
    totals: dict[str, list] = defaultdict(lambda: [Decimal(0), Decimal(0), 0])
    for b in await get_user_bills(user_id):
        row = totals[b.due_date.strftime("%Y-%m")]
        row[0] += b.amount
        if b.status == BillStatus.PAID:
            row[1] += b.amount
        row[2] += 1
    return [
        {"month": month, "total": total, "paid": paid, "count": count}
        for month, (total, paid, count) in sorted(totals.items(), reverse=True)[:months]
    ]


async def notification_history(user_id: int, page: int = 1, page_size: int = 20) -> tuple[list[dict], int]:
    page = max(page, 1)
    if not 1 <= page_size <= 100:
        page_size = 20
    db = await get_db()
    cursor = await db.execute(
        "SELECT COUNT(*) FROM reminders WHERE user_id = ? AND status = ?",
        (user_id, ReminderStatus.SENT.value),
    )
    total = (await cursor.fetchone())[0]
    cursor = await db.execute(
        """SELECT r.*, b.title AS bill_title FROM reminders r
        JOIN bills b ON b.id = r.bill_id
        WHERE r.user_id = ? AND r.status = ?
        ORDER BY r.sent_at DESC, r.id DESC
        LIMIT ? OFFSET ?""",
        (user_id, ReminderStatus.SENT.value, page_size, (page - 1) * page_size),
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows], total
