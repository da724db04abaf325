import asyncio
import calendar
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from billminder.clock import FireTimePolicy, default_policy, from_storage, to_storage, utc_now
from billminder.db.database import get_db, transaction
from billminder.db.models import CATEGORIES, Bill, BillStatus, ComputedStatus, Frequency
from billminder.errors import InvalidInputError, NotFoundError
from billminder.money import MAX_BILL_AMOUNT, to_decimal
from billminder.services.preference_service import get_preferences
from billminder.services.reminder_service import cancel_pending, generate_reminders

logger = logging.getLogger(__name__)

DUE_SOON_DAYS = 7

_SORT_COLUMNS = {
    "due_date": "due_date",
    "amount": "CAST(amount AS REAL)",
    "title": "title",
}

_UPDATABLE = (
    "title",
    "category",
    "amount",
    "due_date",
    "frequency",
    "is_recurring",
    "notes",
    "institution",
    "account_info",
)

# Serializes read-modify-write on a single bill (status and due date).
# Entries live only while some coroutine holds or waits on them.
_bill_locks: dict[int, asyncio.Lock] = {}
_bill_lock_users: Counter[int] = Counter()


@asynccontextmanager
async def _bill_lock(bill_id: int):
    lock = _bill_locks.setdefault(bill_id, asyncio.Lock())
    _bill_lock_users[bill_id] += 1
    try:
        async with lock:
            yield
    finally:
        _bill_lock_users[bill_id] -= 1
        if not _bill_lock_users[bill_id]:
            del _bill_lock_users[bill_id]
            _bill_locks.pop(bill_id, None)


def computed_status(stored: str, due_date: date, today: date) -> ComputedStatus:
    if stored == BillStatus.PAID:
        return ComputedStatus.PAID
    if due_date < today:
        return ComputedStatus.OVERDUE
    return ComputedStatus.DUE


@dataclass(slots=True)
class BillView:
    """A bill as surfaced to callers, with status fields derived for a given day."""

    bill: Bill
    computed_status: ComputedStatus
    overdue_days: int
    is_due_within_7_days: bool

    @classmethod
    def from_bill(cls, bill: Bill, today: date) -> "BillView":
        status = computed_status(bill.status, bill.due_date, today)
        days_left = (bill.due_date - today).days
        return cls(
            bill=bill,
            computed_status=status,
            overdue_days=-days_left if status == ComputedStatus.OVERDUE else 0,
            is_due_within_7_days=status == ComputedStatus.DUE and 0 <= days_left <= DUE_SOON_DAYS,
        )

    @property
    def id(self) -> int:
        return self.bill.id


@dataclass(slots=True)
class MarkPaidResult:
    bill: BillView
    next_bill: BillView | None


def add_months(d: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the end of shorter months."""
    month_index = d.month - 1 + months
    year, month = d.year + month_index // 12, month_index % 12 + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def next_due_date(current: date, frequency: str) -> date:
    if frequency == Frequency.QUARTERLY:
        return add_months(current, 3)
    if frequency == Frequency.YEARLY:
        return add_months(current, 12)
    return add_months(current, 1)


def _validate(fields: dict, creating: bool, today: date) -> dict:
    clean = dict(fields)
    if "title" in clean:
        title = (clean["title"] or "").strip()
        if not title:
            raise InvalidInputError("Title is required.")
        if len(title) > 200:
            raise InvalidInputError("Title must not exceed 200 characters.")
        clean["title"] = title
    if "category" in clean:
        category = (clean["category"] or "").strip()
        if not category:
            raise InvalidInputError("Category is required.")
        if len(category) > 50:
            raise InvalidInputError("Category must not exceed 50 characters.")
        # known categories are matched case-insensitively to their canonical spelling
        clean["category"] = next((c for c in CATEGORIES if c.lower() == category.lower()), category)
    if "amount" in clean:
        try:
            amount = to_decimal(clean["amount"])
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from None
        if amount <= 0:
            raise InvalidInputError("Amount must be greater than 0.")
        if amount > MAX_BILL_AMOUNT:
            raise InvalidInputError("Amount cannot exceed ₹1,00,00,000.")
        clean["amount"] = amount
    if "frequency" in clean:
        try:
            clean["frequency"] = Frequency(clean["frequency"]).value
        except ValueError:
            raise InvalidInputError(
                f"Frequency must be one of: {', '.join(f.value for f in Frequency)}."
            ) from None
    if "due_date" in clean:
        if not isinstance(clean["due_date"], date) or isinstance(clean["due_date"], datetime):
            raise InvalidInputError("Due date must be a calendar date.")
        if creating and clean["due_date"] < today:
            raise InvalidInputError("Due date cannot be in the past.")
    if clean.get("notes") is not None and len(clean["notes"]) > 2000:
        raise InvalidInputError("Notes must not exceed 2000 characters.")
    if clean.get("institution") is not None and len(clean["institution"]) > 200:
        raise InvalidInputError("Institution name must not exceed 200 characters.")
    if clean.get("account_info") is not None and len(clean["account_info"]) > 100:
        raise InvalidInputError("Account info must not exceed 100 characters.")
    return clean


def _to_column(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def _row_to_bill(row) -> Bill:
    return Bill(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        category=row["category"],
        amount=Decimal(row["amount"]),
        due_date=date.fromisoformat(row["due_date"]),
        frequency=row["frequency"],
        is_recurring=bool(row["is_recurring"]),
        status=row["status"],
        notes=row["notes"],
        institution=row["institution"],
        account_info=row["account_info"],
        created_at=from_storage(row["created_at"]),
        updated_at=from_storage(row["updated_at"]),
    )


async def _load_bill(bill_id: int, user_id: int) -> Bill:
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM bills WHERE id = ? AND user_id = ?",
        (bill_id, user_id),
    )
    row = await cursor.fetchone()
    if not row:
        raise NotFoundError("bill", bill_id)
    return _row_to_bill(row)


async def _insert_bill(bill: Bill) -> int:
    db = await get_db()
    cursor = await db.execute(
        """INSERT INTO bills
        (user_id, title, category, amount, due_date, frequency, is_recurring, status,
         notes, institution, account_info, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            bill.user_id,
            bill.title,
            bill.category,
            str(bill.amount),
            bill.due_date.isoformat(),
            str(bill.frequency),
            bill.is_recurring,
            str(bill.status),
            bill.notes,
            bill.institution,
            bill.account_info,
            to_storage(bill.created_at),
            to_storage(bill.updated_at),
        ),
    )
    assert cursor.lastrowid is not None
    return cursor.lastrowid


async def _set_status(bill: Bill, status: BillStatus) -> None:
    bill.status = status
    bill.updated_at = utc_now()
    db = await get_db()
    await db.execute(
        "UPDATE bills SET status = ?, updated_at = ? WHERE id = ?",
        (status.value, to_storage(bill.updated_at), bill.id),
    )


async def create_bill(
    user_id: int,
    title: str,
    category: str,
    amount,
    due_date: date,
    frequency: str = Frequency.MONTHLY,
    is_recurring: bool = True,
    notes: str | None = None,
    institution: str | None = None,
    account_info: str | None = None,
    *,
    today: date | None = None,
    policy: FireTimePolicy | None = None,
) -> BillView:
    policy = policy or default_policy()
    today = today or policy.today()
    fields = _validate(
        {
            "title": title,
            "category": category,
            "amount": amount,
            "due_date": due_date,
            "frequency": frequency,
            "notes": notes,
            "institution": institution,
            "account_info": account_info,
        },
        creating=True,
        today=today,
    )
    now = utc_now()
    bill = Bill(id=None, user_id=user_id, is_recurring=bool(is_recurring), created_at=now, updated_at=now, **fields)

    async with transaction():
        bill.id = await _insert_bill(bill)
        prefs = await get_preferences(user_id)
        await generate_reminders(bill, prefs, today=today, policy=policy)
    logger.info("Created bill '%s' due %s", bill.title, bill.due_date, extra={"user_id": user_id, "bill_id": bill.id})
    return BillView.from_bill(bill, today)


async def get_bill(bill_id: int, user_id: int, *, today: date | None = None) -> BillView:
    bill = await _load_bill(bill_id, user_id)
    return BillView.from_bill(bill, today or default_policy().today())


async def list_bills(
    user_id: int,
    status: str | None = None,
    category: str | None = None,
    sort: str = "due_date",
    order: str = "asc",
    page: int = 1,
    page_size: int = 20,
    *,
    today: date | None = None,
) -> tuple[list[BillView], int]:
    today = today or default_policy().today()
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)

    query = "FROM bills WHERE user_id = ?"
    params: list = [user_id]
    if status:
        wanted = status.lower()
        if wanted == ComputedStatus.OVERDUE:
            query += " AND status != 'paid' AND due_date < ?"
            params.append(today.isoformat())
        elif wanted == ComputedStatus.DUE:
            query += " AND status != 'paid' AND due_date >= ?"
            params.append(today.isoformat())
        elif wanted == ComputedStatus.PAID:
            query += " AND status = 'paid'"
        else:
            raise InvalidInputError(f"Unknown status filter: {status}")
    if category:
        query += " AND LOWER(category) = LOWER(?)"
        params.append(category)

    column = _SORT_COLUMNS.get(sort.lower(), "due_date")
    direction = "DESC" if order.lower() == "desc" else "ASC"

    db = await get_db()
    cursor = await db.execute(f"SELECT COUNT(*) {query}", params)
    total = (await cursor.fetchone())[0]
    cursor = await db.execute(
        f"SELECT * {query} ORDER BY {column} {direction}, id {direction} LIMIT ? OFFSET ?",
        [*params, page_size, (page - 1) * page_size],
    )
    rows = await cursor.fetchall()
    return [BillView.from_bill(_row_to_bill(row), today) for row in rows], total


async def update_bill(
    bill_id: int,
    user_id: int,
    *,
    today: date | None = None,
    policy: FireTimePolicy | None = None,
    **fields,
) -> BillView:
    """Apply only the fields given (None means unchanged).

    A changed due date replaces the bill's pending reminders.
    """
    policy = policy or default_policy()
    today = today or policy.today()
    unknown = set(fields) - set(_UPDATABLE)
    if unknown:
        raise InvalidInputError(f"Cannot update: {', '.join(sorted(unknown))}")
    patch = _validate({k: v for k, v in fields.items() if v is not None}, creating=False, today=today)

    async with _bill_lock(bill_id):
        bill = await _load_bill(bill_id, user_id)
        due_date_changed = "due_date" in patch and patch["due_date"] != bill.due_date
        if not patch:
            return BillView.from_bill(bill, today)

        if "is_recurring" in patch:
            patch["is_recurring"] = bool(patch["is_recurring"])
        for key, value in patch.items():
            setattr(bill, key, value)
        bill.updated_at = utc_now()

        stored = {key: _to_column(value) for key, value in patch.items()}
        stored["updated_at"] = to_storage(bill.updated_at)
        set_clause = ", ".join(f"{k} = ?" for k in stored)

        async with transaction() as db:
            await db.execute(f"UPDATE bills SET {set_clause} WHERE id = ?", [*stored.values(), bill_id])
            # a paid bill has no pending reminders and gets none until it is unpaid
            if due_date_changed and bill.status != BillStatus.PAID:
                prefs = await get_preferences(user_id)
                await cancel_pending(bill_id)
                await generate_reminders(bill, prefs, today=today, policy=policy)

    if due_date_changed:
        logger.info("Due date moved to %s", bill.due_date, extra={"bill_id": bill_id})
    return BillView.from_bill(bill, today)


async def mark_paid(
    bill_id: int,
    user_id: int,
    *,
    today: date | None = None,
    policy: FireTimePolicy | None = None,
) -> MarkPaidResult:
    policy = policy or default_policy()
    today = today or policy.today()

    async with _bill_lock(bill_id):
        bill = await _load_bill(bill_id, user_id)
        if bill.status == BillStatus.PAID:
            logger.debug("Bill already paid, nothing to do", extra={"bill_id": bill_id})
            return MarkPaidResult(bill=BillView.from_bill(bill, today), next_bill=None)

        next_bill = None
        async with transaction():
            await _set_status(bill, BillStatus.PAID)
            await cancel_pending(bill_id)

            if bill.is_recurring and bill.frequency != Frequency.ONE_TIME:
                now = utc_now()
                next_bill = Bill(
                    id=None,
                    user_id=bill.user_id,
                    title=bill.title,
                    category=bill.category,
                    amount=bill.amount,
                    due_date=next_due_date(bill.due_date, bill.frequency),
                    frequency=bill.frequency,
                    is_recurring=bill.is_recurring,
                    status=BillStatus.DUE,
                    notes=bill.notes,
                    institution=bill.institution,
                    account_info=bill.account_info,
                    created_at=now,
                    updated_at=now,
                )
                next_bill.id = await _insert_bill(next_bill)
                prefs = await get_preferences(user_id)
                await generate_reminders(next_bill, prefs, today=today, policy=policy)

    logger.info(
        "Marked bill paid%s",
        f", next due {next_bill.due_date}" if next_bill else "",
        extra={"user_id": user_id, "bill_id": bill_id},
    )
    return MarkPaidResult(
        bill=BillView.from_bill(bill, today),
        next_bill=BillView.from_bill(next_bill, today) if next_bill else None,
    )


async def mark_unpaid(
    bill_id: int,
    user_id: int,
    *,
    today: date | None = None,
    policy: FireTimePolicy | None = None,
) -> BillView:
    policy = policy or default_policy()
    today = today or policy.today()

    async with _bill_lock(bill_id):
        bill = await _load_bill(bill_id, user_id)
        if bill.status != BillStatus.PAID:
            return BillView.from_bill(bill, today)

        async with transaction():
            await _set_status(bill, BillStatus.DUE)
            prefs = await get_preferences(user_id)
            await cancel_pending(bill_id)
            await generate_reminders(bill, prefs, today=today, policy=policy)

    logger.info("Marked bill unpaid", extra={"user_id": user_id, "bill_id": bill_id})
    return BillView.from_bill(bill, today)


async def delete_bill(bill_id: int, user_id: int) -> None:
    async with _bill_lock(bill_id):
        async with transaction() as db:
            cursor = await db.execute(
                "DELETE FROM bills WHERE id = ? AND user_id = ?",
                (bill_id, user_id),
            )
    if cursor.rowcount == 0:
        raise NotFoundError("bill", bill_id)
    logger.info("Deleted bill", extra={"user_id": user_id, "bill_id": bill_id})


async def get_user_bills(user_id: int, start: date | None = None, end: date | None = None) -> list[Bill]:
    db = await get_db()
    query = "SELECT * FROM bills WHERE user_id = ?"
    params: list = [user_id]
    if start:
        query += " AND due_date >= ?"
        params.append(start.isoformat())
    if end:
        query += " AND due_date <= ?"
        params.append(end.isoformat())
    query += " ORDER BY due_date, id"
    cursor = await db.execute(query, params)
    rows = await cursor.fetchall()
    return [_row_to_bill(row) for row in rows]
