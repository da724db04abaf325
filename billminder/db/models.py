from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum


class BillStatus(StrEnum):
    DUE = "due"
    PAID = "paid"


class ComputedStatus(StrEnum):
    DUE = "due"
    OVERDUE = "overdue"
    PAID = "paid"


class Frequency(StrEnum):
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"
    ONE_TIME = "One-time"


class Channel(StrEnum):
    PUSH = "push"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class ReminderStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


CATEGORIES = ("EMI", "Utilities", "Subscriptions", "Credit Card")


@dataclass(slots=True)
class Bill:
    id: int | None
    user_id: int
    title: str
    category: str
    amount: Decimal
    due_date: date
    frequency: str = Frequency.MONTHLY
    is_recurring: bool = True
    status: str = BillStatus.DUE
    notes: str | None = None
    institution: str | None = None
    account_info: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class Reminder:
    id: int | None
    bill_id: int
    user_id: int
    scheduled_at: datetime
    days_before: int
    message: str
    channel: Channel
    status: ReminderStatus = ReminderStatus.PENDING
    sent_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class UserPreference:
    user_id: int
    push_enabled: bool = True
    sms_enabled: bool = False
    whatsapp_enabled: bool = False
    reminder_days: str = "7,3,0"
    language: str = "en"


@dataclass(slots=True)
class User:
    id: int
    name: str = "User"
    phone: str | None = None
    created_at: datetime | None = None
