"""Reminder text for each delivery channel.

Rendering is pure: the same bill, offset and channel always produce the same
string, so regenerated reminders for an unchanged bill are byte-identical.
"""

from collections.abc import Callable
from datetime import date

from billminder.db.models import Bill, Channel
from billminder.money import RUPEE, group_indian

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_due_date(d: date) -> str:
    # strftime("%b") follows the process locale
    return f"{d.day:02d} {_MONTHS[d.month - 1]} {d.year}"


def days_phrase(days_before: int) -> str:
    if days_before == 0:
        return "today"
    return f"in {days_before} day{'s' if days_before > 1 else ''}"


def _render_whatsapp(bill: Bill, phrase: str) -> str:
    return (
        f"🔔 *EMI Reminder*\n"
        f"Hi! Your *{bill.title}* payment of *{RUPEE}{group_indian(bill.amount)}* is due {phrase} "
        f"({format_due_date(bill.due_date)}).\n\n"
        f"Pay on time to avoid penalties! 💰"
    )


def _render_sms(bill: Bill, phrase: str) -> str:
    return (
        f"EMI Reminder: {bill.title} - Rs.{group_indian(bill.amount)} due {phrase} "
        f"({format_due_date(bill.due_date)}). -EmiReminder"
    )


def _render_push(bill: Bill, phrase: str) -> str:
    return f"Your {bill.title} payment of {RUPEE}{group_indian(bill.amount)} is due {phrase}."


RENDERERS: dict[Channel, Callable[[Bill, str], str]] = {
    Channel.WHATSAPP: _render_whatsapp,
    Channel.SMS: _render_sms,
    Channel.PUSH: _render_push,
}


def render(bill: Bill, days_before: int, channel: Channel) -> str:
    if days_before < 0:
        raise ValueError("days_before must be non-negative")
    return RENDERERS[Channel(channel)](bill, days_phrase(days_before))
