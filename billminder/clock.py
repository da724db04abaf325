from dataclasses import dataclass
from datetime import UTC, date, datetime, time, tzinfo
from zoneinfo import ZoneInfo

from billminder.config import settings


@dataclass(frozen=True, slots=True)
class FireTimePolicy:
    """Local wall-clock time at which reminders fire, in a fixed civil timezone."""

    tz: tzinfo
    hour: int = 9
    minute: int = 0

    def fire_at(self, day: date) -> datetime:
        local = datetime.combine(day, time(self.hour, self.minute), tzinfo=self.tz)
        return local.astimezone(UTC)

    def today(self, now: datetime | None = None) -> date:
        return (now or utc_now()).astimezone(self.tz).date()


def default_policy() -> FireTimePolicy:
    return FireTimePolicy(
        tz=ZoneInfo(settings.reminder_timezone),
        hour=settings.reminder_hour,
        minute=settings.reminder_minute,
    )


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_utc(value: datetime) -> datetime:
    # naive datetimes are taken to be UTC already
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_storage(value: datetime) -> str:
    """Fixed-width UTC ISO string; lexical order in SQL equals time order."""
    return to_utc(value).replace(microsecond=0).isoformat()


def from_storage(value: str | None) -> datetime | None:
    if value is None:
        return None
    return to_utc(datetime.fromisoformat(value))
