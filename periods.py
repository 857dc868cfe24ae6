from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        following = date(year + 1, 1, 1)
    else:
        following = date(year, month + 1, 1)
    return (following - date(year, month, 1)).days


def clamp_day(year: int, month: int, day: int) -> date:
    """Materialise ``day`` in the given month, snapping to its last day."""
    return date(year, month, min(day, days_in_month(year, month)))


def next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def month_period(today: date) -> Period:
    first = today.replace(day=1)
    last = today.replace(day=days_in_month(today.year, today.month))
    return Period("this_month", first, last)
