from dataclasses import dataclass
from datetime import date, datetime, time
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class MonthWindow:
    year: int
    month: int
    start: datetime
    end: datetime


def _month_end_date(year: int, month: int) -> date:
    if month == 12:
        return date(year, 12, 31)
    return date(year, month + 1, 1) - date.resolution


def month_window(year: int, month: int) -> MonthWindow:
    """Closed interval covering every instant of the given calendar month."""
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    start = datetime.combine(date(year, month, 1), time.min)
    end = datetime.combine(_month_end_date(year, month), time.max)
    return MonthWindow(year, month, start, end)


def is_closed_month(year: int, month: int, now: datetime) -> bool:
    """A month is closed once its last day lies entirely before today."""
    start_of_today = datetime.combine(now.date(), time.min)
    return month_window(year, month).end < start_of_today


def reference_now(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)


def to_reference_time(value: datetime, timezone: str) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(timezone)).replace(tzinfo=None)
