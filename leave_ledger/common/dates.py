"""Calendar arithmetic at day granularity: weekdays, month math, accrual periods."""

from __future__ import annotations

from calendar import monthrange
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Union

from leave_ledger.common.constants import MONTHS_PER_TERM, AccrualMethod

DateLike = Union[date, datetime, str]

WEEKEND = {5, 6}  # Saturday, Sunday


def to_date(value: DateLike) -> date:
    """Coerce an ISO-8601 string, datetime or date to a date (time ignored)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "T" in text or " " in text:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every date in ``[start, end]``."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def is_weekday(day: date) -> bool:
    return day.weekday() not in WEEKEND


def count_weekdays(start: date, end: date) -> int:
    """Number of Mon–Fri days in ``[start, end]``; 0 if the range is empty."""
    if start > end:
        return 0
    return sum(1 for d in iter_days(start, end) if is_weekday(d))


def month_bounds(day: date) -> tuple[date, date]:
    """First and last day of the calendar month containing *day*."""
    _, last = monthrange(day.year, day.month)
    return date(day.year, day.month, 1), date(day.year, day.month, last)


def add_months(day: date, months: int) -> date:
    """Shift *day* by *months*, clamping to the end of shorter months."""
    index = day.month - 1 + months
    year = day.year + index // 12
    month = index % 12 + 1
    _, last = monthrange(year, month)
    return date(year, month, min(day.day, last))


def accrual_period(reference: date, method: AccrualMethod) -> tuple[date, date]:
    """The accrual period that *reference* falls in for *method*.

    monthly  → calendar month
    per-term → four-month term (Jan–Apr, May–Aug, Sep–Dec)
    yearly   → calendar year
    """
    if method == AccrualMethod.monthly:
        return month_bounds(reference)
    if method == AccrualMethod.per_term:
        first_month = ((reference.month - 1) // MONTHS_PER_TERM) * MONTHS_PER_TERM + 1
        start = date(reference.year, first_month, 1)
        end = add_months(start, MONTHS_PER_TERM) - timedelta(days=1)
        return start, end
    return date(reference.year, 1, 1), date(reference.year, 12, 31)


def overlap(
    a_start: date, a_end: date, b_start: date, b_end: date,
) -> Optional[tuple[date, date]]:
    """Intersection of two inclusive ranges, or None."""
    start = max(a_start, b_start)
    end = min(a_end, b_end)
    if start > end:
        return None
    return start, end
