"""
Recurring rides — expand a start date into the dates of a ride series.
"""

import calendar
from datetime import datetime, timedelta

WEEKLY = "WEEKLY"
BIWEEKLY = "BIWEEKLY"
MONTHLY = "MONTHLY"

PATTERNS = (WEEKLY, BIWEEKLY, MONTHLY)

MAX_OCCURRENCES = 52


def add_months(value: datetime, months: int) -> datetime:
    """Same day and time *months* later; the day is clamped to the month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def occurrence_dates(start: datetime, pattern: str, end: datetime,
                     limit: int = MAX_OCCURRENCES) -> list[datetime]:
    """Dates of a series from *start* through *end* (inclusive), at most *limit*.

    The first date is always *start*, even when *end* lies before it.
    """
    if pattern not in PATTERNS:
        raise ValueError(f"Unknown recurrence pattern: {pattern}")

    dates = [start]
    n = 1
    while len(dates) < limit:
        if pattern == MONTHLY:
            nxt = add_months(start, n)
        else:
            step = 7 if pattern == WEEKLY else 14
            nxt = start + timedelta(days=step * n)
        if nxt > end:
            break
        dates.append(nxt)
        n += 1
    return dates
