from datetime import date, datetime, timedelta

from models import Frequency


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: datetime, months: int) -> datetime:
    """Move ``base`` by whole months, clamping to the end of shorter months."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def next_occurrence(moment: datetime, frequency: Frequency) -> datetime:
    # Monthly steps anchor on the date they are given, so a clamp is sticky:
    # Jan 31 -> Feb 28 -> Mar 28.
    if frequency == Frequency.daily:
        return moment + timedelta(days=1)
    if frequency == Frequency.weekly:
        return moment + timedelta(days=7)
    if frequency == Frequency.monthly:
        return add_months(moment, 1)
    raise ValueError(f"Unknown frequency: {frequency!r}")


def catch_up_window_start(now: datetime, months: int) -> datetime:
    return add_months(now, -months)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` range covering one calendar month."""
    start = datetime(year, month, 1)
    return start, add_months(start, 1)
