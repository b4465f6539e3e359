"""Date manipulation utilities"""

from datetime import date
from typing import List


def month_start(day: date) -> date:
    """Truncate a date to the first day of its month"""
    return day.replace(day=1)


def add_months(day: date, months: int) -> date:
    """Shift a month-start date by a (possibly negative) number of months"""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def generate_month_range(end: date, count: int) -> List[date]:
    """Month starts for the `count` calendar months ending with the month of `end` (oldest first)"""
    last = month_start(end)
    return [add_months(last, -offset) for offset in range(count - 1, -1, -1)]


def months_between(start: date, end: date) -> int:
    """Whole calendar months from the month of start to the month of end"""
    return (end.year - start.year) * 12 + (end.month - start.month)
