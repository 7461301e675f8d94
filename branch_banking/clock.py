"""Wall-clock access for components that reason about calendar days."""

import calendar
from datetime import date, datetime
from typing import Callable

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current time, timezone-aware, in the branch's local timezone.

    Daily limits, inactivity and interest periods are measured in local
    calendar days.
    """
    return datetime.now().astimezone()


def calendar_date(moment: datetime, now: datetime) -> date:
    """Calendar date of moment as seen in now's timezone"""
    if moment.tzinfo is not None and now.tzinfo is not None:
        moment = moment.astimezone(now.tzinfo)
    return moment.date()


def same_day(earlier: datetime, now: datetime) -> bool:
    """True if both instants fall on the same calendar day in now's timezone"""
    return calendar_date(earlier, now) == now.date()


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def whole_months_between(start_date: date, end_date: date) -> int:
    """Number of complete months from start_date up to and including end_date"""
    months = (end_date.year - start_date.year) * 12 + end_date.month - start_date.month
    if months > 0 and add_months(start_date, months) > end_date:
        months -= 1
    return max(months, 0)
