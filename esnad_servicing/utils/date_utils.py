"""Date manipulation utilities"""

from datetime import date, datetime, timezone

from dateutil.relativedelta import relativedelta


def add_months(anchor: date, months: int) -> date:
    """Shift by whole months from the anchor, clamping to the last day of short months"""
    return anchor + relativedelta(months=months)


def days_between(start: date, end: date) -> int:
    """Signed number of calendar days from start to end"""
    return (end - start).days


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
