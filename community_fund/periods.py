"""Calendar helpers shared by the contribution planner and catch-up calculator.

Both follow the "up to last completed month" policy: the month containing the
reference timestamp is never counted as owed.
"""
import re
from datetime import date, datetime

from dateutil.relativedelta import relativedelta

from community_fund.config import MONTH_KEY_FORMAT
from community_fund.exceptions import InvalidInputError

MONTH_KEY_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def as_datetime(value):
    """Normalize a date or datetime to a naive datetime (dates become midnight)."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise InvalidInputError("Expected a date or datetime", {"value": repr(value)})


def month_start(value):
    """First instant of the month containing ``value``."""
    return as_datetime(value).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def month_key(value):
    return as_datetime(value).strftime(MONTH_KEY_FORMAT)


def is_month_key(value):
    return isinstance(value, str) and bool(MONTH_KEY_PATTERN.match(value))


def parse_month_key(key):
    """Parse a ``YYYY-MM`` key into the first day of that month.
    
    Raises:
        InvalidInputError: If the key is malformed.
    """
    if not is_month_key(key):
        raise InvalidInputError(f"Invalid month format: {key}", {"month": key})
    return datetime.strptime(key, MONTH_KEY_FORMAT)


def last_completed_month(reference_now):
    """Start of the month immediately preceding the reference month."""
    return month_start(reference_now) - relativedelta(months=1)


def iter_months(start, end):
    """Yield month starts from ``start`` through ``end`` inclusive."""
    current = month_start(start)
    limit = month_start(end)
    while current <= limit:
        yield current
        current = current + relativedelta(months=1)


def months_between(start, end):
    """Inclusive count of calendar months from ``start`` to ``end`` (0 if end < start)."""
    start, end = month_start(start), month_start(end)
    count = (end.year - start.year) * 12 + (end.month - start.month) + 1
    return max(0, count)
