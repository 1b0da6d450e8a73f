"""Date helpers. All timestamps are stored as naive UTC."""
import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching how columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_month(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def days_remaining(end_date, now=None):
    """
    Whole days left until end_date, rounded up and never negative.

    Returns None when there is no end date.
    """
    if end_date is None:
        return None
    now = now or utcnow()
    seconds = (end_date - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))
