"""
Datetime utility functions.
Provides replacements for deprecated datetime functions.
"""

from datetime import datetime
from typing import Optional

import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def utc_date_partition(moment: Optional[datetime] = None) -> str:
    """
    Format the UTC calendar date used to partition storage keys.

    Naive datetimes are treated as already being in UTC; aware datetimes are
    converted first, so a late-evening upload in a western timezone lands in
    the next day's partition.

    Args:
        moment: Datetime to format (defaults to now)

    Returns:
        Date string like "2025-08-03"
    """
    if moment is None:
        moment = utcnow()
    elif moment.tzinfo is None:
        moment = pytz.UTC.localize(moment)
    else:
        moment = moment.astimezone(pytz.UTC)
    return moment.strftime("%Y-%m-%d")


def to_iso(moment: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for a datetime, or None."""
    if moment is None:
        return None
    return moment.isoformat()
