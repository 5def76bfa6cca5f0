"""Date Helpers.

Timezone normalisation and calendar arithmetic shared by the catalog
pipeline and the products service.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timezone

__all__ = ["add_months", "as_utc", "utc_now"]


def utc_now() -> datetime:
    """Return the current time as an aware UTC ``datetime``."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Shift *value* by *months* calendar months.

    The day is clamped to the last day of the target month
    (31 January + 1 month -> 28/29 February).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
