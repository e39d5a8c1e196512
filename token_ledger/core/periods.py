"""
Period arithmetic and bucket enumeration.

Splits the calendar into day, week and month buckets. Weeks always start
on Monday so that charted buckets and current-period totals agree.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Union

DEFAULT_WINDOW = 12

DateLike = Union[date, datetime]


class Period(Enum):
    """Width of one charted bucket."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @classmethod
    def parse(cls, value: Union[str, "Period"]) -> "Period":
        """Parse a period name, failing loudly on anything unknown.

        Args:
            value: Period instance or one of "day", "week", "month"

        Returns:
            The matching Period

        Raises:
            ValueError: If the value is not a known period
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid_periods = [period.value for period in cls]
            raise ValueError(f"Unknown period {value!r}, must be one of: {valid_periods}")


@dataclass(frozen=True)
class Bucket:
    """Inclusive calendar range for one charted period."""
    start: date
    end: date
    label: str

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("bucket start must not be after its end")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def to_day(value: DateLike) -> date:
    """Drop the time component, if any."""
    if isinstance(value, datetime):
        return value.date()
    return value


def start_of_week(value: DateLike) -> date:
    day = to_day(value)
    return day - timedelta(days=day.weekday())


def end_of_week(value: DateLike) -> date:
    return start_of_week(value) + timedelta(days=6)


def start_of_month(value: DateLike) -> date:
    return to_day(value).replace(day=1)


def end_of_month(value: DateLike) -> date:
    day = to_day(value)
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=last)


def _shift_months(day: date, months: int) -> date:
    """Move a first-of-month date by a number of months."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


_MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def bucket_label(start: date, period: Period) -> str:
    """Format the display label for a bucket beginning at start.

    Month names are fixed English abbreviations, independent of locale.
    """
    if period is Period.DAY:
        return f"{_MONTH_ABBR[start.month - 1]} {start.day}"
    if period is Period.WEEK:
        week_number = start.isocalendar()[1]
        return f"W{week_number} {_MONTH_ABBR[start.month - 1]} {start.day}"
    if period is Period.MONTH:
        return f"{_MONTH_ABBR[start.month - 1]} {start.year}"
    raise ValueError(f"Unsupported period: {period!r}")


def bucket_for(value: DateLike, period: Period) -> Bucket:
    """Return the bucket of the given period containing a day.

    Raises:
        ValueError: If period is not a Period
    """
    day = to_day(value)
    if period is Period.DAY:
        start, end = day, day
    elif period is Period.WEEK:
        start, end = start_of_week(day), end_of_week(day)
    elif period is Period.MONTH:
        start, end = start_of_month(day), end_of_month(day)
    else:
        raise ValueError(f"Unsupported period: {period!r}")
    return Bucket(start=start, end=end, label=bucket_label(start, period))


def enumerate_buckets(
    now: DateLike,
    period: Period,
    window: int = DEFAULT_WINDOW
) -> List[Bucket]:
    """Enumerate the trailing buckets ending at the one containing now.

    Buckets are contiguous, never overlap and are returned oldest first.
    The final bucket is the current one, included as-is even though it
    is still in progress.

    Args:
        now: Moment the aggregation is requested for
        period: Bucket width
        window: Number of buckets to return

    Returns:
        Exactly ``window`` buckets

    Raises:
        ValueError: If window is below 1 or period is not a Period
    """
    if window < 1:
        raise ValueError("window must be >= 1")

    current = bucket_for(now, period)
    starts = []
    for offset in range(window - 1, -1, -1):
        if period is Period.DAY:
            starts.append(current.start - timedelta(days=offset))
        elif period is Period.WEEK:
            starts.append(current.start - timedelta(weeks=offset))
        else:
            starts.append(_shift_months(current.start, -offset))

    return [bucket_for(start, period) for start in starts]
