"""Interval arithmetic shared by availability checks."""

import re
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

MINUTES_PER_DAY = 24 * 60
OVERLAP_SEARCH_WINDOW = timedelta(days=1)

_TIME_OF_DAY_PATTERN = re.compile(r'^(\d{2}):(\d{2})$')


def overlaps(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Half-open interval overlap: ``[start1, end1)`` against ``[start2, end2)``."""
    return start1 < end2 and start2 < end1


def appointment_end(scheduled_at: datetime, duration_minutes: int) -> datetime:
    return scheduled_at + timedelta(minutes=duration_minutes)


def day_of_week(moment: datetime) -> int:
    """Weekday with Sunday as 0 and Saturday as 6."""
    return moment.isoweekday() % 7


def parse_time_of_day(value: str) -> int:
    """Convert ``HH:MM`` into minutes after midnight. ``24:00`` is accepted as end of day."""
    match = _TIME_OF_DAY_PATTERN.match(value.strip()) if value else None
    if not match:
        raise ValueError(f'Invalid time of day: {value!r}. Expected HH:MM.')

    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if minutes >= 60 or total > MINUTES_PER_DAY:
        raise ValueError(f'Invalid time of day: {value!r}.')

    return total


def minute_offsets(scheduled_at: datetime, duration_minutes: int) -> tuple[int, int]:
    # The end offset is measured from the start day's midnight, so a session
    # running past midnight ends beyond MINUTES_PER_DAY.
    start_offset = scheduled_at.hour * 60 + scheduled_at.minute
    return start_offset, start_offset + duration_minutes


def fits_within(scheduled_at: datetime, duration_minutes: int, open_time: str, close_time: str) -> bool:
    start_offset, end_offset = minute_offsets(scheduled_at, duration_minutes)
    return parse_time_of_day(open_time) <= start_offset and end_offset <= parse_time_of_day(close_time)


def to_clinic_time(moment: datetime, timezone_name: str) -> datetime:
    """Normalize a timestamp to naive clinic wall-clock time."""
    if moment.tzinfo is None:
        return moment.replace(second=0, microsecond=0)
    localized = moment.astimezone(ZoneInfo(timezone_name))
    return localized.replace(tzinfo=None, second=0, microsecond=0)


def clinic_now(timezone_name: str) -> datetime:
    """Current clinic wall-clock time, independent of the server's local zone."""
    return to_clinic_time(datetime.now(timezone.utc), timezone_name)
