from __future__ import annotations

import sedate

from datetime import date, datetime, time, timedelta
from dateutil.parser import isoparse


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sedate.types import TzInfoOrName


MIDNIGHT = time(0, 0)


def as_date(value: date | str) -> date:
    """ Accepts dates and ISO 8601 strings ('2025-03-15'). """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return isoparse(value).date()


def as_time(value: time | str) -> time:
    """ Accepts times and 'HH:MM' / 'HH:MM:SS' strings. """
    if isinstance(value, time):
        return value
    return time.fromisoformat(value.strip())


def minute_of_day(value: time, is_end: bool = False) -> int:
    """ Returns the minutes passed since midnight. An end of 00:00 denotes
    the midnight of the next day.

    """
    minutes = value.hour * 60 + value.minute
    if is_end and minutes == 0:
        return 24 * 60
    return minutes


def resolve_span(
    day: date,
    start: time,
    end: time,
    timezone: TzInfoOrName
) -> tuple[datetime, datetime]:
    """ Turns a local date and a pair of wall-clock times into UTC instants.

    The end falls on the next day if it isn't after the start, which is
    how a slot ending at 00:00 is expressed.

    """
    end_day = day
    if minute_of_day(end) <= minute_of_day(start):
        end_day = day + timedelta(days=1)

    return (
        sedate.standardize_date(datetime.combine(day, start), timezone),
        sedate.standardize_date(datetime.combine(end_day, end), timezone)
    )


def local_day(
    day: date,
    timezone: TzInfoOrName
) -> tuple[datetime, datetime]:
    """ Returns the UTC instants at which the given local day starts and
    the next one begins.

    """
    return resolve_span(day, MIDNIGHT, MIDNIGHT, timezone)


def truncate_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)
