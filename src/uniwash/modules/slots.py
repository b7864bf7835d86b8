""" The slot catalog lists the (weekday, start, end) triples a device may be
reserved in. It is a closed enumeration, a reservation is either aligned to
one of its slots or it is invalid.

Weekdays follow python's convention, Monday is 0 and Sunday is 6. The
reservation options served over HTTP count from Sunday instead, see
:meth:`SlotCatalog.as_options`.

"""
from __future__ import annotations

from datetime import datetime, time, timedelta
from types import MappingProxyType

from uniwash.modules import utils


from typing import Any
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Mapping
    from datetime import date
    from sedate.types import TzInfoOrName


WEEKDAYS = range(7)


def sunday_based(weekday: int) -> int:
    """ Returns the given python weekday counted from Sunday (0). """
    return (weekday + 1) % 7


class Slot(NamedTuple):
    weekday: int
    start: time
    end: time

    @property
    def id(self) -> str:
        return f'{sunday_based(self.weekday)}-{self.start:%H%M}'

    @property
    def ends_next_day(self) -> bool:
        return self.end == utils.MIDNIGHT

    def overlaps(self, other: Slot) -> bool:
        return (
            self.weekday == other.weekday
            and utils.minute_of_day(self.start)
            < utils.minute_of_day(other.end, is_end=True)
            and utils.minute_of_day(other.start)
            < utils.minute_of_day(self.end, is_end=True)
        )

    def resolve(
        self,
        day: date,
        timezone: TzInfoOrName
    ) -> tuple[datetime, datetime]:
        """ Returns the UTC instants of this slot on the given local day. """
        if day.weekday() != self.weekday:
            raise ValueError(f'{day} is not on weekday {self.weekday}')

        return utils.resolve_span(day, self.start, self.end, timezone)

    def as_option(self) -> dict[str, str]:
        return {
            'id': self.id,
            'from': self.start.strftime('%H:%M:%S'),
            'to': self.end.strftime('%H:%M:%S'),
        }


class SlotCatalog:
    """ An immutable table of slots per weekday.

    Each weekday's slots are sorted by start and must not overlap. A
    weekday without slots cannot be reserved at all.

    """

    def __init__(
        self,
        table: Mapping[int, Iterable[tuple[time | str, time | str]]]
    ):
        slots: dict[int, tuple[Slot, ...]] = {}

        for weekday in WEEKDAYS:
            day = sorted(
                (
                    Slot(weekday, utils.as_time(s), utils.as_time(e))
                    for s, e in table.get(weekday, ())
                ),
                key=lambda slot: utils.minute_of_day(slot.start)
            )

            for previous, current in zip(day, day[1:]):
                if previous.overlaps(current):
                    raise ValueError(
                        f'Overlapping slots: {previous} and {current}')

            for slot in day:
                if utils.minute_of_day(slot.end, is_end=True) \
                        <= utils.minute_of_day(slot.start):
                    raise ValueError(f'Slot ends before it starts: {slot}')

            slots[weekday] = tuple(day)

        self._slots = MappingProxyType(slots)

    def __repr__(self) -> str:
        count = sum(len(s) for s in self._slots.values())
        return f'<SlotCatalog with {count} slots>'

    @classmethod
    def regular(
        cls,
        first: time,
        last: time,
        step: timedelta,
        weekdays: Iterable[int] = WEEKDAYS
    ) -> SlotCatalog:
        """ Creates a catalog with the same contiguous grid on each of the
        given weekdays, starting at ``first`` and ending at ``last``
        (00:00 meaning midnight).

        """
        minutes = int(step.total_seconds() // 60)
        if minutes < 1:
            raise ValueError(f'Invalid step: {step}')

        grid = []
        start = utils.minute_of_day(first)
        stop = utils.minute_of_day(last, is_end=True)

        while start + minutes <= stop:
            end = start + minutes
            grid.append((
                (datetime.min + timedelta(minutes=start)).time(),
                (datetime.min + timedelta(minutes=end)).time()
            ))
            start = end

        return cls({weekday: grid for weekday in weekdays})

    @classmethod
    def hourly(cls) -> SlotCatalog:
        """ A catalog of 24 one-hour slots a day, the last one ending at
        midnight.

        """
        return cls.regular(time(0), utils.MIDNIGHT, timedelta(hours=1))

    def slots_for(self, weekday: int) -> tuple[Slot, ...]:
        return self._slots.get(weekday, ())

    def find(
        self,
        weekday: int,
        start: time | str,
        end: time | str
    ) -> Slot | None:
        try:
            start, end = utils.as_time(start), utils.as_time(end)
        except ValueError:
            return None

        for slot in self.slots_for(weekday):
            if slot.start == start and slot.end == end:
                return slot

        return None

    def is_valid(
        self,
        weekday: int,
        start: time | str,
        end: time | str
    ) -> bool:
        return self.find(weekday, start, end) is not None

    def as_options(self) -> dict[int, list[dict[str, Any]]]:
        """ Renders the catalog as served to clients. The weekdays (and the
        ids of the slots) count from Sunday, which is 0.

        """
        return {
            sunday_based(weekday): [slot.as_option() for slot in slots]
            for weekday, slots in self._slots.items()
        }


DEFAULT_CATALOG = SlotCatalog.regular(
    first=time(7, 0),
    last=time(23, 30),
    step=timedelta(minutes=90)
)
