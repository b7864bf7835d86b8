from __future__ import annotations

import pytest

from datetime import date, datetime, time, timedelta, timezone

from uniwash.modules.slots import DEFAULT_CATALOG, WEEKDAYS, Slot, SlotCatalog


def test_default_catalog() -> None:
    for weekday in WEEKDAYS:
        slots = DEFAULT_CATALOG.slots_for(weekday)

        assert len(slots) == 11
        assert slots[0] == Slot(weekday, time(7, 0), time(8, 30))
        assert slots[1] == Slot(weekday, time(8, 30), time(10, 0))
        assert slots[-1] == Slot(weekday, time(22, 0), time(23, 30))


def test_slots_are_sorted_and_do_not_overlap() -> None:
    for catalog in (DEFAULT_CATALOG, SlotCatalog.hourly()):
        for weekday in WEEKDAYS:
            slots = catalog.slots_for(weekday)

            for previous, current in zip(slots, slots[1:]):
                assert previous.start < current.start
                assert not previous.overlaps(current)

    # restartable
    assert DEFAULT_CATALOG.slots_for(5) == DEFAULT_CATALOG.slots_for(5)


def test_is_valid() -> None:
    assert DEFAULT_CATALOG.is_valid(5, time(8, 30), time(10, 0))
    assert DEFAULT_CATALOG.is_valid(5, '08:30', '10:00')
    assert DEFAULT_CATALOG.is_valid(5, '08:30:00', '10:00:00')

    assert not DEFAULT_CATALOG.is_valid(5, '08:45', '10:15')
    assert not DEFAULT_CATALOG.is_valid(5, '08:30', '11:30')
    assert not DEFAULT_CATALOG.is_valid(5, '23:30', '00:00')
    assert not DEFAULT_CATALOG.is_valid(5, 'eight', 'ten')
    assert not DEFAULT_CATALOG.is_valid(7, '08:30', '10:00')


def test_hourly_catalog_ends_at_midnight() -> None:
    catalog = SlotCatalog.hourly()

    slots = catalog.slots_for(0)
    assert len(slots) == 24
    assert slots[-1] == Slot(0, time(23, 0), time(0, 0))
    assert slots[-1].ends_next_day
    assert catalog.is_valid(0, '23:00', '00:00')


def test_resolve_slot() -> None:
    slot = DEFAULT_CATALOG.find(5, '08:30', '10:00')
    assert slot is not None

    start, end = slot.resolve(date(2025, 3, 15), 'Asia/Tehran')
    assert start == datetime(2025, 3, 15, 5, 0, tzinfo=timezone.utc)
    assert end == datetime(2025, 3, 15, 6, 30, tzinfo=timezone.utc)

    with pytest.raises(ValueError):
        slot.resolve(date(2025, 3, 16), 'Asia/Tehran')


def test_resolve_slot_ending_at_midnight() -> None:
    slot = Slot(5, time(23, 0), time(0, 0))

    start, end = slot.resolve(date(2025, 3, 15), 'UTC')
    assert end - start == timedelta(hours=1)
    assert end == datetime(2025, 3, 16, 0, 0, tzinfo=timezone.utc)


def test_custom_catalog() -> None:
    catalog = SlotCatalog({
        0: [('10:00', '12:00'), ('08:00', '10:00')],
        6: [(time(20, 0), time(0, 0))],
    })

    assert [s.start for s in catalog.slots_for(0)] == [time(8), time(10)]
    assert catalog.slots_for(1) == ()
    assert catalog.is_valid(6, '20:00', '00:00')


def test_invalid_catalogs() -> None:
    with pytest.raises(ValueError):
        SlotCatalog({0: [('08:00', '10:00'), ('09:00', '11:00')]})

    with pytest.raises(ValueError):
        SlotCatalog({0: [('10:00', '08:00')]})

    with pytest.raises(ValueError):
        SlotCatalog.regular(time(8), time(20), timedelta(seconds=30))


def test_as_options() -> None:
    options = DEFAULT_CATALOG.as_options()

    assert sorted(options) == list(WEEKDAYS)
    # saturday, counted from sunday
    assert options[6][1] == {
        'id': '6-0830',
        'from': '08:30:00',
        'to': '10:00:00'
    }


def test_as_options_count_from_sunday() -> None:
    catalog = SlotCatalog({
        0: [('08:00', '10:00')],
        6: [('20:00', '22:00')],
    })

    assert catalog.as_options() == {
        0: [{'id': '0-2000', 'from': '20:00:00', 'to': '22:00:00'}],
        1: [{'id': '1-0800', 'from': '08:00:00', 'to': '10:00:00'}],
        2: [],
        3: [],
        4: [],
        5: [],
        6: [],
    }
