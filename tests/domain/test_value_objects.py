"""Tests for calendar types and the small enums."""
from __future__ import annotations

import pytest

from transit_mcp.domain.value_objects import (
    HOLIDAY,
    SATURDAY,
    SATURDAY_HOLIDAY,
    SUNDAY,
    WEEKDAY,
    CalendarType,
    DataType,
    LineKind,
)


def test_from_raw_accepts_standard_and_specific() -> None:
    assert CalendarType.from_raw("odpt.Calendar:Weekday") == WEEKDAY
    specific = CalendarType.from_raw("odpt.Calendar:Specific.Toei.81-170")
    assert specific is not None
    assert specific.is_specific
    assert specific.name == "Specific"


def test_from_raw_drops_unknown_values() -> None:
    assert CalendarType.from_raw("odpt.Calendar:Funday") is None
    assert CalendarType.from_raw("Weekday") is None


def test_standard_rejects_unknown_name() -> None:
    with pytest.raises(ValueError):
        CalendarType.standard("Funday")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("odpt.Calendar:Specific.Toei.81-100", HOLIDAY),
        ("odpt.Calendar:Specific.Toei.81-109", HOLIDAY),
        ("odpt.Calendar:Specific.Toei.81-160", SATURDAY),
        ("odpt.Calendar:Specific.Toei.81-170", WEEKDAY),
        ("odpt.Calendar:Specific.Toei.81_179", WEEKDAY),
        ("odpt.Calendar:Specific.Toei.81-999", WEEKDAY),
        ("odpt.Calendar:Specific.Keio.Holiday", HOLIDAY),
        ("odpt.Calendar:Specific.Keio.Saturday", SATURDAY),
    ],
)
def test_specific_display_type(raw: str, expected: CalendarType) -> None:
    calendar = CalendarType.from_raw(raw)
    assert calendar is not None
    assert calendar.display_type() == expected


def test_standard_display_type_is_itself() -> None:
    assert SUNDAY.display_type() == SUNDAY
    assert SATURDAY_HOLIDAY.display_type() == SATURDAY_HOLIDAY


def test_tags() -> None:
    assert WEEKDAY.tag() == "weekday"
    assert HOLIDAY.tag() == "holiday"
    assert SATURDAY_HOLIDAY.tag() == "weekend"
    assert CalendarType("odpt.Calendar:Specific.Toei.81-170").tag() == "81-170"


def test_str_is_raw_value() -> None:
    assert str(WEEKDAY) == "odpt.Calendar:Weekday"


def test_data_type_endpoints() -> None:
    assert DataType.LINE.endpoint(LineKind.RAILWAY) == "odpt:Railway"
    assert DataType.LINE.endpoint(LineKind.BUS) == "odpt:BusroutePattern"
    assert DataType.TIMETABLE.endpoint(LineKind.RAILWAY) == "odpt:TrainTimetable"
    assert DataType.STOP_TIMETABLE.endpoint(LineKind.RAILWAY) == "odpt:StationTimetable"
    assert DataType.STOP_TIMETABLE.endpoint(LineKind.BUS) == "odpt:BusTimetable"
    assert DataType.STOP.endpoint(LineKind.BUS) == "odpt:BusstopPole"
