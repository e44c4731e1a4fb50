"""Key schema for the persisted key-value layout.

All keys written by the timetable and catalog services are built here so the
layout stays consistent with what a remote sync or a reader expects.
"""
from __future__ import annotations

from transit_mcp.domain.value_objects import CalendarType, LineKind, RouteToken

# Timetable-day hours that can hold a bucket (04:00 through 03:59 next day)
HOUR_RANGE = range(4, 28)

# Train type token for an entry without one; keeps the per-hour lists aligned
NO_TRAIN_TYPE = "-"

# Older tags that may hold data for the same day type
_ALTERNATE_TAGS: dict[str, tuple[str, ...]] = {
    "weekday": (
        "odpt.Calendar:Weekday",
        "monday", "tuesday", "wednesday", "thursday", "friday",
        "odpt.Calendar:Monday", "odpt.Calendar:Tuesday", "odpt.Calendar:Wednesday",
        "odpt.Calendar:Thursday", "odpt.Calendar:Friday",
    ),
    "holiday": ("odpt.Calendar:Holiday", "sunday", "odpt.Calendar:Sunday"),
    "weekend": ("odpt.Calendar:SaturdayHoliday", "saturdayHoliday"),
    "sunday": ("odpt.Calendar:Sunday",),
    "monday": ("odpt.Calendar:Monday", "weekday", "odpt.Calendar:Weekday"),
    "tuesday": ("odpt.Calendar:Tuesday", "weekday", "odpt.Calendar:Weekday"),
    "wednesday": ("odpt.Calendar:Wednesday", "weekday", "odpt.Calendar:Weekday"),
    "thursday": ("odpt.Calendar:Thursday", "weekday", "odpt.Calendar:Weekday"),
    "friday": ("odpt.Calendar:Friday", "weekday", "odpt.Calendar:Weekday"),
    "saturday": ("odpt.Calendar:Saturday", "saturdayHoliday", "odpt.Calendar:SaturdayHoliday"),
}


def line_name_key(route: RouteToken, line_index: int) -> str:
    return f"{route.value}linename{line_index + 1}"


def _hour(hour: int) -> str:
    return f"{hour:02d}"


def timetable_key(route: RouteToken, calendar: CalendarType, line_index: int, hour: int) -> str:
    """e.g. "go1linename1weekday07": space-joined departure minutes of that hour."""
    return f"{line_name_key(route, line_index)}{calendar.tag()}{_hour(hour)}"


def ride_time_key(route: RouteToken, calendar: CalendarType, line_index: int, hour: int) -> str:
    return f"{timetable_key(route, calendar, line_index, hour)}ridetime"


def train_type_key(route: RouteToken, calendar: CalendarType, line_index: int, hour: int) -> str:
    return f"{timetable_key(route, calendar, line_index, hour)}traintype"


def train_type_list_key(route: RouteToken, calendar: CalendarType, line_index: int) -> str:
    return f"{line_name_key(route, line_index)}{calendar.tag()}traintypelist"


def alternate_timetable_keys(
    route: RouteToken, calendar: CalendarType, line_index: int, hour: int, suffix: str = ""
) -> list[str]:
    """Fallback keys read when the primary bucket for calendar is empty."""
    base = line_name_key(route, line_index)
    return [f"{base}{tag}{_hour(hour)}{suffix}" for tag in _ALTERNATE_TAGS.get(calendar.tag(), ())]


def line_calendar_types_key(route: RouteToken, line_index: int) -> str:
    return f"{route.value}line{line_index + 1}_calendarTypes"


def global_calendar_types_key(line_code: str, kind: LineKind) -> str:
    return f"{line_code}_{kind.name}_calendarTypes"


def operator_line_list_key(route: RouteToken, line_index: int) -> str:
    return f"{route.value}operatorlinelist{line_index + 1}"


def etag_key(cache_key: str) -> str:
    return f"{cache_key}_etag"


def last_modified_key(cache_key: str) -> str:
    return f"{cache_key}_last_modified"
