from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class LineKind(str, Enum):
    """Transportation line kind.

    Using (str, Enum) for Python 3.10 compatibility (StrEnum requires 3.11+).
    """

    RAILWAY = "Railway"
    BUS = "Bus"


class ApiType(str, Enum):
    """Which ODPT endpoint family serves an operator's data."""

    PUBLIC = "public"  # api-public.odpt.org, no key
    STANDARD = "standard"  # api.odpt.org, access token
    CHALLENGE = "challenge"  # api-challenge.odpt.org, challenge token
    GTFS = "gtfs"  # GTFS ZIP feed instead of the JSON API


class DataType(str, Enum):
    """Logical data set requested from an operator."""

    LINE = "line"
    TIMETABLE = "timetable"
    STOP_TIMETABLE = "stop_timetable"
    STOP = "stop"

    def endpoint(self, kind: LineKind) -> str:
        """Return the ODPT API resource name for this data set and line kind."""
        if kind == LineKind.RAILWAY:
            return _RAILWAY_ENDPOINTS[self]
        return _BUS_ENDPOINTS[self]


_RAILWAY_ENDPOINTS = {
    DataType.LINE: "odpt:Railway",
    DataType.TIMETABLE: "odpt:TrainTimetable",
    DataType.STOP_TIMETABLE: "odpt:StationTimetable",
    DataType.STOP: "odpt:Railway",
}

_BUS_ENDPOINTS = {
    DataType.LINE: "odpt:BusroutePattern",
    DataType.TIMETABLE: "odpt:BusTimetable",
    DataType.STOP_TIMETABLE: "odpt:BusTimetable",
    DataType.STOP: "odpt:BusstopPole",
}


class RouteToken(str, Enum):
    """Route-direction namespace used in persisted keys."""

    BACK1 = "back1"
    GO1 = "go1"
    BACK2 = "back2"
    GO2 = "go2"


CALENDAR_PREFIX = "odpt.Calendar:"
SPECIFIC_PREFIX = "odpt.Calendar:Specific."

_STANDARD_NAMES = (
    "Weekday",
    "Holiday",
    "SaturdayHoliday",
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)

# Trailing identifier codes used by operator-specific calendars, e.g.
# "odpt.Calendar:Specific.Toei.81-170"
_SPECIFIC_SUFFIX_DISPLAY = {
    "100": "Holiday",
    "109": "Holiday",
    "160": "Saturday",
    "170": "Weekday",
    "179": "Weekday",
}


@dataclass(frozen=True)
class CalendarType:
    """A day-type classification under which a distinct timetable applies.

    Either one of the fixed ODPT calendars (``odpt.Calendar:Weekday`` ...) or an
    operator-defined ``odpt.Calendar:Specific.*`` calendar. The raw value is
    what the API expects; ``display_type()`` gives the coarse type used to
    merge variants.
    """

    raw_value: str

    @classmethod
    def from_raw(cls, raw_value: str) -> CalendarType | None:
        """Return the calendar for a raw ODPT value, or None when unknown."""
        if raw_value.startswith(CALENDAR_PREFIX):
            name = raw_value[len(CALENDAR_PREFIX):]
            if name in _STANDARD_NAMES:
                return cls(raw_value)
        if raw_value.startswith(SPECIFIC_PREFIX):
            return cls(raw_value)
        return None

    @classmethod
    def standard(cls, name: str) -> CalendarType:
        if name not in _STANDARD_NAMES:
            raise ValueError(f"Unknown calendar type: {name}")
        return cls(CALENDAR_PREFIX + name)

    @property
    def is_specific(self) -> bool:
        return self.raw_value.startswith(SPECIFIC_PREFIX)

    @property
    def name(self) -> str:
        """Short name: "Weekday", "SaturdayHoliday", ... or "Specific"."""
        if self.is_specific:
            return "Specific"
        return self.raw_value[len(CALENDAR_PREFIX):]

    def display_type(self) -> CalendarType:
        """Map a Specific calendar onto a standard one; standard types map to themselves."""
        if not self.is_specific:
            return self
        last = self.raw_value.split(".")[-1]
        if last in ("Weekday", "Saturday", "Holiday"):
            return CalendarType.standard(last)
        if "-" in last:
            suffix = last.rsplit("-", 1)[-1]
        elif "_" in last:
            suffix = last.rsplit("_", 1)[-1]
        else:
            suffix = last
        return CalendarType.standard(_SPECIFIC_SUFFIX_DISPLAY.get(suffix, "Weekday"))

    def tag(self) -> str:
        """Calendar component used in persisted timetable keys."""
        if self.is_specific:
            return self.raw_value.split(".")[-1].lower()
        display = self.display_type()
        if display == SATURDAY_HOLIDAY:
            return "weekend"
        return display.name.lower()

    def __str__(self) -> str:
        return self.raw_value


WEEKDAY = CalendarType.standard("Weekday")
HOLIDAY = CalendarType.standard("Holiday")
SATURDAY_HOLIDAY = CalendarType.standard("SaturdayHoliday")
SUNDAY = CalendarType.standard("Sunday")
SATURDAY = CalendarType.standard("Saturday")

STANDARD_CALENDAR_TYPES: tuple[CalendarType, ...] = tuple(
    CalendarType.standard(name) for name in _STANDARD_NAMES
)

# Used whenever no calendar information can be discovered for a line
DEFAULT_CALENDAR_TYPES: tuple[CalendarType, ...] = (WEEKDAY, SATURDAY_HOLIDAY)
