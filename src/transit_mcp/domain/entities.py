from __future__ import annotations

from dataclasses import dataclass, field

from transit_mcp.domain.exceptions import PreconditionNotMet
from transit_mcp.domain.value_objects import LineKind, RouteToken


@dataclass
class LocalizedTitle:
    """A name in the feed's native language (ja) with an optional English form."""

    ja: str | None = None
    en: str | None = None

    def localized(self, locale: str, fallback: str = "") -> str:
        """Pick the name for locale; non-ja locales prefer English."""
        if locale == "ja":
            name = self.ja or self.en
        else:
            name = self.en or self.ja
        return name or fallback


@dataclass
class Stop:
    """A railway station or bus stop at a fixed position on one line.

    Identity is (line_code, code): the same physical stop id can appear on
    several lines.
    """

    kind: LineKind
    name: str
    code: str  # odpt:station / odpt:busstopPole / GTFS stop_id
    index: int  # 0-based position within the line's stop order
    line_code: str
    title: LocalizedTitle | None = None
    note: str | None = None
    busstop_pole: str | None = None

    def matches(self, stop_id: str | None) -> bool:
        """True when stop_id names this stop by code or by raw pole id."""
        if not stop_id:
            return False
        return stop_id == self.code or (
            self.busstop_pole is not None and stop_id == self.busstop_pole
        )


@dataclass
class Line:
    """A railway line, ODPT bus route pattern, or GTFS route direction."""

    code: str  # unique within operator + kind
    kind: LineKind
    name: str
    operator_code: str | None = None
    title: LocalizedTitle | None = None
    line_color: str | None = None
    line_code: str | None = None
    start_station: str | None = None
    end_station: str | None = None
    destination_station: str | None = None
    ascending_direction: str | None = None  # odpt:ascendingRailDirection
    descending_direction: str | None = None  # odpt:descendingRailDirection
    stop_order: list[Stop] = field(default_factory=list)
    # Bus fields
    bus_title: str | None = None  # dc:title used by odpt:BusTimetable queries
    route_id: str | None = None  # odpt:busroute, or the GTFS route_id
    pattern: str | None = None
    bus_direction: str | None = None
    # GTFS direction variant fields
    headsign: str | None = None
    direction_id: int | None = None
    first_stop_id: str | None = None
    last_stop_id: str | None = None
    # Set when a route has several variants sharing one direction key
    trip_headsign: str | None = None
    match_headsign: bool = False

    @property
    def id(self) -> str:
        return self.code

    @property
    def line_direction(self) -> str | None:
        """Single known rail direction, used when one side is unavailable."""
        return self.ascending_direction or self.descending_direction


@dataclass
class TransportationTime:
    """A departure/arrival pair on one trip, times formatted "HH:MM"."""

    departure_time: str
    arrival_time: str
    ride_time: int  # minutes, always > 0 for synthesized entries

    @property
    def is_valid(self) -> bool:
        return bool(self.departure_time) and bool(self.arrival_time) and self.ride_time > 0


@dataclass
class BusTime(TransportationTime):
    bus_number: str | None = None  # dc:title of the bus timetable
    route_pattern: str | None = None  # odpt:busroutePattern


@dataclass
class TrainTime(TransportationTime):
    train_number: str | None = None
    train_type: str | None = None  # e.g. "odpt.TrainType:TokyoMetro.Local"


@dataclass(frozen=True)
class DirectionInfo:
    """One distinct direction variant of a GTFS route.

    Endpoints are only populated for trips without a direction_id, so that
    they act as the substitute direction key.
    """

    headsign: str | None
    direction_id: int | None
    first_stop_id: str | None = None
    last_stop_id: str | None = None


@dataclass(frozen=True)
class RouteSelector:
    """Identifies the GTFS trips belonging to one derived line."""

    route_id: str
    direction_id: int | None = None
    first_stop_id: str | None = None
    last_stop_id: str | None = None
    headsign: str | None = None
    match_headsign: bool = False  # compare trip headsigns too, a missing one included

    @classmethod
    def from_line(cls, line: Line) -> RouteSelector:
        return cls(
            route_id=line.route_id or line.code,
            direction_id=line.direction_id,
            first_stop_id=line.first_stop_id,
            last_stop_id=line.last_stop_id,
            headsign=line.trip_headsign,
            match_headsign=line.match_headsign,
        )

    @property
    def uses_endpoints(self) -> bool:
        return (
            self.direction_id is None
            and self.first_stop_id is not None
            and self.last_stop_id is not None
        )


@dataclass
class TimetableRequest:
    """The selection a timetable is generated for."""

    route: RouteToken
    line_index: int  # 0-based
    line: Line | None
    departure_stop: Stop | None
    arrival_stop: Stop | None
    ride_time: int = 0  # approximate ride time, used for station timetable estimation

    def validate(self) -> None:
        """Raise PreconditionNotMet unless line and both stops are selected."""
        if self.line is None or self.departure_stop is None or self.arrival_stop is None:
            raise PreconditionNotMet("A line, departure stop and arrival stop must be selected")
        if self.line_index < 0:
            raise PreconditionNotMet(f"Invalid line index: {self.line_index}")
