"""Schema classes for ODPT JSON documents and their mapping to domain records.

Every field read from a document is listed here with its fallback chain;
nothing outside this module indexes raw ODPT dictionaries.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from transit_mcp.domain.entities import Line, LocalizedTitle, Stop
from transit_mcp.domain.exceptions import InvalidDataError
from transit_mcp.domain.services import collapse_destination_suffix
from transit_mcp.domain.value_objects import LineKind
from transit_mcp.infrastructure.time_utils import adjust_for_timetable, parse_hh_mm

logger = logging.getLogger(__name__)

BUS_ROUTE_PATTERN_TYPE = "odpt:BusroutePattern"


def load_json(data: bytes) -> Any:
    try:
        return json.loads(data)
    except ValueError as exc:
        raise InvalidDataError(f"Invalid JSON: {exc}") from exc


def parse_json_array(data: bytes) -> list[dict[str, Any]]:
    """Decode a JSON document as a list of objects.

    A single object is wrapped in a list; any other root yields an empty
    list. Non-object elements are dropped.
    """
    root = load_json(data)
    if isinstance(root, dict):
        return [root]
    if not isinstance(root, list):
        return []
    return [item for item in root if isinstance(item, dict)]


def _str(record: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _int(record: dict[str, Any], key: str) -> int | None:
    value = record.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _title(value: Any) -> LocalizedTitle | None:
    if not isinstance(value, dict):
        return None
    ja = value.get("ja") if isinstance(value.get("ja"), str) else None
    en = value.get("en") if isinstance(value.get("en"), str) else None
    if ja is None and en is None:
        return None
    return LocalizedTitle(ja=ja, en=en)


def _first_str(value: Any) -> str | None:
    """A string, or the first string of a list."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, list):
        for item in value:
            if isinstance(item, str) and item:
                return item
    return None


def code_tail(code: str) -> str:
    """"odpt.Station:TokyoMetro.Ginza.Shibuya" -> "Shibuya"."""
    return code.split(".")[-1]


def _component(code: str | None, position: int) -> str | None:
    if not code:
        return None
    parts = code.split(".")
    return parts[position] if len(parts) > position else None


# ---------------------------------------------------------------------------
# Railway
# ---------------------------------------------------------------------------


@dataclass
class StationOrderDTO:
    station: str
    index: int | None = None
    title: LocalizedTitle | None = None

    @classmethod
    def from_json(cls, record: dict[str, Any]) -> StationOrderDTO | None:
        station = _str(record, "odpt:station")
        if station is None:
            return None
        return cls(station=station, index=_int(record, "odpt:index"), title=_title(record.get("odpt:stationTitle")))

    @property
    def name(self) -> str:
        """Japanese name, then English, then the station code tail."""
        if self.title is not None:
            if self.title.ja:
                return self.title.ja
            if self.title.en:
                return self.title.en
        return code_tail(self.station)


@dataclass
class RailwayDTO:
    title: str
    same_as: str
    operator: str | None = None
    line_code: str | None = None
    color: str | None = None
    railway_title: LocalizedTitle | None = None
    ascending_direction: str | None = None
    descending_direction: str | None = None
    start_station: str | None = None
    end_station: str | None = None
    destination_station: str | None = None
    date: str | None = None
    station_order: list[StationOrderDTO] = field(default_factory=list)

    @classmethod
    def from_json(cls, record: dict[str, Any]) -> RailwayDTO | None:
        title = _str(record, "dc:title")
        same_as = _str(record, "owl:sameAs")
        if title is None or same_as is None:
            return None
        order_raw = record.get("odpt:stationOrder")
        order = [
            dto
            for dto in (
                StationOrderDTO.from_json(item) for item in (order_raw if isinstance(order_raw, list) else [])
                if isinstance(item, dict)
            )
            if dto is not None
        ]
        return cls(
            title=title,
            same_as=same_as,
            operator=_str(record, "odpt:operator"),
            line_code=_str(record, "odpt:lineCode"),
            color=_str(record, "odpt:lineColor", "odpt:color"),
            railway_title=_title(record.get("odpt:railwayTitle")),
            ascending_direction=_str(record, "odpt:ascendingRailDirection"),
            descending_direction=_str(record, "odpt:descendingRailDirection"),
            start_station=_str(record, "odpt:startStation"),
            end_station=_str(record, "odpt:endStation"),
            destination_station=_first_str(record.get("odpt:destinationStation")),
            date=_str(record, "dc:date"),
            station_order=order,
        )

    def to_line(self) -> Line:
        title = self.railway_title
        if title is not None and title.ja:
            title = LocalizedTitle(ja=collapse_destination_suffix(title.ja), en=title.en)
        ordered = sorted(
            enumerate(self.station_order),
            key=lambda pair: (pair[1].index if pair[1].index is not None else pair[0], pair[0]),
        )
        stops = [
            Stop(
                kind=LineKind.RAILWAY,
                name=dto.name,
                code=dto.station,
                index=position,
                line_code=self.same_as,
                title=dto.title,
            )
            for position, (_, dto) in enumerate(ordered)
        ]
        return Line(
            code=self.same_as,
            kind=LineKind.RAILWAY,
            name=collapse_destination_suffix(self.title),
            operator_code=self.operator,
            title=title,
            line_color=self.color,
            line_code=self.line_code,
            start_station=self.start_station,
            end_station=self.end_station,
            destination_station=self.destination_station,
            ascending_direction=self.ascending_direction,
            descending_direction=self.descending_direction,
            stop_order=stops,
        )


def parse_railway_lines(data: bytes) -> list[Line]:
    """Parse an odpt:Railway document. Raises InvalidDataError unless the root is an array."""
    root = load_json(data)
    if not isinstance(root, list):
        raise InvalidDataError("Railway data must be a JSON array")
    lines: list[Line] = []
    for record in root:
        if not isinstance(record, dict):
            continue
        dto = RailwayDTO.from_json(record)
        if dto is None:
            logger.debug("Skipping railway record without dc:title/owl:sameAs")
            continue
        lines.append(dto.to_line())
    return lines


# ---------------------------------------------------------------------------
# Bus route patterns
# ---------------------------------------------------------------------------


@dataclass
class BusstopPoleOrderDTO:
    pole: str
    index: int | None = None
    note: str | None = None

    @classmethod
    def from_json(cls, record: dict[str, Any]) -> BusstopPoleOrderDTO | None:
        pole = _str(record, "odpt:busstopPole")
        if pole is None:
            return None
        return cls(pole=pole, index=_int(record, "odpt:index"), note=_str(record, "odpt:note"))


@dataclass
class BusroutePatternDTO:
    title: str
    same_as: str
    operator: str | None = None
    busroute: str | None = None
    pattern: str | None = None
    direction: str | None = None
    note: str | None = None
    pole_order: list[BusstopPoleOrderDTO] = field(default_factory=list)

    @classmethod
    def from_json(cls, record: dict[str, Any]) -> BusroutePatternDTO | None:
        title = _str(record, "dc:title", "title")
        same_as = _str(record, "owl:sameAs", "odpt:sameAs", "sameAs")
        if title is None or same_as is None:
            return None
        order_raw = record.get("odpt:busstopPoleOrder")
        order = [
            dto
            for dto in (
                BusstopPoleOrderDTO.from_json(item) for item in (order_raw if isinstance(order_raw, list) else [])
                if isinstance(item, dict)
            )
            if dto is not None
        ]
        return cls(
            title=title,
            same_as=same_as,
            operator=_str(record, "odpt:operator"),
            busroute=_str(record, "odpt:busroute"),
            pattern=_str(record, "odpt:pattern"),
            direction=_str(record, "odpt:direction"),
            note=_str(record, "odpt:note"),
            pole_order=order,
        )

    @property
    def english_name(self) -> str | None:
        """Route code component of odpt:busroute when it is romanised."""
        candidate = _component(self.busroute, 2)
        if candidate and any(ch.isascii() and ch.isalnum() for ch in candidate):
            return candidate
        return None

    def to_line(self) -> Line:
        ordered = sorted(
            enumerate(self.pole_order),
            key=lambda pair: (pair[1].index if pair[1].index is not None else pair[0], pair[0]),
        )
        stops = [
            Stop(
                kind=LineKind.BUS,
                name=dto.note or code_tail(dto.pole),
                code=dto.pole,
                index=position,
                line_code=self.same_as,
                title=LocalizedTitle(ja=dto.note, en=_component(dto.pole, 2)),
                note=dto.note,
                busstop_pole=dto.pole,
            )
            for position, (_, dto) in enumerate(ordered)
        ]
        return Line(
            code=self.same_as,
            kind=LineKind.BUS,
            name=self.title,
            operator_code=self.operator,
            title=LocalizedTitle(ja=self.title, en=self.english_name),
            route_id=self.busroute,
            pattern=self.pattern,
            bus_direction=self.direction,
            bus_title=self.title,
            stop_order=stops,
        )


def parse_bus_lines(data: bytes) -> list[Line]:
    """Parse an odpt:BusroutePattern document; records of any other @type are dropped."""
    lines: list[Line] = []
    for record in parse_json_array(data):
        if record.get("@type") != BUS_ROUTE_PATTERN_TYPE:
            continue
        dto = BusroutePatternDTO.from_json(record)
        if dto is None:
            continue
        lines.append(dto.to_line())
    return lines


def parse_lines(data: bytes, kind: LineKind) -> list[Line]:
    if kind == LineKind.RAILWAY:
        return parse_railway_lines(data)
    return parse_bus_lines(data)


# ---------------------------------------------------------------------------
# Timetables
# ---------------------------------------------------------------------------


@dataclass
class StopEvent:
    """One stop of a trip: the station/pole with its departure and arrival times."""

    stop: str | None
    departure_time: str | None = None
    arrival_time: str | None = None
    arrival_stop: str | None = None  # odpt:arrivalStation, when distinct from departureStation


@dataclass
class TripTimetable:
    """An odpt:BusTimetable or odpt:TrainTimetable record."""

    events: list[StopEvent]
    title: str | None = None  # dc:title (bus number)
    route_pattern: str | None = None
    calendar: str | None = None
    train_number: str | None = None
    train_type: str | None = None


def _objects(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    return []


def parse_bus_timetables(data: bytes) -> list[TripTimetable]:
    result: list[TripTimetable] = []
    for record in parse_json_array(data):
        events = [
            StopEvent(
                stop=_str(obj, "odpt:busstopPole"),
                departure_time=_str(obj, "odpt:departureTime"),
                arrival_time=_str(obj, "odpt:arrivalTime"),
            )
            for obj in _objects(record.get("odpt:busTimetableObject"))
        ]
        result.append(
            TripTimetable(
                events=events,
                title=_str(record, "dc:title"),
                route_pattern=_str(record, "odpt:busroutePattern"),
                calendar=_str(record, "odpt:calendar"),
            )
        )
    return result


def parse_train_timetables(data: bytes) -> list[TripTimetable]:
    """Parse odpt:TrainTimetable records; records without train number or type are dropped."""
    result: list[TripTimetable] = []
    for record in parse_json_array(data):
        train_number = _str(record, "odpt:trainNumber")
        train_type = _str(record, "odpt:trainType")
        if train_number is None or train_type is None:
            continue
        events = [
            StopEvent(
                stop=_str(obj, "odpt:departureStation"),
                departure_time=_str(obj, "odpt:departureTime"),
                arrival_time=_str(obj, "odpt:arrivalTime"),
                arrival_stop=_str(obj, "odpt:arrivalStation"),
            )
            for obj in _objects(record.get("odpt:trainTimetableObject"))
        ]
        result.append(
            TripTimetable(
                events=events,
                calendar=_str(record, "odpt:calendar"),
                train_number=train_number,
                train_type=train_type,
            )
        )
    return result


def collect_calendars(data: bytes) -> set[str]:
    """Distinct odpt:calendar values across a timetable document."""
    return {
        calendar
        for calendar in (_str(record, "odpt:calendar") for record in parse_json_array(data))
        if calendar is not None
    }


@dataclass
class StationDeparture:
    departure_time: str  # "HH:MM", hours 0-3 shifted to 24-27
    train_number: str = ""
    train_type: str = ""
    destination_station: str = ""


def parse_station_timetable(data: bytes) -> list[StationDeparture]:
    """Departures of the first odpt:StationTimetable record, sorted by time."""
    records = parse_json_array(data)
    if not records:
        return []
    departures: list[StationDeparture] = []
    for obj in _objects(records[0].get("odpt:stationTimetableObject")):
        parsed = parse_hh_mm(_str(obj, "odpt:departureTime"))
        if parsed is None:
            continue
        departures.append(
            StationDeparture(
                departure_time=adjust_for_timetable(*parsed),
                train_number=_str(obj, "odpt:trainNumber") or "",
                train_type=_str(obj, "odpt:trainType") or "",
                destination_station=_first_str(obj.get("odpt:destinationStation")) or "",
            )
        )
    departures.sort(key=lambda d: d.departure_time)
    return departures
