from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from transit_mcp.domain.entities import BusTime, DirectionInfo, Line, LocalizedTitle, RouteSelector, Stop
from transit_mcp.domain.exceptions import InvalidDataError
from transit_mcp.domain.services import (
    collapse_destination_suffix,
    direction_code,
    direction_sort_key,
    ride_time,
    split_long_name,
    time_to_minutes,
    to_halfwidth,
)
from transit_mcp.domain.value_objects import DEFAULT_CALENDAR_TYPES, SATURDAY_HOLIDAY, WEEKDAY, CalendarType, LineKind
from transit_mcp.infrastructure.csv_reader import Row, iter_csv, parse_csv
from transit_mcp.infrastructure.time_utils import normalize_gtfs_time

logger = logging.getLogger(__name__)

NATIVE_LANGUAGE = "ja"

_WEEKDAY_COLUMNS = ("monday", "tuesday", "wednesday", "thursday", "friday")
_WEEKEND_COLUMNS = ("saturday", "sunday")


class Translator:
    """Lookup over translations.txt for one locale.

    Keys are ``table|field|record_id`` and ``table|field|field_value``; the
    locale's own language wins over the English fallback. For the feed's
    native language no table is loaded and text passes through untranslated.
    Every result is normalised to halfwidth digits and letters.
    """

    def __init__(self, rows: Iterable[Row], locale: str) -> None:
        self.locale = locale
        self._table: dict[str, str] = {}
        if locale == NATIVE_LANGUAGE:
            return
        languages = ["en"] if locale == "en" else [locale, "en"]
        for row in rows:
            table = row.get("table_name")
            field_name = row.get("field_name")
            language = row.get("language")
            translation = row.get("translation")
            if not table or not field_name or not language or not translation:
                continue
            if language not in languages:
                continue
            for ref in (row.get("record_id"), row.get("field_value")):
                if not ref:
                    continue
                key = f"{table}|{field_name}|{ref}"
                if language == locale or key not in self._table:
                    self._table[key] = translation

    def __len__(self) -> int:
        return len(self._table)

    def translate(self, original: str, table: str, field_name: str, record_id: str | None = None) -> str:
        """record_id entry, then field_value entry, then the original text."""
        result = original
        if self._table:
            by_record = self._table.get(f"{table}|{field_name}|{record_id}") if record_id else None
            by_value = self._table.get(f"{table}|{field_name}|{original}")
            result = by_record or by_value or original
        return to_halfwidth(result)


@dataclass
class TripRow:
    trip_id: str
    route_id: str
    service_id: str | None
    direction_id: int | None
    headsign: str | None


def _parse_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def trip_endpoints(rows: Iterable[Row], trip_ids: set[str] | None = None) -> dict[str, tuple[str, str]]:
    """Map trip_id -> (first stop_id, last stop_id) by stop_sequence.

    Only the current extremes are kept per trip, so memory is bounded by the
    number of trips regardless of how many stop_times rows are streamed.
    """
    extremes: dict[str, list] = {}  # type: ignore[type-arg]
    for row in rows:
        trip_id = row.get("trip_id")
        stop_id = row.get("stop_id")
        sequence = _parse_int(row.get("stop_sequence"))
        if not trip_id or not stop_id or sequence is None:
            continue
        if trip_ids is not None and trip_id not in trip_ids:
            continue
        current = extremes.get(trip_id)
        if current is None:
            extremes[trip_id] = [sequence, stop_id, sequence, stop_id]
            continue
        if sequence < current[0]:
            current[0], current[1] = sequence, stop_id
        if sequence >= current[2]:
            current[2], current[3] = sequence, stop_id
    return {trip_id: (v[1], v[3]) for trip_id, v in extremes.items()}


class GtfsFeed:
    """Read access to one extracted GTFS feed directory.

    Small tables (routes, trips, stops, translations, calendar) are parsed in
    bulk and memoised; stop_times.txt is always streamed. All methods are
    blocking and meant to run in a worker thread.
    """

    def __init__(self, directory: Path, locale: str = NATIVE_LANGUAGE) -> None:
        self.directory = Path(directory)
        self.locale = locale
        self._tables: dict[str, list[Row]] = {}
        self._translator: Translator | None = None

    # -- tables -------------------------------------------------------------

    def has_table(self, name: str) -> bool:
        return (self.directory / name).is_file()

    def table(self, name: str) -> list[Row]:
        """Bulk-parse a small table. Raises InvalidDataError when it is missing."""
        if name not in self._tables:
            path = self.directory / name
            if not path.is_file():
                raise InvalidDataError(f"GTFS table missing: {name}")
            self._tables[name] = parse_csv(path.read_bytes(), name)
        return self._tables[name]

    def optional_table(self, name: str) -> list[Row]:
        return self.table(name) if self.has_table(name) else []

    def stop_times(self) -> Iterable[Row]:
        path = self.directory / "stop_times.txt"
        if not path.is_file():
            return iter(())
        return iter_csv(path)

    @property
    def translator(self) -> Translator:
        if self._translator is None:
            rows: list[Row] = []
            if self.locale != NATIVE_LANGUAGE:
                try:
                    rows = self.optional_table("translations.txt")
                except InvalidDataError as exc:
                    logger.warning("Ignoring unusable translations.txt in %s: %s", self.directory, exc)
            self._translator = Translator(rows, self.locale)
        return self._translator

    def trips(self) -> list[TripRow]:
        result: list[TripRow] = []
        for row in self.table("trips.txt"):
            trip_id = row.get("trip_id")
            route_id = row.get("route_id")
            if not trip_id or not route_id:
                continue
            result.append(
                TripRow(
                    trip_id=trip_id,
                    route_id=route_id,
                    service_id=row.get("service_id") or None,
                    direction_id=_parse_int(row.get("direction_id")),
                    headsign=row.get("trip_headsign") or None,
                )
            )
        return result

    def stop_names(self) -> dict[str, str]:
        """stop_id -> localized stop name."""
        names: dict[str, str] = {}
        for row in self.optional_table("stops.txt"):
            stop_id = row.get("stop_id")
            name = row.get("stop_name")
            if stop_id and name is not None:
                names[stop_id] = self.translator.translate(name, "stops", "stop_name", stop_id)
        return names

    # -- lines --------------------------------------------------------------

    def direction_variants(self) -> dict[str, set[DirectionInfo]]:
        """Distinct direction variants per route_id.

        Trips without a direction_id are keyed by their first/last stop ids,
        so stop_times.txt is streamed once when any such trip exists.
        """
        trips = self.trips()
        needs_endpoints = {t.trip_id for t in trips if t.direction_id is None}
        endpoints = trip_endpoints(self.stop_times(), needs_endpoints) if needs_endpoints else {}
        variants: dict[str, set[DirectionInfo]] = {}
        for trip in trips:
            headsign = self._trip_headsign(trip)
            first = last = None
            if trip.direction_id is None and trip.trip_id in endpoints:
                first, last = endpoints[trip.trip_id]
            variants.setdefault(trip.route_id, set()).add(
                DirectionInfo(headsign=headsign, direction_id=trip.direction_id, first_stop_id=first, last_stop_id=last)
            )
        return variants

    def _trip_headsign(self, trip: TripRow) -> str | None:
        if not trip.headsign:
            return None
        return self.translator.translate(trip.headsign, "trips", "trip_headsign", trip.trip_id)

    def derive_lines(self, operator_code: str | None = None) -> list[Line]:
        """Build one Line per route direction variant.

        Routes without any name are dropped. Variants of one route sharing a
        direction key (a loop starting and ending at the same stop, or one
        direction_id with several headsigns) get the headsign appended to
        their code and select trips by headsign as well. A code repeating one
        from an earlier route is skipped.
        """
        variants = self.direction_variants()
        names = self.stop_names() if any(variants.values()) else {}
        lines: list[Line] = []
        seen_codes: set[str] = set()
        for route in self.table("routes.txt"):
            route_id = route.get("route_id")
            if not route_id:
                continue
            directions = sorted(variants.get(route_id, set()), key=direction_sort_key)
            if not directions:
                candidates = [self._build_line(route, route_id, None, operator_code)]
            else:
                key_counts = Counter(direction_code(direction) for direction in directions)
                candidates = [
                    self._build_line(
                        route, route_id, direction, operator_code, names,
                        split_by_headsign=key_counts[direction_code(direction)] > 1,
                    )
                    for direction in directions
                ]
            for line in candidates:
                if line is None:
                    continue
                if line.code in seen_codes:
                    logger.debug("Skipping duplicate GTFS line code %s", line.code)
                    continue
                seen_codes.add(line.code)
                lines.append(line)
        logger.info("Derived %d GTFS lines from %s", len(lines), self.directory.name)
        return lines

    def _build_line(
        self,
        route: Row,
        route_id: str,
        direction: DirectionInfo | None,
        operator_code: str | None,
        stop_names: dict[str, str] | None = None,
        split_by_headsign: bool = False,
    ) -> Line | None:
        translate = self.translator.translate
        short_name = route.get("route_short_name") or None
        long_name = route.get("route_long_name") or None
        if short_name:
            short_name = translate(short_name, "routes", "route_short_name", route_id)
        if long_name:
            long_name = translate(long_name, "routes", "route_long_name", route_id)
        base_name = short_name or long_name
        if not base_name:
            return None

        headsign: str | None = None
        if direction is not None:
            headsign = direction.headsign
            if not headsign and direction.last_stop_id and stop_names:
                headsign = stop_names.get(direction.last_stop_id)

        departure: str | None = None
        destination: str | None = None
        if headsign:
            destination = headsign
        else:
            departure, destination = split_long_name(long_name)

        prefix, suffix = self._destination_affixes()
        if headsign or (short_name and destination):
            label = f"{destination}{suffix}".replace("行 行", "行").replace("行行", "行")
            name = f"{base_name}{prefix}{label}"
        else:
            name = base_name
        name = collapse_destination_suffix(to_halfwidth(name))

        code = route_id
        if direction is not None:
            parts = [direction_code(direction)]
            if split_by_headsign:
                parts.append(direction.headsign)
            key = "|".join(part for part in parts if part)
            if key:
                code = f"{route_id}_{key}"

        return Line(
            code=code,
            kind=LineKind.BUS,
            name=name,
            operator_code=operator_code,
            title=LocalizedTitle(ja=name),
            line_color=route.get("route_color") or None,
            start_station=departure,
            end_station=destination,
            destination_station=destination,
            route_id=route_id,
            headsign=headsign,
            direction_id=direction.direction_id if direction else None,
            first_stop_id=direction.first_stop_id if direction else None,
            last_stop_id=direction.last_stop_id if direction else None,
            trip_headsign=direction.headsign if direction and split_by_headsign else None,
            match_headsign=split_by_headsign,
        )

    def _destination_affixes(self) -> tuple[str, str]:
        if self.locale == NATIVE_LANGUAGE:
            return " ", "行"
        return " for ", ""

    # -- route selection ----------------------------------------------------

    def trips_for(self, selector: RouteSelector) -> list[TripRow]:
        """Trips of the selected route, narrowed by headsign, then by direction_id or endpoints."""
        trips = [t for t in self.trips() if t.route_id == selector.route_id]
        if selector.match_headsign:
            trips = [t for t in trips if self._trip_headsign(t) == selector.headsign]
        if selector.direction_id is not None:
            return [t for t in trips if t.direction_id == selector.direction_id]
        if selector.uses_endpoints:
            ids = {t.trip_id for t in trips}
            endpoints = trip_endpoints(self.stop_times(), ids)
            wanted = (selector.first_stop_id, selector.last_stop_id)
            return [t for t in trips if endpoints.get(t.trip_id) == wanted]
        return trips

    def stops_for_route(self, selector: RouteSelector) -> list[Stop]:
        """Stop order of a representative trip (the second when several exist)."""
        trips = self.trips_for(selector)
        if not trips:
            return []
        chosen = trips[1] if len(trips) > 1 else trips[0]
        sequence: list[tuple[int, str]] = []
        for row in self.stop_times():
            if row.get("trip_id") != chosen.trip_id:
                continue
            stop_id = row.get("stop_id")
            seq = _parse_int(row.get("stop_sequence"))
            if stop_id and seq is not None:
                sequence.append((seq, stop_id))
        sequence.sort(key=lambda pair: pair[0])
        names = self.stop_names()
        stops: list[Stop] = []
        for _, stop_id in sequence:
            name = names.get(stop_id)
            if name is None:
                continue
            stops.append(
                Stop(
                    kind=LineKind.BUS,
                    name=name,
                    code=stop_id,
                    index=len(stops),
                    line_code=selector.route_id,
                    title=LocalizedTitle(ja=name),
                    note=name,
                    busstop_pole=stop_id,
                )
            )
        return stops

    # -- calendars and timetables -------------------------------------------

    def calendar_types(self) -> list[CalendarType]:
        """Weekday and/or SaturdayHoliday, depending on which days calendar.txt serves."""
        rows = self.optional_table("calendar.txt")
        result: list[CalendarType] = []
        if any(any(r.get(c) == "1" for c in _WEEKDAY_COLUMNS) for r in rows):
            result.append(WEEKDAY)
        if any(any(r.get(c) == "1" for c in _WEEKEND_COLUMNS) for r in rows):
            result.append(SATURDAY_HOLIDAY)
        return result or list(DEFAULT_CALENDAR_TYPES)

    def service_ids(self, calendar: CalendarType) -> set[str]:
        """Services running on the calendar's days; empty means "do not filter"."""
        columns = _WEEKDAY_COLUMNS if calendar.display_type() == WEEKDAY else _WEEKEND_COLUMNS
        return {
            row["service_id"]
            for row in self.optional_table("calendar.txt")
            if row.get("service_id") and any(row.get(c) == "1" for c in columns)
        }

    def timetable_for_route(
        self,
        selector: RouteSelector,
        departure_stop_id: str,
        arrival_stop_id: str,
        calendar: CalendarType,
    ) -> list[BusTime]:
        """Departure/arrival pairs for trips of the route serving both stops.

        The stop_time with the lowest stop_sequence at each stop counts, in
        whatever order the file lists them; trips arriving at or before their
        departure are dropped.
        """
        trips = self.trips_for(selector)
        services = self.service_ids(calendar)
        if services:
            trips = [t for t in trips if t.service_id in services]
        if not trips:
            return []
        trip_ids = {t.trip_id for t in trips}
        departures: dict[str, tuple[int, str]] = {}
        arrivals: dict[str, tuple[int, str]] = {}
        for row in self.stop_times():
            trip_id = row.get("trip_id")
            if trip_id not in trip_ids:
                continue
            sequence = _parse_int(row.get("stop_sequence"))
            if sequence is None:
                continue
            stop_id = row.get("stop_id")
            dep = normalize_gtfs_time(row.get("departure_time"))
            arr = normalize_gtfs_time(row.get("arrival_time"))
            if stop_id == departure_stop_id:
                _keep_earliest(departures, trip_id, sequence, dep or arr)
            elif stop_id == arrival_stop_id:
                _keep_earliest(arrivals, trip_id, sequence, arr or dep)

        result: list[BusTime] = []
        for trip_id in trip_ids:
            if trip_id not in departures or trip_id not in arrivals:
                continue
            dep_time = departures[trip_id][1]
            arr_time = arrivals[trip_id][1]
            minutes = ride_time(dep_time, arr_time)
            if minutes is None:
                continue
            result.append(BusTime(departure_time=dep_time, arrival_time=arr_time, ride_time=minutes))
        result.sort(key=lambda t: (time_to_minutes(t.departure_time) or 0, time_to_minutes(t.arrival_time) or 0))
        return result


def _keep_earliest(found: dict[str, tuple[int, str]], trip_id: str, sequence: int, value: str | None) -> None:
    if not value:
        return
    current = found.get(trip_id)
    if current is None or sequence < current[0]:
        found[trip_id] = (sequence, value)
