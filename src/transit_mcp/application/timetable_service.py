from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from transit_mcp.application.gtfs_pipeline import GTFSPipeline
from transit_mcp.application.timetable_store import TimetableRepository
from transit_mcp.domain.entities import (
    BusTime,
    Line,
    RouteSelector,
    Stop,
    TimetableRequest,
    TrainTime,
    TransportationTime,
)
from transit_mcp.domain.exceptions import PreconditionNotMet, TransitError
from transit_mcp.domain.services import (
    calendar_types_or_default,
    estimate_pairs,
    merge_calendar_variants,
    pick_shorter_direction,
    process_calendar_types,
    ride_time,
    sort_times,
)
from transit_mcp.domain.value_objects import STANDARD_CALENDAR_TYPES, CalendarType, DataType, LineKind, RouteToken
from transit_mcp.infrastructure.fetcher import ConditionalFetcher
from transit_mcp.infrastructure.odpt_parser import (
    StationDeparture,
    StopEvent,
    code_tail,
    collect_calendars,
    parse_bus_timetables,
    parse_station_timetable,
    parse_train_timetables,
)
from transit_mcp.infrastructure.operators import Operator, api_link, find_operator, query_value
from transit_mcp.infrastructure.settings import Settings
from transit_mcp.infrastructure.time_utils import add_minutes

logger = logging.getLogger(__name__)


class TimetableSynthesizer:
    """Builds the per-calendar timetable between two stops and persists it.

    The data source depends on the operator: GTFS feeds, ODPT bus
    timetables, ODPT train timetables, or an estimate from two station
    timetables when the operator publishes no train timetables.
    Generations for the same (route, line index) are serialised.
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        gtfs: GTFSPipeline,
        repository: TimetableRepository,
        settings: Settings,
    ) -> None:
        self._fetcher = fetcher
        self._gtfs = gtfs
        self._repository = repository
        self._settings = settings
        self._locks: dict[tuple[RouteToken, int], asyncio.Lock] = {}

    def _lock(self, route: RouteToken, line_index: int) -> asyncio.Lock:
        key = (route, line_index)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def generate(
        self,
        request: TimetableRequest,
        refresh_calendar_types: bool = False,
    ) -> dict[CalendarType, list[TransportationTime]]:
        """Generate, merge and store the timetable for every calendar type of the line.

        Steps:
        1. Validate the selection; an incomplete one yields {} without I/O.
        2. Resolve the calendar types (cached per line code unless refreshed).
        3. Fetch every calendar concurrently; a failing calendar contributes
           an empty timetable instead of aborting the run.
        4. Merge calendars sharing a display type under one representative,
           clear every stale bucket and write the final timetables.

        Raises UnknownOperatorError when the line's operator is not known.
        """
        try:
            request.validate()
        except PreconditionNotMet as exc:
            logger.info("Skipping timetable generation: %s", exc)
            return {}
        line = request.line
        assert line is not None
        operator = find_operator(line.operator_code or "")

        async with self._lock(request.route, request.line_index):
            previous = self._repository.load_line_calendar_types(request.route, request.line_index)
            calendars = await self.calendar_types(operator, request, refresh=refresh_calendar_types)
            results = await asyncio.gather(
                *(self._times_for_calendar(operator, request, calendar) for calendar in calendars)
            )
            times_by_calendar = dict(zip(calendars, results))
            merged, merged_sources = merge_calendar_variants(calendars, times_by_calendar)

            stale = set(STANDARD_CALENDAR_TYPES)
            stale.update(previous)
            stale.update(calendars)
            stale.update(merged_sources)
            await asyncio.to_thread(self._persist, request, stale, merged)

        logger.info(
            "Generated %s line %d timetable for %s: %s",
            request.route.value,
            request.line_index + 1,
            line.code,
            ", ".join(f"{c}={len(t)}" for c, t in merged.items()),
        )
        return merged

    def _persist(
        self,
        request: TimetableRequest,
        stale: set[CalendarType],
        merged: dict[CalendarType, list[TransportationTime]],
    ) -> None:
        """Clear stale buckets and write the merged timetables as one store write."""
        with self._repository.batch():
            for calendar in stale:
                self._repository.clear(request.route, request.line_index, calendar)
            for calendar, times in merged.items():
                self._repository.save(request.route, request.line_index, calendar, times)
            self._repository.save_line_calendar_types(request.route, request.line_index, merged.keys())

    # ------------------------------------------------------------------
    # Calendar types
    # ------------------------------------------------------------------

    async def calendar_types(
        self,
        operator: Operator,
        request: TimetableRequest,
        refresh: bool = False,
    ) -> list[CalendarType]:
        """Calendar types the line's timetable is published for.

        Discovery failures fall back to Weekday + SaturdayHoliday. The result
        is stored under the line code and under the (route, line index).
        """
        line = request.line
        assert line is not None
        if refresh:
            self._repository.clear_global_calendar_types(line.code, line.kind)
            self._repository.clear_line_calendar_types(request.route, request.line_index)
        else:
            cached = self._repository.load_global_calendar_types(line.code, line.kind)
            if cached:
                self._repository.save_line_calendar_types(request.route, request.line_index, cached)
                return cached

        try:
            if operator.is_gtfs:
                discovered = await self._gtfs.calendar_types(operator)
                raw_values: set[str] = {c.raw_value for c in discovered}
            elif line.kind == LineKind.BUS:
                raw_values = await self._bus_calendars(operator, line)
            else:
                raw_values = await self._rail_calendars(operator, line, request.departure_stop)
        except TransitError as exc:
            logger.warning("Calendar discovery failed for %s: %s", line.code, exc)
            raw_values = set()

        calendars = calendar_types_or_default(process_calendar_types(raw_values))
        self._repository.save_global_calendar_types(line.code, line.kind, calendars)
        self._repository.save_line_calendar_types(request.route, request.line_index, calendars)
        return calendars

    async def _bus_calendars(self, operator: Operator, line: Line) -> set[str]:
        url = api_link(operator, DataType.TIMETABLE, self._settings)
        url += f"&dc:title={query_value(line.bus_title or line.name)}"
        return collect_calendars(await self._get(url))

    async def _rail_calendars(self, operator: Operator, line: Line, departure: Stop | None) -> set[str]:
        """Calendars on the departure station timetable, ascending direction first."""
        if departure is None:
            return set()
        last_error: TransitError | None = None
        for direction in _rail_directions(line):
            url = self._station_timetable_url(operator, departure, direction)
            try:
                found = collect_calendars(await self._get(url))
            except TransitError as exc:
                logger.debug("Station timetable lookup failed for %s: %s", departure.code, exc)
                last_error = exc
                continue
            if found:
                return found
        if last_error is not None:
            raise last_error
        return set()

    # ------------------------------------------------------------------
    # Per-calendar timetables
    # ------------------------------------------------------------------

    async def _times_for_calendar(
        self,
        operator: Operator,
        request: TimetableRequest,
        calendar: CalendarType,
    ) -> list[TransportationTime]:
        line = request.line
        departure = request.departure_stop
        arrival = request.arrival_stop
        assert line is not None and departure is not None and arrival is not None
        try:
            if operator.is_gtfs:
                gtfs_times = await self._gtfs.timetable_for_route(
                    operator, RouteSelector.from_line(line), departure.code, arrival.code, calendar
                )
                return list(gtfs_times)
            if line.kind == LineKind.BUS:
                return await self._bus_times(operator, line, departure, arrival, calendar)
            return await self._rail_times(operator, request, calendar)
        except TransitError as exc:
            logger.warning("Timetable for %s %s unavailable: %s", line.code, calendar, exc)
            return []

    async def _bus_times(
        self,
        operator: Operator,
        line: Line,
        departure: Stop,
        arrival: Stop,
        calendar: CalendarType,
    ) -> list[TransportationTime]:
        url = api_link(operator, DataType.TIMETABLE, self._settings)
        url += f"&dc:title={query_value(line.bus_title or line.name)}&odpt:calendar={calendar.raw_value}"
        result: list[TransportationTime] = []
        for trip in parse_bus_timetables(await self._get(url)):
            dep = _first_time(trip.events, departure.matches, prefer_departure=True)
            arr = _first_time(trip.events, arrival.matches, prefer_departure=False)
            if dep is None or arr is None:
                continue
            minutes = ride_time(dep, arr)
            if minutes is None:
                continue
            result.append(BusTime(dep, arr, minutes, bus_number=trip.title, route_pattern=trip.route_pattern))
        return sort_times(result)

    async def _rail_times(
        self,
        operator: Operator,
        request: TimetableRequest,
        calendar: CalendarType,
    ) -> list[TransportationTime]:
        """Query both rail directions and keep the one with the shorter mean ride."""
        line = request.line
        assert line is not None
        directions = _rail_directions(line)

        results: list[list[TransportationTime]] = []
        for direction in directions:
            try:
                if operator.has_train_timetable:
                    times = await self._train_times(operator, request, calendar, direction)
                else:
                    times = await self._estimated_times(operator, request, calendar, direction)
            except TransitError as exc:
                logger.warning("Direction %s of %s unavailable: %s", direction, line.code, exc)
                times = []
            results.append(times)
        return pick_shorter_direction(results)

    async def _train_times(
        self,
        operator: Operator,
        request: TimetableRequest,
        calendar: CalendarType,
        direction: str | None,
    ) -> list[TransportationTime]:
        line, departure, arrival = request.line, request.departure_stop, request.arrival_stop
        assert line is not None and departure is not None and arrival is not None
        url = api_link(operator, DataType.TIMETABLE, self._settings)
        url += f"&odpt:railway={line.code}&odpt:calendar={calendar.raw_value}"
        if direction:
            url += f"&odpt:railDirection={direction}"

        result: list[TransportationTime] = []
        for trip in parse_train_timetables(await self._get(url)):
            dep = _first_time(trip.events, lambda code: code == departure.code, prefer_departure=True)
            arr = _arrival_time(trip.events, arrival.code)
            if dep is None or arr is None:
                continue
            minutes = ride_time(dep, arr)
            if minutes is None:
                continue
            result.append(
                TrainTime(dep, arr, minutes, train_number=trip.train_number, train_type=trip.train_type)
            )
        return sort_times(result)

    async def _estimated_times(
        self,
        operator: Operator,
        request: TimetableRequest,
        calendar: CalendarType,
        direction: str | None,
    ) -> list[TransportationTime]:
        """Estimate trips from the departure and arrival station timetables.

        Per train type, departures whose destination is the arrival station
        ride the approximate time; the remaining departures are paired with
        arrival-station times near the approximate ride time.
        """
        line, departure, arrival = request.line, request.departure_stop, request.arrival_stop
        assert line is not None and departure is not None and arrival is not None
        approx = request.ride_time
        if approx <= 0:
            logger.info("No approximate ride time for %s; cannot estimate trips", line.code)
            return []

        dep_data, arr_data = await asyncio.gather(
            self._get(self._station_timetable_url(operator, departure, direction, calendar)),
            self._get(self._station_timetable_url(operator, arrival, direction, calendar)),
        )
        departures = parse_station_timetable(dep_data)
        arrivals = parse_station_timetable(arr_data)

        result: list[TransportationTime] = []
        for train_type in sorted({d.train_type for d in departures}):
            typed = [d for d in departures if d.train_type == train_type]
            typed_arrivals = [a for a in arrivals if a.train_type == train_type]

            through: list[StationDeparture] = []
            for dep in typed:
                if dep.destination_station == arrival.code:
                    arrives = add_minutes(dep.departure_time, approx)
                    if arrives is not None:
                        result.append(
                            TrainTime(
                                dep.departure_time, arrives, approx,
                                train_number=dep.train_number or None,
                                train_type=train_type or None,
                            )
                        )
                elif dep.train_number or _reaches(line, dep.destination_station, departure, arrival):
                    through.append(dep)

            destinations = {d.destination_station for d in through}
            candidates = [a.departure_time for a in typed_arrivals if a.destination_station in destinations]
            for dep_time, arr_time, minutes in estimate_pairs(
                [d.departure_time for d in through], candidates, approx
            ):
                result.append(TrainTime(dep_time, arr_time, minutes, train_type=train_type or None))
        return sort_times(result)

    # ------------------------------------------------------------------

    def _station_timetable_url(
        self,
        operator: Operator,
        station: Stop,
        direction: str | None,
        calendar: CalendarType | None = None,
    ) -> str:
        url = api_link(operator, DataType.STOP_TIMETABLE, self._settings)
        url += f"&odpt:station={station.code}"
        if direction:
            url += f"&odpt:railDirection={direction}"
        if calendar is not None:
            url += f"&odpt:calendar={calendar.raw_value}"
        return url

    async def _get(self, url: str) -> bytes:
        response = await self._fetcher.fetch(url)
        response.raise_for_status()
        return response.content


def _rail_directions(line: Line) -> list[str | None]:
    """Both rail directions, ascending first; else the single known one, or None for no filter."""
    if line.ascending_direction and line.descending_direction:
        if line.ascending_direction == line.descending_direction:
            return [line.ascending_direction]
        return [line.ascending_direction, line.descending_direction]
    return [line.line_direction]


def _first_time(
    events: list[StopEvent],
    matches: Callable[[str | None], bool],
    prefer_departure: bool,
) -> str | None:
    """Time at the first event whose stop matches; the departure side for a boarding stop."""
    for event in events:
        if not matches(event.stop):
            continue
        if prefer_departure:
            value = event.departure_time or event.arrival_time
        else:
            value = event.arrival_time or event.departure_time
        if value:
            return value
    return None


def _arrival_time(events: list[StopEvent], station: str) -> str | None:
    """Arrival at station: an explicit odpt:arrivalStation wins over a departure record."""
    for event in events:
        if event.arrival_stop == station:
            value = event.arrival_time or event.departure_time
            if value:
                return value
    return _first_time(events, lambda code: code == station, prefer_departure=False)


def _reaches(line: Line, destination: str, departure: Stop, arrival: Stop) -> bool:
    """False when a train terminates strictly between the departure and arrival stops.

    Only destinations on this line are checked; anything that cannot be
    placed on the stop order is assumed to run through.
    """
    line_component = _line_component(line.code)
    if not destination or not line_component or line_component not in destination:
        return True
    tail = code_tail(destination)
    index = next(
        (stop.index for stop in line.stop_order if stop.code == destination or stop.name == tail),
        None,
    )
    if index is None:
        return True
    low, high = sorted((departure.index, arrival.index))
    return not (low < index < high)


def _line_component(code: str) -> str | None:
    """"odpt.Railway:Yurikamome.Yurikamome" -> "Yurikamome" (third dotted component)."""
    parts = code.split(".")
    return parts[2] if len(parts) > 2 else None
