from __future__ import annotations

import dataclasses
import json
import logging

from mcp import types
from mcp.server.fastmcp import FastMCP

from transit_mcp.application.catalog_service import LineCatalog
from transit_mcp.application.timetable_service import TimetableSynthesizer
from transit_mcp.application.timetable_store import TimetableRepository
from transit_mcp.domain.entities import Line, Stop, TimetableRequest, TransportationTime
from transit_mcp.domain.exceptions import InvalidDataError, NetworkError, TransitError, UnknownOperatorError
from transit_mcp.domain.value_objects import CALENDAR_PREFIX, CalendarType, LineKind, RouteToken
from transit_mcp.infrastructure.operators import find_operator
from transit_mcp.infrastructure.settings import Settings
from transit_mcp.infrastructure.time_utils import format_time

logger = logging.getLogger(__name__)

_RESULT_URI = "mcp://transit-mcp/result"


def _as_resource(json_str: str) -> list[types.EmbeddedResource]:
    """Wrap a JSON string as an embedded resource so the LLM does not narrate it."""
    return [
        types.EmbeddedResource(
            type="resource",
            resource=types.TextResourceContents(
                uri=_RESULT_URI,  # type: ignore[arg-type]
                mimeType="application/json",
                text=json_str,
            ),
        )
    ]


def _error_json(message: str) -> str:
    return json.dumps({"error": message}, ensure_ascii=False)


def _handle_exception(exc: Exception) -> list[types.EmbeddedResource]:
    if isinstance(exc, UnknownOperatorError):
        return _as_resource(_error_json(str(exc)))
    if isinstance(exc, NetworkError):
        if exc.status_code is None:
            return _as_resource(_error_json("Upstream request failed. Please try again."))
        if exc.status_code in (401, 403):
            return _as_resource(_error_json("Access denied by the ODPT API. Check the consumer key."))
        if exc.status_code == 404:
            return _as_resource(_error_json("Resource not found."))
        if exc.status_code >= 500:
            return _as_resource(
                _error_json(f"Upstream API error ({exc.status_code}). Please try again later.")
            )
        return _as_resource(_error_json(str(exc)))
    if isinstance(exc, InvalidDataError):
        return _as_resource(_error_json(f"Unusable upstream data: {exc}"))
    if isinstance(exc, TransitError):
        return _as_resource(_error_json(str(exc)))
    if isinstance(exc, ValueError):
        return _as_resource(_error_json(str(exc)))
    logger.exception("Unexpected error in MCP tool: %s", exc)
    return _as_resource(_error_json("An unexpected error occurred."))


def _parse_kind(kind: str) -> LineKind:
    for member in LineKind:
        if kind.strip().lower() == member.value.lower():
            return member
    raise ValueError(f"Unknown line kind: {kind} (expected Railway or Bus)")


def _parse_route(route: str) -> RouteToken:
    try:
        return RouteToken(route.strip().lower())
    except ValueError:
        raise ValueError(f"Unknown route: {route} (expected back1, go1, back2 or go2)")


def _parse_calendar(value: str) -> CalendarType:
    raw = value.strip()
    if not raw.startswith(CALENDAR_PREFIX):
        raw = CALENDAR_PREFIX + raw
    calendar = CalendarType.from_raw(raw)
    if calendar is None:
        raise ValueError(f"Unknown calendar type: {value}")
    return calendar


def _find_stop(stops: list[Stop], value: str) -> Stop:
    needle = value.strip()
    for stop in stops:
        if stop.matches(needle) or stop.name == needle:
            return stop
    raise ValueError(f"Stop not found on line: {value}")


def _line_summary(line: Line, locale: str) -> dict:  # type: ignore[type-arg]
    return {
        "code": line.code,
        "name": line.title.localized(locale, line.name) if line.title else line.name,
        "kind": line.kind.value,
        "operator": line.operator_code,
        "color": line.line_color,
        "stopCount": len(line.stop_order) or None,
    }


def _stop_summary(stop: Stop, locale: str) -> dict:  # type: ignore[type-arg]
    return {
        "code": stop.code,
        "name": stop.title.localized(locale, stop.name) if stop.title else stop.name,
        "index": stop.index,
    }


def _time_entry(item: TransportationTime) -> dict:  # type: ignore[type-arg]
    entry = {k: v for k, v in dataclasses.asdict(item).items() if v is not None}
    entry["departureClock"] = format_time(item.departure_time)
    entry["arrivalClock"] = format_time(item.arrival_time)
    return entry


def register_tools(
    mcp: FastMCP,
    catalog: LineCatalog,
    synthesizer: TimetableSynthesizer,
    repository: TimetableRepository,
    settings: Settings,
) -> None:
    """Bind all @mcp.tool decorators. Called once during server setup."""

    @mcp.tool()
    async def list_lines(
        kind: str = "Railway",
        operator: str | None = None,
        query: str | None = None,
    ) -> list[types.EmbeddedResource]:
        """List railway lines or bus routes known for the supported operators.

        Args:
            kind: "Railway" or "Bus".
            operator: Optional operator key, code or name, e.g. "TOKYO_METRO".
            query: Optional case-insensitive substring filter on line name or code.
        """
        try:
            line_kind = _parse_kind(kind)
            op = find_operator(operator) if operator else None
            lines = await catalog.get_lines(line_kind, operator=op)
            if query:
                needle = query.strip().lower()
                lines = [
                    line for line in lines
                    if needle in line.name.lower() or needle in line.code.lower()
                ]
            result = {
                "kind": line_kind.value,
                "lines": [_line_summary(line, settings.locale) for line in lines],
                "count": len(lines),
            }
            return _as_resource(json.dumps(result, default=str, ensure_ascii=False))
        except Exception as exc:
            return _handle_exception(exc)

    @mcp.tool()
    async def list_stops(
        line_code: str,
        kind: str = "Railway",
    ) -> list[types.EmbeddedResource]:
        """List the stops of a line in travel order.

        Args:
            line_code: Line code from list_lines.
            kind: "Railway" or "Bus".
        """
        try:
            if not line_code.strip():
                return _as_resource(_error_json("line_code cannot be empty"))
            line = await catalog.find_line(line_code.strip(), _parse_kind(kind))
            if line is None:
                return _as_resource(_error_json(f"Line not found: {line_code}"))
            stops = await catalog.get_stops(line)
            result = {
                "line": _line_summary(line, settings.locale),
                "stops": [_stop_summary(stop, settings.locale) for stop in stops],
                "count": len(stops),
            }
            return _as_resource(json.dumps(result, default=str, ensure_ascii=False))
        except Exception as exc:
            return _handle_exception(exc)

    @mcp.tool()
    async def generate_timetable(
        route: str,
        line_index: int,
        line_code: str,
        kind: str,
        departure_stop: str,
        arrival_stop: str,
        ride_time: int = 0,
        refresh_calendar_types: bool = False,
    ) -> list[types.EmbeddedResource]:
        """Build and store the timetable between two stops of a line, per calendar type.

        Args:
            route: Route slot the timetable is stored under: back1, go1, back2 or go2.
            line_index: 0-based line number within the route slot.
            line_code: Line code from list_lines.
            kind: "Railway" or "Bus".
            departure_stop: Departure stop code or name.
            arrival_stop: Arrival stop code or name.
            ride_time: Approximate ride time in minutes, used when only station
                       timetables are published for the line.
            refresh_calendar_types: Rediscover calendar types instead of using the cached set.
        """
        try:
            token = _parse_route(route)
            if line_index < 0:
                return _as_resource(_error_json("line_index must be 0 or greater"))
            line = await catalog.find_line(line_code.strip(), _parse_kind(kind))
            if line is None:
                return _as_resource(_error_json(f"Line not found: {line_code}"))
            stops = await catalog.get_stops(line)
            departure = _find_stop(stops, departure_stop)
            arrival = _find_stop(stops, arrival_stop)

            request = TimetableRequest(
                route=token,
                line_index=line_index,
                line=line,
                departure_stop=departure,
                arrival_stop=arrival,
                ride_time=ride_time,
            )
            timetables = await synthesizer.generate(request, refresh_calendar_types=refresh_calendar_types)
            repository.save_line_selection(token, line_index, line.name, line.code)

            result = {
                "route": token.value,
                "lineIndex": line_index,
                "line": _line_summary(line, settings.locale),
                "departureStop": _stop_summary(departure, settings.locale),
                "arrivalStop": _stop_summary(arrival, settings.locale),
                "timetables": {
                    str(calendar): [_time_entry(t) for t in times]
                    for calendar, times in timetables.items()
                },
                "count": sum(len(times) for times in timetables.values()),
            }
            return _as_resource(json.dumps(result, default=str, ensure_ascii=False))
        except Exception as exc:
            return _handle_exception(exc)

    @mcp.tool()
    async def get_timetable(
        route: str,
        line_index: int,
        calendar: str | None = None,
    ) -> list[types.EmbeddedResource]:
        """Read a stored timetable back.

        Args:
            route: Route slot: back1, go1, back2 or go2.
            line_index: 0-based line number within the route slot.
            calendar: Optional calendar, e.g. "Weekday" or "odpt.Calendar:SaturdayHoliday".
                      All stored calendars when omitted.
        """
        try:
            token = _parse_route(route)
            if calendar:
                calendars = [_parse_calendar(calendar)]
            else:
                calendars = repository.load_line_calendar_types(token, line_index)
            timetables = {}
            for cal in calendars:
                timetables[str(cal)] = {
                    "entries": [_time_entry(t) for t in repository.load_times(token, line_index, cal)],
                    "trainTypes": repository.train_types(token, line_index, cal),
                }
            result = {"route": token.value, "lineIndex": line_index, "timetables": timetables}
            return _as_resource(json.dumps(result, default=str, ensure_ascii=False))
        except Exception as exc:
            return _handle_exception(exc)

    @mcp.tool()
    async def check_updates(
        kind: str = "Railway",
    ) -> list[types.EmbeddedResource]:
        """Revalidate cached line data and GTFS feeds; reports the operators that changed.

        Args:
            kind: "Railway" or "Bus".
        """
        try:
            updated = await catalog.check_for_updates(_parse_kind(kind))
            result = {
                "updated": [op.key for op in updated],
                "count": len(updated),
            }
            return _as_resource(json.dumps(result, default=str, ensure_ascii=False))
        except Exception as exc:
            return _handle_exception(exc)
