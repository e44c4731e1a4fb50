"""Tests for MCP tool functions — input validation, success and error paths."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from transit_mcp.application.catalog_service import LineCatalog
from transit_mcp.application.timetable_service import TimetableSynthesizer
from transit_mcp.application.timetable_store import TimetableRepository
from transit_mcp.domain.entities import BusTime, Line, LocalizedTitle, Stop, TrainTime
from transit_mcp.domain.exceptions import InvalidDataError, NetworkError, UnknownOperatorError
from transit_mcp.domain.value_objects import SATURDAY_HOLIDAY, WEEKDAY, LineKind, RouteToken
from transit_mcp.infrastructure.kv_store import MemoryKeyValueStore
from transit_mcp.infrastructure.operators import find_operator
from transit_mcp.infrastructure.settings import Settings
from transit_mcp.mcp.tools import _parse_calendar, _parse_kind, _parse_route, register_tools

GINZA = "odpt.Railway:TokyoMetro.Ginza"


def make_line() -> Line:
    stops = [
        Stop(
            kind=LineKind.RAILWAY,
            name=name,
            code=f"odpt.Station:TokyoMetro.Ginza.{en}",
            index=i,
            line_code=GINZA,
            title=LocalizedTitle(ja=name, en=en),
        )
        for i, (name, en) in enumerate([("渋谷", "Shibuya"), ("表参道", "Omotesando"), ("銀座", "Ginza")])
    ]
    return Line(
        code=GINZA,
        kind=LineKind.RAILWAY,
        name="銀座線",
        operator_code="odpt.Operator:TokyoMetro",
        title=LocalizedTitle(ja="銀座線", en="Ginza Line"),
        line_color="#FF9500",
        stop_order=stops,
    )


def make_catalog(lines: list[Line] | None = None) -> MagicMock:
    lines = lines if lines is not None else [make_line()]
    catalog = MagicMock(spec=LineCatalog)
    catalog.get_lines = AsyncMock(return_value=lines)

    def find_line(code: str, kind: LineKind) -> Line | None:
        return next((line for line in lines if line.code == code), None)

    catalog.find_line = AsyncMock(side_effect=find_line)
    catalog.get_stops = AsyncMock(side_effect=lambda line: list(line.stop_order))
    catalog.check_for_updates = AsyncMock(return_value=[])
    return catalog


def build_tool_functions(
    catalog: MagicMock,
    synthesizer: MagicMock | None = None,
    repository: TimetableRepository | None = None,
    settings: Settings | None = None,
) -> dict:  # type: ignore[type-arg]
    """Register tools on a mock MCP and extract the tool functions."""
    registered: dict = {}  # type: ignore[type-arg]

    class MockMcp:
        def tool(self, meta: dict | None = None):  # type: ignore[type-arg]
            def decorator(fn):  # type: ignore[type-arg]
                registered[fn.__name__] = fn
                return fn
            return decorator

    register_tools(
        MockMcp(),  # type: ignore[arg-type]
        catalog,
        synthesizer or MagicMock(spec=TimetableSynthesizer),
        repository or TimetableRepository(MemoryKeyValueStore()),
        settings or Settings(),
    )
    return registered


def parse(result: list) -> dict:  # type: ignore[type-arg]
    return json.loads(result[0].resource.text)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def test_parse_kind_case_insensitive() -> None:
    assert _parse_kind("bus") == LineKind.BUS
    assert _parse_kind(" Railway ") == LineKind.RAILWAY


def test_parse_kind_invalid_raises() -> None:
    with pytest.raises(ValueError, match="Unknown line kind: Ferry"):
        _parse_kind("Ferry")


def test_parse_route() -> None:
    assert _parse_route("GO2") == RouteToken.GO2
    with pytest.raises(ValueError, match="Unknown route"):
        _parse_route("go3")


def test_parse_calendar_adds_prefix() -> None:
    assert _parse_calendar("Weekday") == WEEKDAY
    assert _parse_calendar("odpt.Calendar:SaturdayHoliday") == SATURDAY_HOLIDAY
    with pytest.raises(ValueError, match="Unknown calendar type"):
        _parse_calendar("Someday")


# ---------------------------------------------------------------------------
# list_lines / list_stops
# ---------------------------------------------------------------------------

async def test_list_lines_returns_resource() -> None:
    tools = build_tool_functions(make_catalog())
    parsed = parse(await tools["list_lines"]())
    assert parsed["count"] == 1
    assert parsed["lines"][0]["code"] == GINZA
    assert parsed["lines"][0]["name"] == "銀座線"
    assert parsed["lines"][0]["stopCount"] == 3


async def test_list_lines_english_locale_and_query() -> None:
    other = Line(code="odpt.Railway:TokyoMetro.Hibiya", kind=LineKind.RAILWAY, name="日比谷線")
    tools = build_tool_functions(make_catalog([make_line(), other]), settings=Settings(locale="en"))
    parsed = parse(await tools["list_lines"]("Railway", None, "ginza"))
    assert parsed["count"] == 1
    assert parsed["lines"][0]["name"] == "Ginza Line"


async def test_list_lines_resolves_operator() -> None:
    catalog = make_catalog()
    tools = build_tool_functions(catalog)
    await tools["list_lines"]("Railway", "TOKYO_METRO")
    assert catalog.get_lines.call_args.kwargs["operator"] == find_operator("TOKYO_METRO")


async def test_list_lines_unknown_operator_returns_error() -> None:
    tools = build_tool_functions(make_catalog())
    parsed = parse(await tools["list_lines"]("Railway", "Nowhere Rail"))
    assert "Unknown operator" in parsed["error"]


async def test_list_stops_in_order() -> None:
    tools = build_tool_functions(make_catalog())
    parsed = parse(await tools["list_stops"](GINZA))
    assert [s["name"] for s in parsed["stops"]] == ["渋谷", "表参道", "銀座"]
    assert parsed["line"]["code"] == GINZA


async def test_list_stops_empty_code_returns_error() -> None:
    tools = build_tool_functions(make_catalog())
    parsed = parse(await tools["list_stops"]("  "))
    assert "error" in parsed


async def test_list_stops_unknown_line_returns_error() -> None:
    tools = build_tool_functions(make_catalog())
    parsed = parse(await tools["list_stops"]("odpt.Railway:TokyoMetro.Nowhere"))
    assert "Line not found" in parsed["error"]


# ---------------------------------------------------------------------------
# generate_timetable / get_timetable
# ---------------------------------------------------------------------------

async def test_generate_timetable_builds_request_and_saves_selection() -> None:
    synthesizer = MagicMock(spec=TimetableSynthesizer)
    synthesizer.generate = AsyncMock(
        return_value={
            WEEKDAY: [TrainTime("24:10", "24:20", 10, train_number="A2410", train_type="odpt.TrainType:X.Local")]
        }
    )
    store = MemoryKeyValueStore()
    tools = build_tool_functions(make_catalog(), synthesizer, TimetableRepository(store))

    parsed = parse(
        await tools["generate_timetable"]("go1", 0, GINZA, "Railway", "渋谷", "odpt.Station:TokyoMetro.Ginza.Ginza")
    )

    request = synthesizer.generate.call_args.args[0]
    assert request.route == RouteToken.GO1
    assert request.departure_stop.index == 0
    assert request.arrival_stop.index == 2
    assert parsed["count"] == 1
    entry = parsed["timetables"]["odpt.Calendar:Weekday"][0]
    assert entry["departure_time"] == "24:10"
    assert entry["train_number"] == "A2410"
    assert entry["departureClock"] == "00:10"
    assert store.get_string("go1linename1") == "銀座線"
    assert store.get_string("go1operatorlinelist1") == GINZA


async def test_generate_timetable_unknown_stop_returns_error() -> None:
    tools = build_tool_functions(make_catalog())
    parsed = parse(await tools["generate_timetable"]("go1", 0, GINZA, "Railway", "渋谷", "新橋"))
    assert "Stop not found" in parsed["error"]


async def test_generate_timetable_negative_index_returns_error() -> None:
    tools = build_tool_functions(make_catalog())
    parsed = parse(await tools["generate_timetable"]("go1", -1, GINZA, "Railway", "渋谷", "銀座"))
    assert "line_index" in parsed["error"]


async def test_get_timetable_reads_stored_calendars() -> None:
    repository = TimetableRepository(MemoryKeyValueStore())
    repository.save(RouteToken.BACK1, 1, WEEKDAY, [BusTime("07:05", "07:15", 10)])
    repository.save_line_calendar_types(RouteToken.BACK1, 1, [WEEKDAY])
    tools = build_tool_functions(make_catalog(), repository=repository)

    parsed = parse(await tools["get_timetable"]("back1", 1))

    entries = parsed["timetables"]["odpt.Calendar:Weekday"]["entries"]
    assert [(e["departure_time"], e["ride_time"]) for e in entries] == [("07:05", 10)]
    assert parsed["timetables"]["odpt.Calendar:Weekday"]["trainTypes"] == []


async def test_get_timetable_single_calendar() -> None:
    tools = build_tool_functions(make_catalog())
    parsed = parse(await tools["get_timetable"]("go2", 0, "SaturdayHoliday"))
    assert parsed["timetables"] == {"odpt.Calendar:SaturdayHoliday": {"entries": [], "trainTypes": []}}


# ---------------------------------------------------------------------------
# check_updates
# ---------------------------------------------------------------------------

async def test_check_updates_lists_operator_keys() -> None:
    catalog = make_catalog()
    catalog.check_for_updates = AsyncMock(return_value=[find_operator("TOEI_BUS")])
    tools = build_tool_functions(catalog)
    parsed = parse(await tools["check_updates"]("Bus"))
    assert parsed == {"updated": ["TOEI_BUS"], "count": 1}


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

async def test_tool_service_exception_returns_resource_not_exception() -> None:
    """Exception from service must NOT propagate — must return error resource."""
    catalog = make_catalog()
    catalog.get_lines = AsyncMock(side_effect=RuntimeError("Unexpected internal error"))
    tools = build_tool_functions(catalog)
    result = await tools["list_lines"]()
    assert isinstance(result, list)
    assert parse(result) == {"error": "An unexpected error occurred."}


@pytest.mark.parametrize(
    "exc, expected",
    [
        (NetworkError(None), "Upstream request failed"),
        (NetworkError(403), "Access denied"),
        (NetworkError(404), "Resource not found"),
        (NetworkError(503), "503"),
        (InvalidDataError("bad root"), "Unusable upstream data: bad root"),
        (UnknownOperatorError("Unknown operator: X"), "Unknown operator: X"),
    ],
)
async def test_transit_errors_map_to_messages(exc: Exception, expected: str) -> None:
    catalog = make_catalog()
    catalog.check_for_updates = AsyncMock(side_effect=exc)
    tools = build_tool_functions(catalog)
    parsed = parse(await tools["check_updates"]())
    assert expected in parsed["error"]
