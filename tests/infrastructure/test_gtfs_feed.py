"""Tests for reading an extracted GTFS feed."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import GTFS_FILES, write_gtfs_dir

from transit_mcp.domain.entities import RouteSelector
from transit_mcp.domain.exceptions import InvalidDataError
from transit_mcp.domain.value_objects import DEFAULT_CALENDAR_TYPES, SATURDAY_HOLIDAY, WEEKDAY
from transit_mcp.infrastructure.csv_reader import iter_csv, parse_csv
from transit_mcp.infrastructure.gtfs_feed import GtfsFeed, Translator, trip_endpoints

TRANSLATIONS = (
    "table_name,field_name,language,translation,record_id,field_value\n"
    "stops,stop_name,en,Shibuya Sta.,S1,\n"
    "stops,stop_name,ko,시부야역,S1,\n"
    "routes,route_short_name,en,To01,,都01\n"
    "trips,trip_headsign,en,Shimbashi Sta.,,新橋駅前\n"
)

R1_OUTBOUND = RouteSelector(route_id="R1", direction_id=0)
R2_INBOUND = RouteSelector(route_id="R2", first_stop_id="S4", last_stop_id="S1")

LOOP_FILES = {
    **GTFS_FILES,
    "routes.txt": "route_id,route_short_name,route_long_name\nL,循01,\n",
    "trips.txt": (
        "route_id,service_id,trip_id,trip_headsign,direction_id\n"
        "L,WD,t1,A,\n"
        "L,WD,t2,B,\n"
    ),
    "stop_times.txt": (
        "trip_id,arrival_time,departure_time,stop_id,stop_sequence\n"
        "t1,07:00:00,07:00:00,S1,1\n"
        "t1,07:10:00,07:10:00,S2,2\n"
        "t1,07:20:00,07:20:00,S1,3\n"
        "t2,08:00:00,08:00:00,S1,1\n"
        "t2,08:10:00,08:10:00,S3,2\n"
        "t2,08:20:00,08:20:00,S1,3\n"
    ),
}


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------


def test_derive_lines_one_per_direction(gtfs_dir: Path) -> None:
    lines = GtfsFeed(gtfs_dir).derive_lines("Toei/data/ToeiBus-GTFS.zip")
    codes = {line.code for line in lines}
    assert codes == {"R1_0", "R1_1", "R2_S1|S4", "R2_S4|S1"}
    assert all(line.operator_code == "Toei/data/ToeiBus-GTFS.zip" for line in lines)


def test_derive_lines_names_with_headsign(gtfs_dir: Path) -> None:
    lines = {line.code: line for line in GtfsFeed(gtfs_dir).derive_lines()}
    assert lines["R1_0"].name == "都01 新橋駅前行"
    assert lines["R1_0"].direction_id == 0
    assert lines["R1_0"].route_id == "R1"
    assert lines["R1_0"].line_color == "F2A900"


def test_headsign_ab_without_direction_id_gives_two_lines(gtfs_dir: Path) -> None:
    lines = [line for line in GtfsFeed(gtfs_dir).derive_lines() if line.route_id == "R2"]
    assert len(lines) == 2
    forward = next(line for line in lines if line.code == "R2_S1|S4")
    assert forward.direction_id is None
    assert forward.first_stop_id == "S1"
    assert forward.last_stop_id == "S4"
    assert forward.name == "青山循環 A行"


def test_loop_route_splits_variants_by_headsign(tmp_path: Path) -> None:
    lines = GtfsFeed(write_gtfs_dir(tmp_path / "feed", LOOP_FILES)).derive_lines()
    assert [line.code for line in lines] == ["L_S1|S1|A", "L_S1|S1|B"]
    assert [line.name for line in lines] == ["循01 A行", "循01 B行"]
    assert all(line.match_headsign for line in lines)
    assert [line.trip_headsign for line in lines] == ["A", "B"]


def test_loop_route_variants_select_their_own_trips(tmp_path: Path) -> None:
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", LOOP_FILES))
    line_a, line_b = feed.derive_lines()

    times_a = feed.timetable_for_route(RouteSelector.from_line(line_a), "S1", "S2", WEEKDAY)
    assert [(t.departure_time, t.arrival_time, t.ride_time) for t in times_a] == [("07:00", "07:10", 10)]
    assert feed.timetable_for_route(RouteSelector.from_line(line_b), "S1", "S2", WEEKDAY) == []
    assert [s.code for s in feed.stops_for_route(RouteSelector.from_line(line_b))] == ["S1", "S3", "S1"]


def test_shared_direction_id_with_two_headsigns(tmp_path: Path) -> None:
    files = dict(GTFS_FILES)
    files["trips.txt"] = (
        "route_id,service_id,trip_id,trip_headsign,direction_id\n"
        "R1,WD,T1,新橋駅前,0\n"
        "R1,WD,T2,青山一丁目,0\n"
    )
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files))
    lines = {line.code: line for line in feed.derive_lines() if line.route_id == "R1"}
    assert set(lines) == {"R1_0|新橋駅前", "R1_0|青山一丁目"}
    selector = RouteSelector.from_line(lines["R1_0|新橋駅前"])
    assert [t.trip_id for t in feed.trips_for(selector)] == ["T1"]


def test_route_without_trips_keeps_plain_name(tmp_path: Path) -> None:
    files = dict(GTFS_FILES)
    files["routes.txt"] = "route_id,route_short_name,route_long_name\nR9,都09,\nR0,,\n"
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files))
    lines = feed.derive_lines()
    assert [line.code for line in lines] == ["R9"]
    assert lines[0].name == "都09"


def test_english_locale_translates_names(tmp_path: Path) -> None:
    files = dict(GTFS_FILES)
    files["translations.txt"] = TRANSLATIONS
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files), locale="en")
    lines = {line.code: line for line in feed.derive_lines()}
    assert lines["R1_0"].name == "To01 for Shimbashi Sta."


def test_missing_routes_table_raises(tmp_path: Path) -> None:
    files = {k: v for k, v in GTFS_FILES.items() if k != "routes.txt"}
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files))
    with pytest.raises(InvalidDataError):
        feed.derive_lines()


# ---------------------------------------------------------------------------
# Translator
# ---------------------------------------------------------------------------


def test_translator_prefers_locale_then_english() -> None:
    rows = parse_csv(TRANSLATIONS)
    assert Translator(rows, "ko").translate("渋谷駅前", "stops", "stop_name", "S1") == "시부야역"
    assert Translator(rows, "fr").translate("渋谷駅前", "stops", "stop_name", "S1") == "Shibuya Sta."
    assert Translator(rows, "en").translate("都01", "routes", "route_short_name", "R1") == "To01"


def test_translator_native_locale_passes_through_halfwidth() -> None:
    translator = Translator(parse_csv(TRANSLATIONS), "ja")
    assert len(translator) == 0
    assert translator.translate("都０１", "routes", "route_short_name", "R1") == "都01"


# ---------------------------------------------------------------------------
# Endpoints and stop order
# ---------------------------------------------------------------------------


def test_streaming_endpoints_match_bulk(gtfs_dir: Path) -> None:
    streamed = trip_endpoints(iter_csv(gtfs_dir / "stop_times.txt"))
    bulk = trip_endpoints(parse_csv(GTFS_FILES["stop_times.txt"]))
    assert streamed == bulk
    assert streamed["T1"] == ("S1", "S3")
    assert streamed["T6"] == ("S4", "S1")


def test_trip_endpoints_filters_trip_ids(gtfs_dir: Path) -> None:
    result = trip_endpoints(iter_csv(gtfs_dir / "stop_times.txt"), {"T5"})
    assert result == {"T5": ("S1", "S4")}


def test_stops_for_route_uses_second_trip(gtfs_dir: Path) -> None:
    stops = GtfsFeed(gtfs_dir).stops_for_route(R1_OUTBOUND)
    assert [s.code for s in stops] == ["S1", "S2", "S3"]
    assert [s.index for s in stops] == [0, 1, 2]
    assert stops[0].name == "渋谷駅前"
    assert stops[0].line_code == "R1"


def test_stops_for_route_by_endpoints(gtfs_dir: Path) -> None:
    stops = GtfsFeed(gtfs_dir).stops_for_route(R2_INBOUND)
    assert [s.code for s in stops] == ["S4", "S1"]


def test_stops_missing_from_stops_table_are_dropped(tmp_path: Path) -> None:
    files = dict(GTFS_FILES)
    files["stops.txt"] = "stop_id,stop_name\nS1,渋谷駅前\nS3,新橋駅前\n"
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files))
    stops = feed.stops_for_route(R1_OUTBOUND)
    assert [(s.code, s.index) for s in stops] == [("S1", 0), ("S3", 1)]


# ---------------------------------------------------------------------------
# Calendars and timetables
# ---------------------------------------------------------------------------


def test_calendar_types_from_calendar_table(gtfs_dir: Path) -> None:
    assert GtfsFeed(gtfs_dir).calendar_types() == [WEEKDAY, SATURDAY_HOLIDAY]


def test_calendar_types_default_without_calendar(tmp_path: Path) -> None:
    files = {k: v for k, v in GTFS_FILES.items() if k != "calendar.txt"}
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files))
    assert feed.calendar_types() == list(DEFAULT_CALENDAR_TYPES)
    assert feed.service_ids(WEEKDAY) == set()


def test_timetable_for_route_weekday(gtfs_dir: Path) -> None:
    times = GtfsFeed(gtfs_dir).timetable_for_route(R1_OUTBOUND, "S1", "S3", WEEKDAY)
    assert [(t.departure_time, t.arrival_time, t.ride_time) for t in times] == [("07:00", "07:15", 15)]


def test_timetable_for_route_excludes_non_positive_rides(gtfs_dir: Path) -> None:
    times = GtfsFeed(gtfs_dir).timetable_for_route(R1_OUTBOUND, "S1", "S3", WEEKDAY)
    assert all(t.departure_time != "08:05" for t in times)


def test_timetable_for_route_weekend_service(gtfs_dir: Path) -> None:
    times = GtfsFeed(gtfs_dir).timetable_for_route(
        R1_OUTBOUND, "S1", "S3", SATURDAY_HOLIDAY
    )
    assert [(t.departure_time, t.arrival_time, t.ride_time) for t in times] == [("09:00", "09:20", 20)]


def test_timetable_without_calendar_uses_all_trips(tmp_path: Path) -> None:
    files = {k: v for k, v in GTFS_FILES.items() if k != "calendar.txt"}
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files))
    times = feed.timetable_for_route(R1_OUTBOUND, "S1", "S3", WEEKDAY)
    assert [t.departure_time for t in times] == ["07:00", "09:00"]


def test_timetable_follows_stop_sequence_not_file_order(tmp_path: Path) -> None:
    files = dict(LOOP_FILES)
    files["stop_times.txt"] = (
        "trip_id,arrival_time,departure_time,stop_id,stop_sequence\n"
        "t1,07:20:00,07:20:00,S1,3\n"
        "t1,07:10:00,07:10:00,S2,2\n"
        "t1,07:00:00,07:00:00,S1,1\n"
    )
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files))
    selector = RouteSelector(route_id="L", headsign="A", match_headsign=True)
    times = feed.timetable_for_route(selector, "S1", "S2", WEEKDAY)
    assert [(t.departure_time, t.arrival_time, t.ride_time) for t in times] == [("07:00", "07:10", 10)]


def test_timetable_keeps_hours_past_midnight(tmp_path: Path) -> None:
    files = dict(GTFS_FILES)
    files["stop_times.txt"] = (
        "trip_id,arrival_time,departure_time,stop_id,stop_sequence\n"
        "T1,24:50:00,24:50:00,S1,1\n"
        "T1,25:05:00,25:05:00,S3,2\n"
        "T2,23:40:00,23:40:00,S1,1\n"
        "T2,23:55:00,23:55:00,S3,2\n"
    )
    feed = GtfsFeed(write_gtfs_dir(tmp_path / "feed", files))
    times = feed.timetable_for_route(R1_OUTBOUND, "S1", "S3", WEEKDAY)
    assert [(t.departure_time, t.ride_time) for t in times] == [("23:40", 15), ("24:50", 15)]
