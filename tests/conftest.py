"""Shared pytest fixtures for the transit timetable MCP server test suite."""
from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path

import pytest

from transit_mcp.infrastructure.settings import Settings

GTFS_FILES: dict[str, str] = {
    "agency.txt": (
        "agency_id,agency_name,agency_url,agency_timezone\n"
        "1,東京都交通局,https://www.kotsu.metro.tokyo.jp/,Asia/Tokyo\n"
    ),
    "routes.txt": (
        "route_id,route_short_name,route_long_name,route_color\n"
        "R1,都01,渋谷駅前〜新橋駅前,F2A900\n"
        "R2,,青山循環,\n"
    ),
    "trips.txt": (
        "route_id,service_id,trip_id,trip_headsign,direction_id\n"
        "R1,WD,T1,新橋駅前,0\n"
        "R1,WD,T2,新橋駅前,0\n"
        "R1,SA,T3,新橋駅前,0\n"
        "R1,WD,T4,渋谷駅前,1\n"
        "R2,WD,T5,A,\n"
        "R2,WD,T6,B,\n"
    ),
    "stops.txt": (
        "stop_id,stop_name,stop_lat,stop_lon\n"
        "S1,渋谷駅前,35.659,139.701\n"
        "S2,青山一丁目,35.672,139.724\n"
        "S3,新橋駅前,35.666,139.758\n"
        "S4,青山墓地,35.667,139.722\n"
    ),
    "stop_times.txt": (
        "trip_id,arrival_time,departure_time,stop_id,stop_sequence\n"
        "T1,07:00:00,07:00:00,S1,1\n"
        "T1,07:08:00,07:08:00,S2,2\n"
        "T1,07:15:00,07:15:00,S3,3\n"
        "T2,08:05:00,08:05:00,S1,1\n"
        "T2,08:01:00,08:01:00,S2,2\n"
        "T2,08:02:00,08:02:00,S3,3\n"
        "T3,09:00:00,09:00:00,S1,1\n"
        "T3,09:10:00,09:10:00,S2,2\n"
        "T3,09:20:00,09:20:00,S3,3\n"
        "T4,07:30:00,07:30:00,S3,1\n"
        "T4,07:37:00,07:37:00,S2,2\n"
        "T4,07:45:00,07:45:00,S1,3\n"
        "T5,10:00:00,10:00:00,S1,1\n"
        "T5,10:10:00,10:10:00,S4,2\n"
        "T6,11:00:00,11:00:00,S4,1\n"
        "T6,11:10:00,11:10:00,S1,2\n"
    ),
    "calendar.txt": (
        "service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date\n"
        "WD,1,1,1,1,1,0,0,20250401,20260331\n"
        "SA,0,0,0,0,0,1,1,20250401,20260331\n"
    ),
}


def build_gtfs_zip(files: dict[str, str] | None = None, folder: str = "") -> bytes:
    """Build a GTFS archive in memory; folder nests every table under a directory."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in (files if files is not None else GTFS_FILES).items():
            archive.writestr(f"{folder}{name}", content.encode("utf-8"))
    return buffer.getvalue()


def write_gtfs_dir(directory: Path, files: dict[str, str] | None = None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for name, content in (files if files is not None else GTFS_FILES).items():
        (directory / name).write_text(content, encoding="utf-8")
    return directory


@pytest.fixture
def gtfs_zip() -> bytes:
    return build_gtfs_zip()


@pytest.fixture
def gtfs_dir(tmp_path: Path) -> Path:
    return write_gtfs_dir(tmp_path / "feed")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        access_token="ACCESS",
        challenge_token="CHALLENGE",
        cache_dir=tmp_path / "cache",
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def sample_railway_raw() -> list:  # type: ignore[type-arg]
    """Sample odpt:Railway document with one line and three stations."""
    return [
        {
            "@type": "odpt:Railway",
            "dc:title": "銀座",
            "owl:sameAs": "odpt.Railway:TokyoMetro.Ginza",
            "odpt:operator": "odpt.Operator:TokyoMetro",
            "odpt:lineCode": "G",
            "odpt:color": "#FF9500",
            "odpt:railwayTitle": {"ja": "銀座線", "en": "Ginza Line"},
            "odpt:ascendingRailDirection": "odpt.RailDirection:TokyoMetro.Asakusa",
            "odpt:descendingRailDirection": "odpt.RailDirection:TokyoMetro.Shibuya",
            "odpt:stationOrder": [
                {
                    "odpt:index": 3,
                    "odpt:station": "odpt.Station:TokyoMetro.Ginza.Omotesando",
                    "odpt:stationTitle": {"ja": "表参道", "en": "Omote-sando"},
                },
                {
                    "odpt:index": 1,
                    "odpt:station": "odpt.Station:TokyoMetro.Ginza.Shibuya",
                    "odpt:stationTitle": {"ja": "渋谷", "en": "Shibuya"},
                },
                {
                    "odpt:index": 2,
                    "odpt:station": "odpt.Station:TokyoMetro.Ginza.Gaiemmae",
                    "odpt:stationTitle": {"en": "Gaiemmae"},
                },
            ],
        }
    ]


@pytest.fixture
def sample_bus_pattern_raw() -> list:  # type: ignore[type-arg]
    """Sample odpt:BusroutePattern document (one stray record of another type)."""
    return [
        {
            "@type": "odpt:BusroutePattern",
            "dc:title": "渋11",
            "owl:sameAs": "odpt.BusroutePattern:TokyuBus.Shibu11.1",
            "odpt:operator": "odpt.Operator:TokyuBus",
            "odpt:busroute": "odpt.Busroute:TokyuBus.Shibu11",
            "odpt:pattern": "1",
            "odpt:direction": "1",
            "odpt:busstopPoleOrder": [
                {"odpt:index": 1, "odpt:busstopPole": "odpt.BusstopPole:TokyuBus.Shibuya.1", "odpt:note": "渋谷駅"},
                {"odpt:index": 2, "odpt:busstopPole": "odpt.BusstopPole:TokyuBus.Daikanyama.1", "odpt:note": "代官山"},
                {"odpt:index": 3, "odpt:busstopPole": "odpt.BusstopPole:TokyuBus.Ebisu.1"},
            ],
        },
        {"@type": "odpt:BusstopPole", "dc:title": "渋谷駅", "owl:sameAs": "odpt.BusstopPole:TokyuBus.Shibuya.1"},
    ]


def to_bytes(document: object) -> bytes:
    return json.dumps(document, ensure_ascii=False).encode("utf-8")
