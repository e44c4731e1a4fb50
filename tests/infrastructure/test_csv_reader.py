"""Tests for the GTFS CSV reader."""
from __future__ import annotations

from pathlib import Path

import pytest

from transit_mcp.domain.exceptions import InvalidDataError
from transit_mcp.infrastructure.csv_reader import iter_csv, parse_csv, parse_csv_streaming


def test_parse_csv_strips_bom_and_fields() -> None:
    data = "\ufeffstop_id, stop_name\nS1, 渋谷駅前 \n".encode("utf-8")
    assert parse_csv(data) == [{"stop_id": "S1", "stop_name": "渋谷駅前"}]


def test_parse_csv_accepts_text_with_bom() -> None:
    assert parse_csv("\ufeffa,b\n1,2\n") == [{"a": "1", "b": "2"}]


def test_parse_csv_handles_quoted_commas() -> None:
    rows = parse_csv(b'route_id,route_long_name\nR1,"Shibuya, Shimbashi"\n')
    assert rows[0]["route_long_name"] == "Shibuya, Shimbashi"


def test_parse_csv_skips_blank_and_mismatched_rows() -> None:
    rows = parse_csv(b"a,b\n1,2\n\n3\n4,5,6\n7,8\n")
    assert rows == [{"a": "1", "b": "2"}, {"a": "7", "b": "8"}]


def test_parse_csv_without_header_raises() -> None:
    with pytest.raises(InvalidDataError):
        parse_csv(b"", "stops.txt")
    with pytest.raises(InvalidDataError):
        parse_csv(b"\n\n", "stops.txt")


def test_header_only_table_is_empty() -> None:
    assert parse_csv(b"a,b\n") == []


def test_iter_csv_matches_bulk_parse(tmp_path: Path) -> None:
    data = "\ufefftrip_id,stop_id,stop_sequence\r\nT1,S1,1\r\nT1,S2,2\r\n".encode("utf-8")
    path = tmp_path / "stop_times.txt"
    path.write_bytes(data)
    assert list(iter_csv(path)) == parse_csv(data)


def test_parse_csv_streaming_counts_rows(tmp_path: Path) -> None:
    path = tmp_path / "stop_times.txt"
    path.write_text("trip_id,stop_id\nT1,S1\nT1,S2\n", encoding="utf-8")
    seen: list[str] = []
    count = parse_csv_streaming(path, lambda row: seen.append(row["stop_id"]))
    assert count == 2
    assert seen == ["S1", "S2"]
