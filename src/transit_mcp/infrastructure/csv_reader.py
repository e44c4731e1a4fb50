from __future__ import annotations

import csv
import io
import logging
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path

from transit_mcp.domain.exceptions import InvalidDataError

logger = logging.getLogger(__name__)

Row = dict[str, str]


def parse_csv(data: bytes | str, name: str = "<csv>") -> list[Row]:
    """Parse a whole (small) GTFS table into rows keyed by header.

    Raises InvalidDataError when the table has no header line.
    """
    text = data.decode("utf-8-sig") if isinstance(data, bytes) else data.lstrip("\ufeff")
    return list(_rows(csv.reader(io.StringIO(text, newline="")), name))


def iter_csv(path: Path) -> Iterator[Row]:
    """Yield rows of a GTFS table one line at a time.

    Memory use is bounded by the longest line, not the file size, so this is
    the reader for stop_times.txt.
    """
    path = Path(path)
    with open(path, encoding="utf-8-sig", newline="") as fh:
        yield from _rows(csv.reader(fh), path.name)


def parse_csv_streaming(path: Path, on_row: Callable[[Row], None]) -> int:
    """Feed every row of path to on_row; returns the number of rows delivered."""
    count = 0
    for row in iter_csv(path):
        on_row(row)
        count += 1
    return count


def _rows(reader: Iterable[list[str]], name: str) -> Iterator[Row]:
    header: list[str] | None = None
    skipped = 0
    for fields in reader:
        if not fields or all(not f.strip() for f in fields):
            continue
        if header is None:
            header = [f.strip() for f in fields]
            continue
        if len(fields) != len(header):
            skipped += 1
            continue
        yield {key: value.strip() for key, value in zip(header, fields)}
    if header is None:
        raise InvalidDataError(f"{name}: missing CSV header")
    if skipped:
        logger.debug("%s: skipped %d malformed rows", name, skipped)
