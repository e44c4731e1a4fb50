from __future__ import annotations

from transit_mcp.domain.services import SERVICE_DAY_START_HOUR, time_to_minutes


def normalize_gtfs_time(value: str | None) -> str | None:
    """Normalise a GTFS "H:MM:SS" / "HH:MM:SS" time to zero-padded "HH:MM".

    Hours past 23 are kept ("25:10:00" -> "25:10") so trips running after
    midnight stay later than the evening ones. Returns None for empty or
    unparseable input.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    parts = text.split(":")
    if len(parts) < 2:
        return None
    try:
        hour = int(parts[0])
        minute = int(parts[1])
    except ValueError:
        return None
    return f"{hour:02d}:{minute:02d}"


def adjust_for_timetable(hour: int, minute: int) -> str:
    """Format a station-timetable time, shifting hours 0-3 to 24-27."""
    if hour < SERVICE_DAY_START_HOUR:
        hour += 24
    return f"{hour:02d}:{minute:02d}"


def parse_hh_mm(value: str | None) -> tuple[int, int] | None:
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


def add_minutes(value: str, minutes: int) -> str | None:
    """Add minutes to "HH:MM" on the timetable day; the result keeps hours 24-27."""
    base = time_to_minutes(value)
    if base is None:
        return None
    total = base + minutes
    return f"{total // 60:02d}:{total % 60:02d}"


def minute_of_hour(value: str) -> int | None:
    parsed = parse_hh_mm(value)
    return parsed[1] if parsed is not None else None


def format_time(value: str) -> str:
    """Fold a timetable-day time ("25:10") back to a clock time ("01:10")."""
    parsed = parse_hh_mm(value)
    if parsed is None:
        return value
    return f"{parsed[0] % 24:02d}:{parsed[1]:02d}"
