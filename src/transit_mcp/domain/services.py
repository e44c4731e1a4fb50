from __future__ import annotations

from collections.abc import Iterable, Sequence

from transit_mcp.domain.entities import DirectionInfo, TrainTime, TransportationTime
from transit_mcp.domain.value_objects import DEFAULT_CALENDAR_TYPES, CalendarType

# Hours before this belong to the previous timetable day (00:10 sorts after 23:50)
SERVICE_DAY_START_HOUR = 4

_FULLWIDTH = str.maketrans(
    "０１２３４５６７８９"
    "ＡＢＣＤＥＦＧＨＩＪＫＬＭＮＯＰＱＲＳＴＵＶＷＸＹＺ"
    "ａｂｃｄｅｆｇｈｉｊｋｌｍｎｏｐｑｒｓｔｕｖｗｘｙｚ",
    "0123456789"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz",
)


def timetable_hour(hour: int) -> int:
    """Return hour on the timetable day: 0-3 become 24-27."""
    return hour + 24 if hour < SERVICE_DAY_START_HOUR else hour


def time_to_minutes(value: str | None) -> int | None:
    """Convert "HH:MM" to minutes on the timetable day.

    Returns None for anything that is not two integer components.
    """
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) != 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    return timetable_hour(hour) * 60 + minute


def ride_time(departure: str, arrival: str) -> int | None:
    """Minutes from departure to arrival, or None when arrival is not later.

    Pairs are never wrapped at midnight: an arrival at or before the departure
    is rejected.
    """
    dep = time_to_minutes(departure)
    arr = time_to_minutes(arrival)
    if dep is None or arr is None or arr <= dep:
        return None
    return arr - dep


def to_halfwidth(text: str) -> str:
    """Normalize fullwidth digits and Latin letters to ASCII."""
    return text.translate(_FULLWIDTH)


def collapse_destination_suffix(text: str) -> str:
    """Fix a doubled destination marker: "渋谷駅行行" -> "渋谷駅行"."""
    if text.endswith("行行"):
        return text[:-1]
    return text


def split_long_name(long_name: str | None) -> tuple[str | None, str | None]:
    """Split a GTFS route_long_name like "渋谷駅〜新橋駅（経由）" into (departure, destination).

    The destination loses trailing parenthetical annotations. Returns
    (None, None) when the name has no "〜" separator.
    """
    if not long_name or "〜" not in long_name:
        return None, None
    components = long_name.split("〜")
    departure = components[0].strip()
    raw = components[-1].strip()
    if "（" in raw:
        destination = raw.split("（", 1)[0].strip()
    elif "(" in raw:
        destination = raw.split("(", 1)[0].strip()
    elif raw.endswith("）") or raw.endswith(")"):
        destination = raw[:-1].strip()
    else:
        destination = raw
    return departure or None, destination or None


def direction_sort_key(direction: DirectionInfo) -> tuple[int, int, str, str, str]:
    """Order: direction_id ascending with missing ids last, then headsign and endpoints."""
    missing = direction.direction_id is None
    return (
        1 if missing else 0,
        direction.direction_id if direction.direction_id is not None else 0,
        direction.headsign or "",
        direction.first_stop_id or "",
        direction.last_stop_id or "",
    )


def direction_code(direction: DirectionInfo) -> str | None:
    """Substitute direction key: the direction_id, else "first|last" stop ids."""
    if direction.direction_id is not None:
        return str(direction.direction_id)
    if direction.first_stop_id is not None and direction.last_stop_id is not None:
        return f"{direction.first_stop_id}|{direction.last_stop_id}"
    return None


def merge_and_sort(times: Iterable[TransportationTime]) -> list[TransportationTime]:
    """De-duplicate on (departure, arrival) keeping the first seen, then sort by time."""
    seen: set[tuple[str, str]] = set()
    unique: list[TransportationTime] = []
    for item in times:
        key = (item.departure_time, item.arrival_time)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return sorted(unique, key=_time_sort_key)


def sort_times(times: Iterable[TransportationTime]) -> list[TransportationTime]:
    return sorted(times, key=_time_sort_key)


def _time_sort_key(item: TransportationTime) -> tuple[int, int]:
    dep = time_to_minutes(item.departure_time)
    arr = time_to_minutes(item.arrival_time)
    return (dep if dep is not None else 0, arr if arr is not None else 0)


def mean_ride_time(times: Sequence[TransportationTime]) -> float:
    if not times:
        return float("inf")
    return sum(t.ride_time for t in times) / len(times)


def pick_shorter_direction(
    results: Sequence[list[TransportationTime]],
) -> list[TransportationTime]:
    """Return the non-empty result set with the lowest mean ride time.

    On a loop line both directions reach the arrival stop; the shorter one is
    the direction the rider actually takes. Ties keep the earlier result.
    """
    candidates = [r for r in results if r]
    if not candidates:
        return []
    return min(candidates, key=mean_ride_time)


def process_calendar_types(raw_values: Iterable[str]) -> list[CalendarType]:
    """Reduce discovered raw calendar values to the set a timetable is built for.

    Every Specific calendar is kept; a standard calendar is added only when no
    earlier type already covers its display type. Unknown values are dropped.
    Result is sorted by raw value.
    """
    parsed = [c for c in (CalendarType.from_raw(v) for v in set(raw_values)) if c is not None]
    parsed.sort(key=lambda c: c.raw_value)
    result: list[CalendarType] = []
    seen_display: set[CalendarType] = set()
    for calendar in parsed:
        if calendar.is_specific:
            result.append(calendar)
            seen_display.add(calendar.display_type())
    for calendar in parsed:
        if calendar.is_specific:
            continue
        display = calendar.display_type()
        if display not in seen_display:
            result.append(calendar)
            seen_display.add(display)
    return sorted(result, key=lambda c: c.raw_value)


def calendar_types_or_default(calendars: Sequence[CalendarType]) -> list[CalendarType]:
    return list(calendars) if calendars else list(DEFAULT_CALENDAR_TYPES)


def group_by_display_type(
    calendars: Iterable[CalendarType],
) -> dict[CalendarType, list[CalendarType]]:
    """Group calendars by display type, preserving first-seen order."""
    groups: dict[CalendarType, list[CalendarType]] = {}
    for calendar in calendars:
        groups.setdefault(calendar.display_type(), []).append(calendar)
    return groups


def representative_calendar(group: Sequence[CalendarType]) -> CalendarType:
    """The first Specific calendar of a group, else its first member."""
    for calendar in group:
        if calendar.is_specific:
            return calendar
    return group[0]


def merge_calendar_variants(
    calendars: Sequence[CalendarType],
    times_by_calendar: dict[CalendarType, list[TransportationTime]],
) -> tuple[dict[CalendarType, list[TransportationTime]], set[CalendarType]]:
    """Merge timetables whose calendars share a display type.

    Returns the final mapping keyed by representative calendar, and the set of
    every calendar that took part in a merge (representatives included) so
    that their stored buckets can be cleared before the merged result is
    written.
    """
    merged: dict[CalendarType, list[TransportationTime]] = {}
    merged_sources: set[CalendarType] = set()
    for display, group in group_by_display_type(calendars).items():
        if len(group) == 1:
            merged[group[0]] = list(times_by_calendar.get(group[0], []))
            continue
        representative = representative_calendar(group)
        union: list[TransportationTime] = []
        for calendar in group:
            union.extend(times_by_calendar.get(calendar, []))
        merged[representative] = merge_and_sort(union)
        merged_sources.update(group)
    return merged, merged_sources


def group_by_hour(times: Iterable[TransportationTime]) -> dict[int, list[TransportationTime]]:
    """Bucket entries by timetable-day departure hour, each bucket time-sorted."""
    buckets: dict[int, list[TransportationTime]] = {}
    for item in times:
        parts = item.departure_time.split(":")
        if len(parts) != 2:
            continue
        try:
            hour = int(parts[0])
        except ValueError:
            continue
        buckets.setdefault(timetable_hour(hour), []).append(item)
    return {hour: sort_times(bucket) for hour, bucket in sorted(buckets.items())}


def train_type_tail(train_type: str) -> str:
    """"odpt.TrainType:TokyoMetro.Local" -> "Local"."""
    return train_type.split(".")[-1]


def train_type_list(times: Iterable[TransportationTime]) -> list[str]:
    """Sorted distinct train type names across a timetable; buses contribute none."""
    names = {
        train_type_tail(t.train_type)
        for t in times
        if isinstance(t, TrainTime) and t.train_type
    }
    return sorted(names)


def estimate_pairs(
    departures: Sequence[str],
    arrivals: Sequence[str],
    approx_ride_time: int,
) -> list[tuple[str, str, int]]:
    """Pair station-timetable departures with arrival-station times.

    Each departure takes the unused arrival whose ride time is closest to
    approx_ride_time, provided it is within half of it. Returns
    (departure, arrival, ride_minutes) tuples.
    """
    if approx_ride_time <= 0:
        return []
    sorted_departures = sorted(departures, key=lambda t: time_to_minutes(t) or 0)
    sorted_arrivals = sorted(arrivals, key=lambda t: time_to_minutes(t) or 0)
    used: set[int] = set()
    pairs: list[tuple[str, str, int]] = []
    tolerance = approx_ride_time / 2.0
    for dep in sorted_departures:
        best_index: int | None = None
        best_distance = float("inf")
        for index, arr in enumerate(sorted_arrivals):
            if index in used:
                continue
            minutes = ride_time(dep, arr)
            if minutes is None:
                continue
            distance = abs(minutes - approx_ride_time)
            if distance > tolerance:
                continue
            if distance < best_distance:
                best_distance = distance
                best_index = index
        if best_index is not None:
            used.add(best_index)
            arr = sorted_arrivals[best_index]
            pairs.append((dep, arr, ride_time(dep, arr) or 0))
    return pairs
