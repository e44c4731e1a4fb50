from __future__ import annotations

import logging
from collections.abc import Iterable
from contextlib import AbstractContextManager

from transit_mcp.domain import keys
from transit_mcp.domain.entities import TrainTime, TransportationTime
from transit_mcp.domain.services import group_by_hour, train_type_list
from transit_mcp.domain.value_objects import CalendarType, LineKind, RouteToken
from transit_mcp.infrastructure.kv_store import KeyValueStore
from transit_mcp.infrastructure.time_utils import add_minutes, minute_of_hour

logger = logging.getLogger(__name__)


class TimetableRepository:
    """Hour-bucketed timetable layout on top of the key-value store.

    Per (route, line, calendar, hour) three parallel space-joined strings are
    kept: minute-of-hour values, ride minutes and train types. A bucket set is
    always cleared over the whole timetable day before it is written.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def batch(self) -> AbstractContextManager[None]:
        """Group several clears and saves into one write of the underlying store."""
        return self._store.batch()

    def clear(self, route: RouteToken, line_index: int, calendar: CalendarType) -> None:
        for hour in keys.HOUR_RANGE:
            self._store.remove(keys.timetable_key(route, calendar, line_index, hour))
            self._store.remove(keys.ride_time_key(route, calendar, line_index, hour))
            self._store.remove(keys.train_type_key(route, calendar, line_index, hour))
        self._store.remove(keys.train_type_list_key(route, calendar, line_index))

    def save(
        self,
        route: RouteToken,
        line_index: int,
        calendar: CalendarType,
        times: list[TransportationTime],
    ) -> int:
        """Replace the stored timetable for calendar; returns the number of hours written.

        Invalid entries (empty times, ride time not positive) are not stored.
        """
        self.clear(route, line_index, calendar)
        times = [t for t in times if t.is_valid and minute_of_hour(t.departure_time) is not None]
        written = 0
        for hour, bucket in group_by_hour(times).items():
            if hour not in keys.HOUR_RANGE:
                logger.debug("Dropping %d entries outside the timetable day (hour %d)", len(bucket), hour)
                continue
            self._store.put_string(
                keys.timetable_key(route, calendar, line_index, hour),
                " ".join(str(minute_of_hour(t.departure_time)) for t in bucket),
            )
            self._store.put_string(
                keys.ride_time_key(route, calendar, line_index, hour),
                " ".join(str(t.ride_time) for t in bucket),
            )
            self._store.put_string(
                keys.train_type_key(route, calendar, line_index, hour),
                _train_type_tokens(bucket),
            )
            written += 1
        self._store.put_string(
            keys.train_type_list_key(route, calendar, line_index),
            " ".join(train_type_list(times)),
        )
        logger.debug(
            "Saved %d entries in %d hours for %s line %d %s",
            len(times), written, route.value, line_index + 1, calendar,
        )
        return written

    def load_times(self, route: RouteToken, line_index: int, calendar: CalendarType) -> list[TransportationTime]:
        """Rebuild entries from the stored buckets, reading legacy tags when the primary is absent."""
        result: list[TransportationTime] = []
        for hour in keys.HOUR_RANGE:
            key = self._existing_key(route, calendar, line_index, hour)
            if key is None:
                continue
            minutes = (self._store.get_string(key) or "").split()
            rides = (self._store.get_string(key + "ridetime") or "").split()
            types = (self._store.get_string(key + "traintype") or "").split()
            for position, minute in enumerate(minutes):
                departure = f"{hour:02d}:{int(minute):02d}"
                ride = int(rides[position]) if position < len(rides) else 0
                arrival = add_minutes(departure, ride) or departure
                train_type = types[position] if position < len(types) else None
                if train_type == keys.NO_TRAIN_TYPE:
                    result.append(TrainTime(departure, arrival, ride))
                elif train_type:
                    result.append(TrainTime(departure, arrival, ride, train_type=train_type))
                else:
                    result.append(TransportationTime(departure, arrival, ride))
        return result

    def train_types(self, route: RouteToken, line_index: int, calendar: CalendarType) -> list[str]:
        value = self._store.get_string(keys.train_type_list_key(route, calendar, line_index)) or ""
        return value.split()

    def _existing_key(self, route: RouteToken, calendar: CalendarType, line_index: int, hour: int) -> str | None:
        candidates = [keys.timetable_key(route, calendar, line_index, hour)]
        candidates.extend(keys.alternate_timetable_keys(route, calendar, line_index, hour))
        for key in candidates:
            if self._store.contains(key):
                return key
        return None

    # -- calendar type sets ---------------------------------------------------

    def load_line_calendar_types(self, route: RouteToken, line_index: int) -> list[CalendarType]:
        return _to_calendars(self._store.get_string_set(keys.line_calendar_types_key(route, line_index)))

    def save_line_calendar_types(
        self, route: RouteToken, line_index: int, calendars: Iterable[CalendarType]
    ) -> None:
        self._store.put_string_set(
            keys.line_calendar_types_key(route, line_index), {c.raw_value for c in calendars}
        )

    def clear_line_calendar_types(self, route: RouteToken, line_index: int) -> None:
        self._store.remove(keys.line_calendar_types_key(route, line_index))

    def load_global_calendar_types(self, line_code: str, kind: LineKind) -> list[CalendarType]:
        return _to_calendars(self._store.get_string_set(keys.global_calendar_types_key(line_code, kind)))

    def save_global_calendar_types(
        self, line_code: str, kind: LineKind, calendars: Iterable[CalendarType]
    ) -> None:
        self._store.put_string_set(
            keys.global_calendar_types_key(line_code, kind), {c.raw_value for c in calendars}
        )

    def clear_global_calendar_types(self, line_code: str, kind: LineKind) -> None:
        self._store.remove(keys.global_calendar_types_key(line_code, kind))

    # -- line selection -------------------------------------------------------

    def save_line_selection(self, route: RouteToken, line_index: int, line_name: str, line_code: str) -> None:
        self._store.put_string(keys.line_name_key(route, line_index), line_name)
        self._store.put_string(keys.operator_line_list_key(route, line_index), line_code)


def _train_type_tokens(bucket: list[TransportationTime]) -> str:
    """One token per entry for rail buckets; bus-only buckets store an empty string."""
    if not any(isinstance(t, TrainTime) for t in bucket):
        return ""
    return " ".join(
        (t.train_type if isinstance(t, TrainTime) and t.train_type else keys.NO_TRAIN_TYPE) for t in bucket
    )


def _to_calendars(raw: set[str] | None) -> list[CalendarType]:
    if not raw:
        return []
    parsed = [c for c in (CalendarType.from_raw(v) for v in raw) if c is not None]
    return sorted(parsed, key=lambda c: c.raw_value)
