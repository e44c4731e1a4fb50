from __future__ import annotations

import logging

from transit_mcp.application.gtfs_pipeline import GTFSPipeline
from transit_mcp.application.line_service import LineMetadataService
from transit_mcp.domain.entities import Line, RouteSelector, Stop
from transit_mcp.domain.exceptions import TransitError
from transit_mcp.domain.value_objects import LineKind
from transit_mcp.infrastructure.operators import Operator, find_operator, operators_for

logger = logging.getLogger(__name__)


class LineCatalog:
    """Line and stop lookup across every operator of a line kind.

    ODPT operators are served from LineMetadataService, GTFS operators from
    the GTFSPipeline. One operator failing never hides the others.
    """

    def __init__(
        self,
        line_service: LineMetadataService,
        gtfs_pipeline: GTFSPipeline,
        operators: list[Operator] | None = None,
    ) -> None:
        self._line_service = line_service
        self._gtfs = gtfs_pipeline
        self._operators = operators

    def operators(self, kind: LineKind) -> list[Operator]:
        candidates = self._operators if self._operators is not None else operators_for(kind)
        return [op for op in candidates if op.kind == kind]

    async def get_lines(
        self,
        kind: LineKind,
        allow_fetch: bool = True,
        operator: Operator | None = None,
    ) -> list[Line]:
        """All lines of kind, optionally restricted to one operator.

        Operators without cached data are fetched only when allow_fetch is set.
        """
        selected = [operator] if operator is not None else self.operators(kind)
        lines: list[Line] = []
        for op in selected:
            try:
                lines.extend(await self._lines_for(op, allow_fetch))
            except TransitError as exc:
                logger.warning("Skipping %s lines: %s", op.key, exc)
        logger.debug("Catalog holds %d %s lines", len(lines), kind.value)
        return lines

    async def _lines_for(self, operator: Operator, allow_fetch: bool) -> list[Line]:
        if operator.is_gtfs:
            if not allow_fetch and not self._gtfs.has_cache(operator):
                return []
            return await self._gtfs.fetch_lines(operator)
        cached = self._line_service.load_cached_lines(operator)
        if cached is not None:
            return cached
        if not allow_fetch:
            return []
        data = await self._line_service.fetch_operator_data(operator)
        return self._line_service.parse_lines(data, operator.kind)

    async def find_line(self, code: str, kind: LineKind, allow_fetch: bool = True) -> Line | None:
        for line in await self.get_lines(kind, allow_fetch=allow_fetch):
            if line.code == code:
                return line
        return None

    def operator_for(self, line: Line) -> Operator:
        """Raises UnknownOperatorError when the line's operator is not known."""
        return find_operator(line.operator_code or "")

    async def get_stops(self, line: Line) -> list[Stop]:
        operator = self.operator_for(line)
        if operator.is_gtfs:
            return await self._gtfs.stops_for_route(operator, RouteSelector.from_line(line))
        return list(line.stop_order)

    async def check_for_updates(self, kind: LineKind) -> list[Operator]:
        """Revalidate every cached operator of kind; returns the ones that changed."""
        updated: list[Operator] = []
        for op in self.operators(kind):
            try:
                if op.is_gtfs:
                    changed = await self._gtfs.check_for_update(op)
                else:
                    changed = await self._line_service.check_for_update(op)
            except TransitError as exc:
                logger.warning("Update check failed for %s: %s", op.key, exc)
                continue
            if changed:
                updated.append(op)
        logger.info("%d %s operators updated", len(updated), kind.value)
        return updated
