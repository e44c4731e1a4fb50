from __future__ import annotations

import logging

from transit_mcp.domain.entities import Line
from transit_mcp.domain.keys import etag_key, last_modified_key
from transit_mcp.domain.value_objects import DataType, LineKind
from transit_mcp.infrastructure.cache import BlobCache
from transit_mcp.infrastructure.fetcher import ConditionalFetcher, NotModified
from transit_mcp.infrastructure.kv_store import KeyValueStore
from transit_mcp.infrastructure.odpt_parser import parse_lines
from transit_mcp.infrastructure.operators import Operator, api_link
from transit_mcp.infrastructure.settings import Settings

logger = logging.getLogger(__name__)


class LineMetadataService:
    """Fetches operator line metadata from the ODPT JSON API and keeps it cached.

    Response bytes go to the BlobCache and to a secondary snapshot store;
    ETag/Last-Modified values are kept in the key-value store under
    ``<cache key>_etag`` / ``<cache key>_last_modified``.
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        cache: BlobCache,
        snapshots: BlobCache,
        store: KeyValueStore,
        settings: Settings,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._snapshots = snapshots
        self._store = store
        self._settings = settings

    def has_cache(self, operator: Operator) -> bool:
        return self._cache.exists(operator.file_name) or self._snapshots.exists(operator.file_name)

    async def fetch_operator_data(self, operator: Operator) -> bytes:
        """GET the operator's line document and persist it.

        Raises NetworkError when the request fails or returns non-200.
        """
        url = api_link(operator, DataType.LINE, self._settings)
        response = await self._fetcher.fetch(url)
        response.raise_for_status()
        self._persist(operator, response.content, response.etag, response.last_modified)
        logger.info("Fetched %d bytes of line data for %s", len(response.content), operator.key)
        return response.content

    async def check_for_update(self, operator: Operator) -> bool:
        """Revalidate cached line data with a conditional GET.

        Returns False without a request when nothing is cached yet or no
        validators were recorded. A 304 or a byte-identical body means no
        update; otherwise the new bytes and validators are already stored
        when this returns True.
        """
        key = operator.file_name
        cached = self._cache.load(key)
        if cached is None:
            return False
        etag = self._store.get_string(etag_key(key))
        last_modified = self._store.get_string(last_modified_key(key))
        if not etag and not last_modified:
            return False

        url = api_link(operator, DataType.LINE, self._settings)
        result = await self._fetcher.fetch_conditional(url, etag=etag, last_modified=last_modified)
        if isinstance(result, NotModified):
            return False
        if result.content == cached:
            logger.debug("Line data for %s unchanged", operator.key)
            return False
        self._persist(operator, result.content, result.etag, result.last_modified)
        logger.info("Line data for %s updated", operator.key)
        return True

    def parse_lines(self, data: bytes, kind: LineKind) -> list[Line]:
        return parse_lines(data, kind)

    def load_cached_lines(self, operator: Operator) -> list[Line] | None:
        """Parse cached line data, falling back to the snapshot copy. None when neither exists."""
        data = self._cache.load(operator.file_name)
        if data is None:
            data = self._snapshots.load(operator.file_name)
        if data is None:
            return None
        return parse_lines(data, operator.kind)

    def _persist(self, operator: Operator, data: bytes, etag: str | None, last_modified: str | None) -> None:
        key = operator.file_name
        self._cache.save(data, key)
        self._snapshots.save(data, key)
        if etag:
            self._store.put_string(etag_key(key), etag)
        else:
            self._store.remove(etag_key(key))
        if last_modified:
            self._store.put_string(last_modified_key(key), last_modified)
        else:
            self._store.remove(last_modified_key(key))
