from __future__ import annotations

import asyncio
import io
import logging
import shutil
import tempfile
import zipfile
from pathlib import Path, PurePosixPath

from transit_mcp.domain.entities import BusTime, Line, RouteSelector, Stop
from transit_mcp.domain.exceptions import InvalidDataError, TransitError
from transit_mcp.domain.keys import etag_key, last_modified_key
from transit_mcp.domain.value_objects import CalendarType
from transit_mcp.infrastructure.cache import BlobCache
from transit_mcp.infrastructure.fetcher import ConditionalFetcher, NotModified
from transit_mcp.infrastructure.gtfs_feed import GtfsFeed
from transit_mcp.infrastructure.headers import ACCEPT_ZIP
from transit_mcp.infrastructure.kv_store import KeyValueStore
from transit_mcp.infrastructure.operators import Operator, gtfs_link
from transit_mcp.infrastructure.settings import Settings

logger = logging.getLogger(__name__)


class GTFSPipeline:
    """Downloads, caches and extracts GTFS archives, and answers queries on them.

    Per cache key the feed moves through: no cache -> downloading -> cached
    ZIP -> extracted directory. A cached ZIP without its extracted sibling is
    extracted without downloading again. One asyncio.Lock per cache key keeps
    at most one download/extraction in flight. Parsing runs in worker threads.
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        cache: BlobCache,
        store: KeyValueStore,
        settings: Settings,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._store = store
        self._settings = settings
        self._locks: dict[str, asyncio.Lock] = {}
        self._feeds: dict[str, GtfsFeed] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def has_cache(self, operator: Operator) -> bool:
        return self._cache.exists(operator.gtfs_cache_key) or self._cache.directory_exists(
            operator.gtfs_extracted_name
        )

    async def ensure_extracted(self, operator: Operator) -> Path:
        """Return the extracted feed directory, downloading and extracting as needed."""
        async with self._lock(operator.gtfs_cache_key):
            extracted = self._cache.load_directory_path(operator.gtfs_extracted_name)
            if extracted is not None:
                return extracted
            data = self._cache.load(operator.gtfs_cache_key)
            if data is None:
                data = await self._download(operator)
            else:
                logger.info("Extracting cached GTFS archive %s", operator.gtfs_cache_key)
            return await asyncio.to_thread(self._extract, data, operator)

    async def check_for_update(self, operator: Operator) -> bool:
        """Revalidate an undated GTFS archive; dated archives never change under their key.

        On update the new archive replaces the old one and the extracted
        directory is dropped, so the next query extracts the new feed.
        """
        if not operator.uses_conditional_gtfs:
            return False
        key = operator.gtfs_cache_key
        async with self._lock(key):
            cached = self._cache.load(key)
            if cached is None:
                return False
            etag = self._store.get_string(etag_key(key))
            last_modified = self._store.get_string(last_modified_key(key))
            if not etag and not last_modified:
                return False
            result = await self._fetcher.fetch_conditional(
                gtfs_link(operator, self._settings),
                etag=etag,
                last_modified=last_modified,
                accept=ACCEPT_ZIP,
            )
            if isinstance(result, NotModified) or result.content == cached:
                return False
            self._store_archive(key, result.content, result.etag, result.last_modified)
            self._cache.remove(operator.gtfs_extracted_name)
            self._feeds.pop(operator.gtfs_extracted_name, None)
            logger.info("GTFS archive for %s updated", operator.key)
            return True

    async def fetch_lines(self, operator: Operator) -> list[Line]:
        feed = await self._feed(operator)
        return await asyncio.to_thread(feed.derive_lines, operator.code)

    async def stops_for_route(self, operator: Operator, selector: RouteSelector) -> list[Stop]:
        feed = await self._feed(operator)
        return await asyncio.to_thread(feed.stops_for_route, selector)

    async def timetable_for_route(
        self,
        operator: Operator,
        selector: RouteSelector,
        departure_stop_id: str,
        arrival_stop_id: str,
        calendar: CalendarType,
    ) -> list[BusTime]:
        feed = await self._feed(operator)
        return await asyncio.to_thread(
            feed.timetable_for_route, selector, departure_stop_id, arrival_stop_id, calendar
        )

    async def calendar_types(self, operator: Operator) -> list[CalendarType]:
        feed = await self._feed(operator)
        return await asyncio.to_thread(feed.calendar_types)

    # ------------------------------------------------------------------

    async def _feed(self, operator: Operator) -> GtfsFeed:
        path = await self.ensure_extracted(operator)
        feed = self._feeds.get(operator.gtfs_extracted_name)
        if feed is None or feed.directory != path:
            feed = GtfsFeed(path, self._settings.locale)
            self._feeds[operator.gtfs_extracted_name] = feed
        return feed

    async def _download(self, operator: Operator) -> bytes:
        """Download the archive and store it with its validators.

        Undated archives go through the conditional path so that their
        ETag/Last-Modified are captured; dated archives are a plain
        authorised GET because the date already keys the cache.
        """
        url = gtfs_link(operator, self._settings)
        key = operator.gtfs_cache_key
        logger.info("Downloading GTFS archive for %s", operator.key)
        if operator.uses_conditional_gtfs:
            result = await self._fetcher.fetch_conditional(url, accept=ACCEPT_ZIP)
            if isinstance(result, NotModified):
                raise InvalidDataError(f"Unexpected 304 for uncached GTFS archive {key}")
            content, etag, last_modified = result.content, result.etag, result.last_modified
        else:
            response = await self._fetcher.fetch(url, auth_token=self._settings.access_token, accept=ACCEPT_ZIP)
            response.raise_for_status()
            content, etag, last_modified = response.content, response.etag, response.last_modified
        if not content:
            raise InvalidDataError(f"Empty GTFS archive for {operator.key}")
        self._store_archive(key, content, etag, last_modified)
        return content

    def _store_archive(self, key: str, data: bytes, etag: str | None, last_modified: str | None) -> None:
        self._cache.save(data, key)
        if etag:
            self._store.put_string(etag_key(key), etag)
        if last_modified:
            self._store.put_string(last_modified_key(key), last_modified)

    def _extract(self, data: bytes, operator: Operator) -> Path:
        """Unzip every file entry into a temp directory, then move it into the cache as a unit.

        Entries are flattened to their base names; GTFS tables are unique by name.
        """
        name = operator.gtfs_extracted_name
        with tempfile.TemporaryDirectory(prefix="gtfs_") as tmp:
            workspace = Path(tmp)
            try:
                with zipfile.ZipFile(io.BytesIO(data)) as archive:
                    count = 0
                    for info in archive.infolist():
                        if info.is_dir():
                            continue
                        filename = PurePosixPath(info.filename).name
                        if not filename:
                            continue
                        with archive.open(info) as src, open(workspace / filename, "wb") as dst:
                            shutil.copyfileobj(src, dst)
                        count += 1
            except zipfile.BadZipFile as exc:
                self._cache.remove(operator.gtfs_cache_key)
                raise InvalidDataError(f"Corrupt GTFS archive for {operator.key}: {exc}") from exc
            if not self._cache.save_directory(workspace, name):
                raise TransitError(f"Could not cache extracted GTFS feed {name}")
        logger.info("Extracted %d GTFS files for %s", count, operator.key)
        return self._cache.directory_path(name)
