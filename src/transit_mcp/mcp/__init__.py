from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from transit_mcp.application.catalog_service import LineCatalog
from transit_mcp.application.gtfs_pipeline import GTFSPipeline
from transit_mcp.application.line_service import LineMetadataService
from transit_mcp.application.timetable_service import TimetableSynthesizer
from transit_mcp.application.timetable_store import TimetableRepository
from transit_mcp.infrastructure.cache import BlobCache
from transit_mcp.infrastructure.fetcher import ConditionalFetcher, create_http_client
from transit_mcp.infrastructure.kv_store import JsonFileKeyValueStore
from transit_mcp.infrastructure.settings import Settings
from transit_mcp.mcp.tools import register_tools


def create_mcp_app(settings: Settings | None = None) -> FastMCP:
    """Create and configure the FastMCP application with all services wired."""
    settings = settings or Settings.from_env()
    cache = BlobCache(settings.cache_dir)
    snapshots = BlobCache(settings.data_dir, "LineData")
    store = JsonFileKeyValueStore(settings.kv_path)
    fetcher = ConditionalFetcher(create_http_client(settings.http_timeout))

    line_svc = LineMetadataService(fetcher, cache, snapshots, store, settings)
    gtfs = GTFSPipeline(fetcher, cache, store, settings)
    catalog = LineCatalog(line_svc, gtfs)
    repository = TimetableRepository(store)
    synthesizer = TimetableSynthesizer(fetcher, gtfs, repository, settings)

    mcp = FastMCP("Transit Timetable MCP", stateless_http=True)
    register_tools(mcp, catalog, synthesizer, repository, settings)
    return mcp
