"""
Polygon listing crawler for map-tile oriented listing providers.
"""
from .models import CrawlResult, FilterCriteria, Listing, Location, Tile, TileFailure
from .core import run_crawl, resolve_area_id
from .database import ResultCache, CACHE_TTL_SECONDS
from .errors import (
    CacheWriteFailure,
    CrawlAborted,
    CrawlCancelled,
    InvalidPolygon,
    MelkmapError,
    NoPolygonSelected,
)
from .export import save_output_rows, summarize_result
from .normalizer import normalize
from .provider import DivarProvider, Listings, Overflow, TileProvider, TransportError
from .tiler import decompose
from .utils import init_logger, now_iso

__version__ = "1.0.0"

__all__ = [
    "CrawlResult",
    "FilterCriteria",
    "Listing",
    "Location",
    "Tile",
    "TileFailure",
    "run_crawl",
    "resolve_area_id",
    "ResultCache",
    "CACHE_TTL_SECONDS",
    "CacheWriteFailure",
    "CrawlAborted",
    "CrawlCancelled",
    "InvalidPolygon",
    "MelkmapError",
    "NoPolygonSelected",
    "save_output_rows",
    "summarize_result",
    "normalize",
    "DivarProvider",
    "Listings",
    "Overflow",
    "TileProvider",
    "TransportError",
    "decompose",
    "init_logger",
    "now_iso",
]
