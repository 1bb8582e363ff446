"""
Core crawl orchestration over polygon tiles.

One ``run_crawl`` call owns its accumulator: listings are merged tile by
tile in the order the tiler produced the tiles, the first occurrence of a
token wins, and progress is reported after every merged tile.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import CacheWriteFailure, CrawlAborted, CrawlCancelled, InvalidPolygon, NoPolygonSelected
from .models import CrawlResult, FilterCriteria, Listing, Tile, TileFailure
from .normalizer import normalize
from .provider import Listings, Overflow, TileProvider, TransportError
from .tiler import DEFAULT_CELL_SIDE_KM, decompose, extract_geometry, to_shape
from .utils import canonical_json, now_iso, sha256_hexdigest

ProgressFn = Callable[[float, str, List[Listing]], None]

module_logger = logging.getLogger(__name__)


@dataclass
class TileOutcome:
    """Raw posts and failures collected for one tiler tile (and its splits)."""

    tile: Tile
    posts: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[TileFailure] = field(default_factory=list)

    @property
    def transport_failed(self) -> bool:
        """True when the provider never gave a usable answer for this tile."""
        return (
            not self.posts
            and bool(self.failures)
            and all(f.reason == "transport" for f in self.failures)
        )


def resolve_area_id(polygon: Dict[str, Any]) -> str:
    """
    Area identifier for caching: feature ``id`` or ``name`` property, else
    a hash of the geometry so different unnamed polygons never collide.
    """
    props = polygon.get("properties") if isinstance(polygon, dict) else None
    if isinstance(props, dict):
        for key in ("id", "name"):
            value = props.get(key)
            if value not in (None, ""):
                return str(value)
    geometry = extract_geometry(polygon)
    return "geom-" + sha256_hexdigest(canonical_json(geometry))[:16]


async def fetch_tile(
    provider: TileProvider,
    tile: Tile,
    filters: FilterCriteria,
    max_split_depth: int = 0,
    logger=None,
    cancel_event: Optional[asyncio.Event] = None,
) -> TileOutcome:
    """
    Query one tile. Overflowing tiles are split into quadrants while
    ``tile.depth < max_split_depth``; past that they are recorded as failed.
    No further quadrants are queried once ``cancel_event`` is set.
    """
    logger = logger or module_logger
    outcome = TileOutcome(tile=tile)
    try:
        response = await provider.query_tile(tile, filters)
    except Exception as e:
        logger.exception(f"Provider raised for tile {tile.label()}")
        response = TransportError(detail=f"{type(e).__name__}: {e}")

    if isinstance(response, Listings):
        outcome.posts.extend(response.posts)
    elif isinstance(response, Overflow):
        if tile.depth < max_split_depth:
            logger.info(f"Tile {tile.label()} overflowed ({response.cluster_count} clusters), splitting")
            for sub in tile.split():
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Crawl cancelled, not splitting tile {tile.label()} further")
                    break
                child = await fetch_tile(provider, sub, filters, max_split_depth, logger, cancel_event)
                outcome.posts.extend(child.posts)
                outcome.failures.extend(child.failures)
        else:
            logger.warning(
                f"Tile {tile.label()} too dense ({response.cluster_count} clusters); "
                f"its listings are missing from this crawl"
            )
            outcome.failures.append(TileFailure(
                tile=tile, reason="overflow",
                detail=f"{response.cluster_count} clusters",
                cluster_count=response.cluster_count,
            ))
    else:
        detail = getattr(response, "detail", repr(response))
        logger.error(f"Error fetching tile {tile.label()}: {detail}")
        outcome.failures.append(TileFailure(tile=tile, reason="transport", detail=detail))
    return outcome


def merge_posts(accumulator: Dict[str, Listing], posts: List[Dict[str, Any]]) -> int:
    """Normalize posts into the accumulator; existing tokens are kept. Returns count added."""
    added = 0
    for post in posts:
        listing = normalize(post)
        if listing is None or listing.token in accumulator:
            continue
        accumulator[listing.token] = listing
        added += 1
    return added


def _status(done: int, total: int, found: int, failed: int) -> str:
    s = f"Fetched {done}/{total} tiles, {found} listings so far"
    if failed:
        s += f" ({failed} tiles failed)"
    return s


async def enrich_details(provider: Any, listings: List[Listing], logger=None) -> None:
    """Second pass: fill description and address from the post details endpoint."""
    logger = logger or module_logger
    logger.info(f"Second pass over {len(listings)} listings...")
    for lst in listings:
        details = await provider.fetch_post_details(lst.token)
        if details is not None:
            lst.description = details.description
            lst.address = details.address


async def run_crawl(
    polygon: Optional[Dict[str, Any]],
    filters: Optional[FilterCriteria] = None,
    provider: Optional[TileProvider] = None,
    cache=None,
    on_progress: Optional[ProgressFn] = None,
    cell_side_km: float = DEFAULT_CELL_SIDE_KM,
    concurrency: int = 1,
    max_split_depth: int = 0,
    cancel_event: Optional[asyncio.Event] = None,
    force_refresh: bool = False,
    details: bool = False,
    logger=None,
) -> CrawlResult:
    """
    Crawl every listing inside ``polygon``.

    The cache is consulted first unless ``force_refresh`` is set. Tile
    failures are recorded on the result; only an invalid polygon
    (``NoPolygonSelected``), a crawl where every tile failed in transport
    (``CrawlAborted``) or a cancellation (``CrawlCancelled``) raise.
    """
    logger = logger or module_logger

    try:
        to_shape(polygon)
    except NoPolygonSelected:
        raise
    except InvalidPolygon as e:
        raise NoPolygonSelected(str(e)) from e

    area_id = resolve_area_id(polygon)

    def report(fraction: float, status: str, snapshot: List[Listing]) -> None:
        if on_progress is not None:
            on_progress(fraction, status, list(snapshot))

    if cache is not None and not force_refresh:
        cached = cache.get(area_id)
        if cached is not None:
            logger.info(f"Loaded {len(cached.listings)} listings from cache for area {area_id}")
            report(1.0, f"Loaded {len(cached.listings)} listings from cache", cached.listings)
            return cached

    if provider is None:
        raise ValueError("A provider is required when the area is not cached")

    filters = filters or FilterCriteria()
    tiles = decompose(polygon, cell_side_km)
    total = len(tiles)
    logger.info(f"Starting crawl for area {area_id}: {total} tiles")

    accumulator: Dict[str, Listing] = {}
    failures: List[TileFailure] = []
    outcomes: List[TileOutcome] = []
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def worker(tile: Tile) -> Optional[TileOutcome]:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return None
            return await fetch_tile(provider, tile, filters, max_split_depth, logger, cancel_event)

    report(0.0, "Start fetching...", [])
    tasks = [asyncio.ensure_future(worker(t)) for t in tiles]
    skipped = 0
    try:
        for i, task in enumerate(tasks, 1):
            outcome = await task
            if outcome is None:
                skipped += 1
                continue
            outcomes.append(outcome)
            added = merge_posts(accumulator, outcome.posts)
            failures.extend(outcome.failures)
            logger.info(
                f"Tile {i}/{total} fetched. Added {added} listings. Total: {len(accumulator)}"
            )
            report(i / total, _status(i, total, len(accumulator), len(failures)), list(accumulator.values()))
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()

    listings = list(accumulator.values())

    if skipped or (cancel_event is not None and cancel_event.is_set()):
        logger.warning(f"Crawl for area {area_id} cancelled after {len(outcomes)}/{total} tiles")
        raise CrawlCancelled(f"Crawl cancelled after {len(outcomes)}/{total} tiles", partial=listings)

    if outcomes and all(o.transport_failed for o in outcomes):
        logger.error(f"All {total} tiles failed for area {area_id}")
        raise CrawlAborted(f"All {total} tiles failed", failures=failures)

    if details and listings and hasattr(provider, "fetch_post_details"):
        await enrich_details(provider, listings, logger)

    result = CrawlResult(
        area_id=area_id,
        listings=listings,
        completed_at=now_iso(),
        tile_count=total,
        failed_tiles=failures,
    )

    status = f"Completed! Found {len(listings)} listings"
    if failures:
        status += f" ({len(failures)} tiles failed, coverage incomplete)"
    logger.info(f"Fetch complete for area {area_id}: {status}")
    report(1.0, status, listings)

    if cache is not None:
        try:
            cache.put(area_id, result)
        except CacheWriteFailure as e:
            logger.warning(f"Could not cache result for area {area_id}: {e}")

    return result
