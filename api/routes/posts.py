"""
API route handlers for cached crawl results.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from melkmap.database import ResultCache
from melkmap.export import listings_to_dataframe, summarize_result

from ..database import get_cache
from ..models import CacheEntryOut, CrawlResultOut

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["posts"])


def _load(cache: ResultCache, area_id: str):
    result = cache.get(area_id)
    if result is None:
        raise HTTPException(status_code=404, detail="No fresh crawl result for this area")
    return result


@router.get("/posts/{area_id}", response_model=CrawlResultOut)
async def get_posts(area_id: str, cache: ResultCache = Depends(get_cache)):
    """Load the cached listings of an area without crawling."""
    result = _load(cache, area_id)
    return CrawlResultOut(**result.to_dict(), from_cache=True)


@router.get("/posts/{area_id}/summary")
async def get_posts_summary(area_id: str, cache: ResultCache = Depends(get_cache)):
    """Counts, price/size ranges and bounds of the cached listings."""
    return summarize_result(_load(cache, area_id))


@router.get("/posts/{area_id}/export/csv")
async def export_posts_csv(area_id: str, cache: ResultCache = Depends(get_cache)):
    """Export cached listings of an area as CSV."""
    result = _load(cache, area_id)
    try:
        df = listings_to_dataframe(result.listings)
        csv_content = df.to_csv(index=False).encode("utf-8")
    except Exception as e:
        logger.error(f"Error exporting CSV for {area_id}: {e}")
        raise HTTPException(status_code=500, detail="Error generating CSV export")

    return StreamingResponse(
        iter([csv_content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="melkmap_{area_id}.csv"'}
    )


@router.get("/cache", response_model=List[CacheEntryOut])
async def list_cache(cache: ResultCache = Depends(get_cache)):
    """List fresh cache entries."""
    return [
        CacheEntryOut(area_id=area_id, stored_at=stored_at, listing_count=count)
        for area_id, stored_at, count in cache.entries()
    ]


@router.delete("/cache/{area_id}")
async def evict_area(area_id: str, cache: ResultCache = Depends(get_cache)):
    """Drop the cached result of one area."""
    removed = cache.evict(area_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Area not cached")
    return {"evicted": area_id}


@router.delete("/cache")
async def evict_all(cache: ResultCache = Depends(get_cache)):
    """Drop every cached result."""
    return {"evicted": cache.evict_all()}
