"""
Crawl route handler streaming progress as newline-delimited JSON.
"""
import asyncio
import json
import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from melkmap.core import resolve_area_id, run_crawl
from melkmap.database import ResultCache
from melkmap.errors import CrawlAborted, CrawlCancelled, InvalidPolygon
from melkmap.models import CrawlResult
from melkmap.tiler import to_shape

from ..config import config
from ..database import get_cache, get_provider_factory
from ..models import CrawlRequest, CrawlResultOut, ListingOut

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["crawl"])


def result_event(result: CrawlResult) -> Dict[str, Any]:
    out = CrawlResultOut(**result.to_dict(), from_cache=result.from_cache)
    return {"type": "result", **out.model_dump()}


def _line(event: Dict[str, Any]) -> bytes:
    return (json.dumps(event, ensure_ascii=False) + "\n").encode("utf-8")


@router.post("/crawl")
async def crawl_polygon(
    body: CrawlRequest,
    cache: ResultCache = Depends(get_cache),
    provider_factory: Callable = Depends(get_provider_factory),
):
    """
    Crawl all listings inside the polygon.

    Streams ``progress`` events (with the listings added since the previous
    event) followed by a single ``result`` or ``error`` event. A fresh cached
    result is streamed as the result event alone.
    """
    try:
        to_shape(body.polygon)
    except InvalidPolygon as e:
        raise HTTPException(status_code=400, detail=str(e))

    area_id = resolve_area_id(body.polygon)
    logger.info(f"Starting crawl for polygon: {area_id}")

    if not body.force_refresh:
        cached = cache.get(area_id)
        if cached is not None:
            logger.info(f"Serving {len(cached.listings)} cached listings for {area_id}")
            return StreamingResponse(iter([_line(result_event(cached))]), media_type="application/x-ndjson")

    filters = body.filters.to_criteria()

    async def event_stream():
        queue: asyncio.Queue = asyncio.Queue()
        cancel_event = asyncio.Event()
        sent = 0

        def on_progress(fraction, status, snapshot):
            nonlocal sent
            new = snapshot[sent:]
            sent = len(snapshot)
            queue.put_nowait({
                "type": "progress",
                "fraction": fraction,
                "status": status,
                "count": len(snapshot),
                "new_listings": [ListingOut(**x.to_dict()).model_dump() for x in new],
            })

        async def runner():
            try:
                async with provider_factory() as provider:
                    result = await run_crawl(
                        body.polygon,
                        filters=filters,
                        provider=provider,
                        cache=cache,
                        on_progress=on_progress,
                        cell_side_km=config.CELL_SIDE_KM,
                        concurrency=config.CONCURRENCY,
                        max_split_depth=config.MAX_SPLIT_DEPTH,
                        cancel_event=cancel_event,
                        force_refresh=True,
                    )
                await queue.put(result_event(result))
            except CrawlAborted as e:
                await queue.put({"type": "error", "error": "crawl_aborted", "detail": str(e)})
            except CrawlCancelled as e:
                await queue.put({"type": "error", "error": "crawl_cancelled", "detail": str(e)})
            except Exception as e:
                logger.exception(f"Crawl for {area_id} failed")
                await queue.put({"type": "error", "error": "crawl_failed", "detail": str(e)})
            finally:
                await queue.put(None)

        task = asyncio.create_task(runner())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield _line(event)
            await task
        finally:
            # Client went away: stop issuing tile queries, cache stays untouched.
            cancel_event.set()
            if not task.done():
                await asyncio.wait([task], timeout=30)

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")
