"""
Melkmap crawl API.

Crawls a polygon on request, streaming progress, and serves the cached
results those crawls leave behind.
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from melkmap.database import ResultCache
from melkmap.errors import InvalidPolygon, MelkmapError

from .config import config
from .database import close_cache, get_cache
from .routes import crawl_router, posts_router

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Melkmap crawl API...")
    try:
        config.validate()
        logger.info(f"Cache: {config.CACHE_DB_PATH} (ttl {config.CACHE_TTL_SECONDS:.0f}s)")
        logger.info(f"Provider: {config.PROVIDER_BASE_URL}, "
                    f"cell {config.CELL_SIDE_KM} km, concurrency {config.CONCURRENCY}")
        yield
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise
    finally:
        logger.info("Shutting down Melkmap crawl API...")
        close_cache()


async def melkmap_error_handler(request: Request, exc: MelkmapError):
    status = 400 if isinstance(exc, InvalidPolygon) else 500
    logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def health_check(cache: ResultCache = Depends(get_cache)):
    """Liveness plus a cache round trip."""
    try:
        cached_areas = len(cache.entries())
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Result cache unavailable")
    return {
        "status": "healthy",
        "version": config.API_VERSION,
        "cache": "connected",
        "cached_areas": cached_areas,
    }


async def metrics(cache: ResultCache = Depends(get_cache)):
    entries = cache.entries()
    return {
        "cached_areas": len(entries),
        "cached_listings": sum(count for _, _, count in entries),
        "api_version": config.API_VERSION,
    }


def create_app() -> FastAPI:
    app = FastAPI(
        title=config.API_TITLE,
        version=config.API_VERSION,
        description=config.API_DESCRIPTION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=config.CORS_ALLOW_CREDENTIALS,
        allow_methods=config.CORS_ALLOW_METHODS,
        allow_headers=config.CORS_ALLOW_HEADERS,
    )
    app.add_exception_handler(MelkmapError, melkmap_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_api_route("/health", health_check, methods=["GET"])
    app.add_api_route("/metrics", metrics, methods=["GET"])
    app.include_router(crawl_router)
    app.include_router(posts_router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        log_level=config.LOG_LEVEL.lower(),
    )
