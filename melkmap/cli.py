"""
Command line entry point: crawl every listing inside a GeoJSON polygon.
"""
import argparse
import asyncio
import json
import os
import sys

from .core import run_crawl
from .database import CACHE_TTL_SECONDS, ResultCache
from .errors import CrawlAborted, InvalidPolygon
from .export import save_output_rows, summarize_result
from .models import FilterCriteria
from .provider import DIVAR_BASE_URL, DivarProvider
from .tiler import DEFAULT_CELL_SIDE_KM, to_shape
from .utils import init_logger, now_iso


def _bool_flag(value: str) -> bool:
    v = value.strip().lower()
    if v in ("1", "true", "yes", "y"):
        return True
    if v in ("0", "false", "no", "n"):
        return False
    raise argparse.ArgumentTypeError(f"expected yes/no, got {value!r}")


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Crawl apartment listings inside a GeoJSON polygon, tile by tile")
    ap.add_argument("polygon", help="Path to a GeoJSON Feature/Polygon/MultiPolygon file")
    ap.add_argument("--out", type=str, default="melkmap_export.csv", help="CSV/XLSX/JSON file to write results to")
    ap.add_argument("--cell-side-km", type=float, default=DEFAULT_CELL_SIDE_KM, help="Target tile side in km")
    ap.add_argument("--concurrency", type=int, default=1, help="Tiles fetched in parallel")
    ap.add_argument("--max-split-depth", type=int, default=0,
                    help="Split overflowing tiles into quadrants up to this depth (0 disables)")
    ap.add_argument("--details", action="store_true", help="Fetch description/address for every listing")
    ap.add_argument("--force-refresh", action="store_true", help="Ignore cached results for this area")
    ap.add_argument("--db", type=str, default=os.getenv("MELKMAP_CACHE_DB", "./data/melkmap_cache.db"),
                    help="Path to SQLite result cache")
    ap.add_argument("--ttl-hours", type=float, default=CACHE_TTL_SECONDS / 3600, help="Cache freshness window")
    ap.add_argument("--base-url", type=str, default=os.getenv("MELKMAP_PROVIDER_URL", DIVAR_BASE_URL),
                    help="Provider (or proxy) base URL")
    # Filters
    ap.add_argument("--elevator", type=_bool_flag, default=None, help="yes/no")
    ap.add_argument("--parking", type=_bool_flag, default=None, help="yes/no")
    ap.add_argument("--balcony", type=_bool_flag, default=None, help="yes/no")
    ap.add_argument("--size", type=float, nargs=2, metavar=("MIN", "MAX"), default=None, help="Size range in m2")
    ap.add_argument("--price", type=float, nargs=2, metavar=("MIN", "MAX"), default=None, help="Price range")
    ap.add_argument("--advertiser", choices=["person", "business"], default=None, help="Advertiser type")
    # Logging
    lvl_choices = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    ap.add_argument("--log-level", choices=lvl_choices, default=None,
                    help="Global log level for both console and file (overrides --log-console/--log-file).")
    ap.add_argument("--log-console", choices=lvl_choices, default=os.getenv("LOG_CONSOLE", "INFO"),
                    help="Console log level (default from env LOG_CONSOLE or INFO).")
    ap.add_argument("--log-file", choices=lvl_choices, default=os.getenv("LOG_FILE", "DEBUG"),
                    help="File log level (default from env LOG_FILE or DEBUG).")
    ap.add_argument("--log-file-path", default=os.getenv("LOG_FILE_PATH", "melkmap.log"),
                    help="Path to log file (default from env LOG_FILE_PATH or melkmap.log).")
    ap.add_argument("--no-file-log", action="store_true",
                    help="Disable file logging (only console output).")
    return ap.parse_args(argv)


def filters_from_args(args) -> FilterCriteria:
    return FilterCriteria(
        elevator=args.elevator,
        parking=args.parking,
        balcony=args.balcony,
        size=tuple(args.size) if args.size else None,
        price=tuple(args.price) if args.price else None,
        advertiser_type=args.advertiser,
    )


async def crawl_with_provider(args, polygon, cache, logger):
    def on_progress(fraction, status, snapshot):
        logger.info(f">>> [{fraction:6.1%}] {status}")

    async with DivarProvider(base_url=args.base_url, logger=logger) as provider:
        return await run_crawl(
            polygon,
            filters=filters_from_args(args),
            provider=provider,
            cache=cache,
            on_progress=on_progress,
            cell_side_km=args.cell_side_km,
            concurrency=args.concurrency,
            max_split_depth=args.max_split_depth,
            force_refresh=args.force_refresh,
            details=args.details,
            logger=logger,
        )


def main(argv=None) -> int:
    args = parse_args(argv)
    eff_console = args.log_level or args.log_console
    eff_file = args.log_level or args.log_file
    logger = init_logger(
        console_level=eff_console,
        file_level=eff_file,
        log_file=None if args.no_file_log else args.log_file_path
    )
    logger.info(f">>> Run started at {now_iso()}")

    with open(args.polygon, "r", encoding="utf-8") as f:
        polygon = json.load(f)

    try:
        to_shape(polygon)
    except InvalidPolygon as e:
        logger.error(f"Invalid polygon: {e}")
        return 2

    cache = ResultCache(args.db, ttl_seconds=args.ttl_hours * 3600)
    try:
        result = asyncio.run(crawl_with_provider(args, polygon, cache, logger))
    except CrawlAborted as e:
        logger.error(f"Crawl aborted: {e}")
        return 1
    finally:
        cache.close()

    summary = summarize_result(result)
    logger.info(f">>> Summary: {json.dumps(summary, ensure_ascii=False)}")
    save_output_rows(result, args.out, logger=logger)
    return 0


if __name__ == "__main__":
    sys.exit(main())
