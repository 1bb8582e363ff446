"""
Exception types raised by the crawl pipeline.
"""
from typing import List, Optional


class MelkmapError(Exception):
    """Base class for all crawl errors."""


class InvalidPolygon(MelkmapError):
    """Polygon input is malformed or has too few coordinates."""


class NoPolygonSelected(InvalidPolygon):
    """No usable polygon was supplied to a crawl."""


class CrawlAborted(MelkmapError):
    """Every tile of a crawl failed, nothing was collected."""

    def __init__(self, message: str, failures: Optional[List] = None):
        super().__init__(message)
        self.failures = failures or []


class CrawlCancelled(MelkmapError):
    """Crawl was cancelled by the caller before all tiles were fetched."""

    def __init__(self, message: str, partial: Optional[List] = None):
        super().__init__(message)
        self.partial = partial or []


class CacheWriteFailure(MelkmapError):
    """Result could not be written to the cache store."""
