"""
API configuration and settings management.
"""
import os

from melkmap.database import CACHE_TTL_SECONDS
from melkmap.provider import DIVAR_BASE_URL
from melkmap.tiler import DEFAULT_CELL_SIDE_KM


class Config:
    """Application configuration."""

    # Result cache
    CACHE_DB_PATH: str = os.getenv("MELKMAP_CACHE_DB", "./data/melkmap_cache.db")
    CACHE_TTL_SECONDS: float = float(os.getenv("MELKMAP_CACHE_TTL", CACHE_TTL_SECONDS))

    # Crawl settings
    PROVIDER_BASE_URL: str = os.getenv("MELKMAP_PROVIDER_URL", DIVAR_BASE_URL)
    CELL_SIDE_KM: float = float(os.getenv("MELKMAP_CELL_SIDE_KM", DEFAULT_CELL_SIDE_KM))
    CONCURRENCY: int = int(os.getenv("MELKMAP_CONCURRENCY", "1"))
    MAX_SPLIT_DEPTH: int = int(os.getenv("MELKMAP_MAX_SPLIT_DEPTH", "0"))

    # API settings
    API_HOST: str = os.getenv("MELKMAP_API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("MELKMAP_API_PORT", "8000"))
    API_TITLE: str = "Melkmap Crawl API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Crawl apartment listings inside a polygon with streamed progress"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration on startup."""
        if cls.CELL_SIDE_KM <= 0:
            raise ValueError(f"MELKMAP_CELL_SIDE_KM must be positive, got {cls.CELL_SIDE_KM}")
        if cls.CONCURRENCY < 1:
            raise ValueError(f"MELKMAP_CONCURRENCY must be at least 1, got {cls.CONCURRENCY}")
        if cls.MAX_SPLIT_DEPTH < 0:
            raise ValueError(f"MELKMAP_MAX_SPLIT_DEPTH must not be negative, got {cls.MAX_SPLIT_DEPTH}")
        if cls.CACHE_TTL_SECONDS <= 0:
            raise ValueError(f"MELKMAP_CACHE_TTL must be positive, got {cls.CACHE_TTL_SECONDS}")

# Global config instance
config = Config()
