"""
Route package initialization.
"""
from .crawl import router as crawl_router
from .posts import router as posts_router

__all__ = ["crawl_router", "posts_router"]
