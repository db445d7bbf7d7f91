"""API routers package."""

from . import bookmarks, catalog, health, moderation

__all__ = [
    "bookmarks",
    "catalog",
    "health",
    "moderation",
]
