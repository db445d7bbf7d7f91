"""View counting with per-session de-duplication."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from functools import lru_cache
from typing import Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.catalog_item import CatalogItem
from services.errors import CatalogValidationError, NotFoundError

logger = logging.getLogger(__name__)


class ViewGuard(Protocol):
    async def claim(self, session_key: str, item_id: str) -> bool:
        """Mark the pair as seen; return False when it already was."""

    async def release(self, session_key: str, item_id: str) -> None:
        """Forget a claim whose increment did not happen."""


class MemoryViewGuard:
    """Process-local TTL set of (session, item) pairs.

    Every entry gets the same TTL, so insertion order is expiry order and
    pruning only ever pops from the front.
    """

    def __init__(self, ttl_seconds: int = 1800, max_entries: int = 100000):
        self.ttl_seconds = max(int(ttl_seconds), 1)
        self.max_entries = max(int(max_entries), 1)
        self._seen: OrderedDict[Tuple[str, str], float] = OrderedDict()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._seen:
            expires_at = next(iter(self._seen.values()))
            if expires_at > now and len(self._seen) < self.max_entries:
                break
            self._seen.popitem(last=False)

    async def claim(self, session_key: str, item_id: str) -> bool:
        now = time.monotonic()
        key = (session_key, item_id)
        async with self._lock:
            expires_at = self._seen.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._seen.pop(key, None)
            self._prune(now)
            self._seen[key] = now + self.ttl_seconds
            return True

    async def release(self, session_key: str, item_id: str) -> None:
        async with self._lock:
            self._seen.pop((session_key, item_id), None)


class RedisViewGuard:
    """Shared guard backed by Redis ``SET NX EX``.

    Falls back to a local guard while Redis is unreachable, like the rate
    limiter does.
    """

    def __init__(self, redis_url: str, ttl_seconds: int = 1800, fallback: Optional[MemoryViewGuard] = None):
        self.ttl_seconds = max(int(ttl_seconds), 1)
        self._client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
        )
        self._fallback = fallback or MemoryViewGuard(ttl_seconds=self.ttl_seconds)

    @staticmethod
    def _key(session_key: str, item_id: str) -> str:
        return f"catalog:view:{session_key}:{item_id}"

    async def claim(self, session_key: str, item_id: str) -> bool:
        try:
            created = await self._client.set(self._key(session_key, item_id), "1", nx=True, ex=self.ttl_seconds)
            return bool(created)
        except Exception as exc:
            logger.warning("view_guard_redis_unavailable falling back to local guard: %s", exc)
            return await self._fallback.claim(session_key, item_id)

    async def release(self, session_key: str, item_id: str) -> None:
        try:
            await self._client.delete(self._key(session_key, item_id))
        except Exception as exc:
            logger.warning("view_guard_redis_unavailable on release: %s", exc)
        await self._fallback.release(session_key, item_id)


@lru_cache(maxsize=1)
def _default_view_guard() -> ViewGuard:
    backend = str(settings.VIEW_GUARD_BACKEND or "memory").strip().lower()
    if backend == "redis":
        return RedisViewGuard(settings.REDIS_URL, ttl_seconds=settings.VIEW_GUARD_TTL_SECONDS)
    return MemoryViewGuard(
        ttl_seconds=settings.VIEW_GUARD_TTL_SECONDS,
        max_entries=settings.VIEW_GUARD_MAX_ENTRIES,
    )


def get_view_guard() -> ViewGuard:
    """FastAPI dependency returning the configured view guard."""
    return _default_view_guard()


async def _current_view_count(item_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(CatalogItem.view_count).where(CatalogItem.id == item_id))
    count = result.scalar_one_or_none()
    if count is None:
        raise NotFoundError("Post not found")
    return int(count)


async def register_view_service(
    item_id: str,
    session_key: str,
    *,
    db: AsyncSession,
    guard: ViewGuard,
) -> Dict[str, object]:
    """Count a view at most once per (session, item).

    The increment is one ``UPDATE ... SET view_count = view_count + 1``
    statement so concurrent views never lose updates.
    """
    item_id = str(item_id or "").strip()
    session_key = str(session_key or "").strip()
    if not item_id:
        raise CatalogValidationError("postId is required")
    if not session_key:
        raise CatalogValidationError("session key is required")

    if not await guard.claim(session_key, item_id):
        return {"post_id": item_id, "view_count": await _current_view_count(item_id, db), "counted": False}

    try:
        result = await db.execute(
            update(CatalogItem)
            .where(CatalogItem.id == item_id)
            .values(view_count=CatalogItem.view_count + 1)
            .returning(CatalogItem.view_count)
            .execution_options(synchronize_session=False)
        )
        new_count = result.scalar_one_or_none()
        if new_count is None:
            await db.rollback()
            raise NotFoundError("Post not found")
        await db.commit()
    except Exception:
        await guard.release(session_key, item_id)
        raise

    logger.info("post_view_registered item=%s view_count=%s", item_id, new_count)
    return {"post_id": item_id, "view_count": int(new_count), "counted": True}
