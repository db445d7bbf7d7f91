"""Per-user bookmark relation over catalog items."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Set, Tuple

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.bookmark import Bookmark
from models.catalog_item import CatalogItem
from services.assets import AssetStore
from services.catalog import enrich_items
from services.errors import CatalogValidationError, DependencyFailureError
from services.pagination import PageRequest

logger = logging.getLogger(__name__)

# A toggle only loses a race to a concurrent insert of the same pair, after
# which the row exists and the next attempt deletes it.
MAX_TOGGLE_ATTEMPTS = 3


def _require_ids(user_id: str, item_id: str) -> Tuple[str, str]:
    user = str(user_id or "").strip()
    item = str(item_id or "").strip()
    if not user:
        raise CatalogValidationError("userId is required")
    if not item:
        raise CatalogValidationError("postId is required")
    return user, item


async def _delete_pair(user_id: str, item_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        delete(Bookmark)
        .where(Bookmark.user_id == user_id, Bookmark.item_id == item_id)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def _insert_pair(user_id: str, item_id: str, db: AsyncSession) -> bool:
    """Insert the pair; return False when it already exists."""
    db.add(Bookmark(user_id=user_id, item_id=item_id))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return False
    return True


async def toggle_bookmark_service(user_id: str, item_id: str, *, db: AsyncSession) -> Dict[str, Any]:
    """Delete the pair if present, otherwise insert it.

    Delete-then-insert against the unique constraint keeps concurrent
    toggles of the same pair serial: each attempt either removes an
    existing row or creates the only one.
    """
    user_id, item_id = _require_ids(user_id, item_id)
    for _ in range(MAX_TOGGLE_ATTEMPTS):
        removed = await _delete_pair(user_id, item_id, db)
        if removed:
            await db.commit()
            logger.info("bookmark_toggle user=%s item=%s bookmarked=False", user_id, item_id)
            return {"post_id": item_id, "bookmarked": False}
        await db.rollback()
        if await _insert_pair(user_id, item_id, db):
            logger.info("bookmark_toggle user=%s item=%s bookmarked=True", user_id, item_id)
            return {"post_id": item_id, "bookmarked": True}
    raise DependencyFailureError(f"bookmark toggle for user={user_id} item={item_id} kept conflicting")


async def add_bookmark_service(user_id: str, item_id: str, *, db: AsyncSession) -> Dict[str, Any]:
    user_id, item_id = _require_ids(user_id, item_id)
    created = await _insert_pair(user_id, item_id, db)
    logger.info("bookmark_add user=%s item=%s created=%s", user_id, item_id, created)
    return {"post_id": item_id, "bookmarked": True}


async def remove_bookmark_service(user_id: str, item_id: str, *, db: AsyncSession) -> Dict[str, Any]:
    user_id, item_id = _require_ids(user_id, item_id)
    removed = await _delete_pair(user_id, item_id, db)
    await db.commit()
    logger.info("bookmark_remove user=%s item=%s removed=%s", user_id, item_id, bool(removed))
    return {"post_id": item_id, "bookmarked": False}


async def set_bookmark_service(user_id: str, item_id: str, bookmarked: bool, *, db: AsyncSession) -> Dict[str, Any]:
    if bookmarked:
        return await add_bookmark_service(user_id, item_id, db=db)
    return await remove_bookmark_service(user_id, item_id, db=db)


async def list_bookmark_ids(user_id: str, db: AsyncSession) -> Set[str]:
    result = await db.execute(select(Bookmark.item_id).where(Bookmark.user_id == user_id))
    return set(result.scalars().all())


async def list_bookmarked_items_service(
    user_id: str,
    *,
    page: PageRequest,
    db: AsyncSession,
    assets: AssetStore,
) -> Tuple[List[Dict[str, Any]], int]:
    """Resolve bookmarks to catalog items, skipping ids that no longer exist."""
    count_result = await db.execute(
        select(func.count())
        .select_from(Bookmark)
        .join(CatalogItem, CatalogItem.id == Bookmark.item_id)
        .where(Bookmark.user_id == user_id)
    )
    total = int(count_result.scalar() or 0)
    if page.offset >= total:
        return [], total

    result = await db.execute(
        select(CatalogItem)
        .join(Bookmark, CatalogItem.id == Bookmark.item_id)
        .where(Bookmark.user_id == user_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.asc())
        .offset(page.offset)
        .limit(page.size)
    )
    items = result.scalars().all()
    return await enrich_items(items, assets), total
