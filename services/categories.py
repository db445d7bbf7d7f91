"""Category enumeration derived from catalog rows."""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.catalog_item import ITEM_KIND_NEWS, ITEM_KIND_TOOL, CatalogItem
from services.errors import CatalogValidationError
from services.pagination import PageRequest, paginate

CATEGORY_TYPES = {
    "tools": ITEM_KIND_TOOL,
    "tool": ITEM_KIND_TOOL,
    "categories": ITEM_KIND_TOOL,
    "news": ITEM_KIND_NEWS,
    "newscategories": ITEM_KIND_NEWS,
}


def resolve_category_kind(value: Optional[str]) -> str:
    key = str(value or "").strip().lower()
    if not key:
        return ITEM_KIND_TOOL
    if key not in CATEGORY_TYPES:
        raise CatalogValidationError("type must be one of: tools, news")
    return CATEGORY_TYPES[key]


def rank_categories(categories: List[str], search: Optional[str] = None) -> List[str]:
    """Order categories case-insensitively, or by match position when searching."""
    term = str(search or "").strip().lower()
    if not term:
        return sorted(categories, key=lambda name: (name.lower(), name))

    matches = []
    for name in categories:
        position = name.lower().find(term)
        if position >= 0:
            matches.append((position, name.lower(), name))
    matches.sort()
    return [name for _, _, name in matches]


async def list_categories_service(
    *,
    db: AsyncSession,
    page: PageRequest,
    search: Optional[str] = None,
    kind: str = ITEM_KIND_TOOL,
) -> Tuple[List[str], int]:
    result = await db.execute(
        select(CatalogItem.category)
        .where(
            CatalogItem.kind == kind,
            CatalogItem.category.is_not(None),
            func.trim(CatalogItem.category) != "",
        )
        .distinct()
    )
    categories = [row for row in result.scalars().all() if row]
    return paginate(rank_categories(categories, search), page)
