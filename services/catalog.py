"""Catalog listing, lookup and ranking services."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.catalog_item import ITEM_KIND_NEWS, ITEM_KIND_TOOL, CatalogItem
from services.assets import ASSET_ICON, ASSET_IMAGE, ASSET_NEWS_IMAGE, AssetStore
from services.errors import AssetNotFoundError, CatalogValidationError, NotFoundError
from services.pagination import PageRequest

logger = logging.getLogger(__name__)

FREEBIES_CATEGORY = "freebies"
FREEBIES_LABEL = "Freebies"
FREEBIES_PRICE_TIERS = ("Free", "Freemium")

SORT_COLUMNS = {
    "view_count": CatalogItem.view_count,
    "post_view": CatalogItem.view_count,
    "views": CatalogItem.view_count,
    "title": CatalogItem.title,
    "post_title": CatalogItem.title,
    "created_at": CatalogItem.created_at,
    "price": CatalogItem.price,
    "post_price": CatalogItem.price,
    "category": CatalogItem.category,
    "post_category": CatalogItem.category,
}
CASE_INSENSITIVE_SORTS = {"title", "post_title", "price", "post_price", "category", "post_category"}
ALLOWED_SORT_ORDERS = {"asc", "desc"}
ASSET_KINDS_BY_ITEM_KIND = {
    ITEM_KIND_TOOL: (ASSET_IMAGE, ASSET_ICON),
    ITEM_KIND_NEWS: (ASSET_NEWS_IMAGE,),
}


@dataclass(frozen=True)
class CatalogFilter:
    kind: str = ITEM_KIND_TOOL
    category: Optional[str] = None
    search_term: Optional[str] = None
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    price: Optional[str] = None
    page: PageRequest = field(default_factory=PageRequest)


@dataclass(frozen=True)
class CompiledCatalogQuery:
    predicates: Tuple[Any, ...]
    order_by: Tuple[Any, ...]
    relabel_freebies: bool


def _clean(value: Optional[str]) -> str:
    return str(value or "").strip()


def is_freebies_category(category: Optional[str]) -> bool:
    return _clean(category).lower() == FREEBIES_CATEGORY


def compile_catalog_query(catalog_filter: CatalogFilter) -> CompiledCatalogQuery:
    """Turn a filter into store predicates and a total ordering.

    The same filter always compiles to the same predicates and ordering.
    """
    predicates: List[Any] = [CatalogItem.kind == catalog_filter.kind]

    category = _clean(catalog_filter.category)
    relabel = False
    if category:
        if is_freebies_category(category):
            relabel = True
            predicates.append(
                or_(
                    func.lower(CatalogItem.category) == FREEBIES_CATEGORY,
                    CatalogItem.price.in_(FREEBIES_PRICE_TIERS),
                )
            )
        else:
            predicates.append(CatalogItem.category == category)

    term = _clean(catalog_filter.search_term)
    if term:
        predicates.append(func.lower(CatalogItem.title).contains(term.lower(), autoescape=True))

    price = _clean(catalog_filter.price)
    if price:
        predicates.append(CatalogItem.price == price)

    sort_key = _clean(catalog_filter.sort_by) or "view_count"
    if sort_key not in SORT_COLUMNS:
        raise CatalogValidationError(
            f"Unsupported sortBy '{sort_key}'. Use one of: {', '.join(sorted(SORT_COLUMNS))}"
        )
    sort_order = _clean(catalog_filter.sort_order).lower()
    if sort_order and sort_order not in ALLOWED_SORT_ORDERS:
        raise CatalogValidationError("sortOrder must be 'asc' or 'desc'")
    if not sort_order:
        sort_order = "desc" if sort_key in {"view_count", "post_view", "views"} else "asc"

    column = SORT_COLUMNS[sort_key]
    sort_expr = func.lower(column) if sort_key in CASE_INSENSITIVE_SORTS else column
    primary = sort_expr.asc() if sort_order == "asc" else sort_expr.desc()
    order_by = (primary, CatalogItem.created_at.asc(), CatalogItem.id.asc())

    return CompiledCatalogQuery(
        predicates=tuple(predicates),
        order_by=order_by,
        relabel_freebies=relabel,
    )


def serialize_item(
    item: CatalogItem,
    *,
    category_label: Optional[str] = None,
    assets: Optional[Dict[str, Optional[str]]] = None,
) -> Dict[str, Any]:
    payload = {
        "id": item.id,
        "kind": item.kind,
        "title": item.title,
        "category": category_label if category_label is not None else item.category,
        "price": item.price,
        "description": item.description,
        "link": item.link,
        "view_count": int(item.view_count or 0),
        "created_at": item.created_at.isoformat() if item.created_at else None,
    }
    if assets is not None:
        payload.update(assets)
    return payload


async def _resolve_or_none(assets: AssetStore, item_id: str, kind: str) -> Optional[str]:
    try:
        return await assets.resolve(item_id, kind)
    except AssetNotFoundError:
        return None


async def resolve_item_assets(item: CatalogItem, assets: AssetStore) -> Dict[str, Optional[str]]:
    """Resolve every asset kind for one item.

    Missing assets become ``None``; a ``DependencyFailureError`` propagates.
    """
    kinds = ASSET_KINDS_BY_ITEM_KIND.get(item.kind, (ASSET_IMAGE, ASSET_ICON))
    urls = await asyncio.gather(*(_resolve_or_none(assets, item.id, kind) for kind in kinds))
    resolved: Dict[str, Optional[str]] = {"image": None, "icon": None}
    for kind, url in zip(kinds, urls):
        resolved["image" if kind in (ASSET_IMAGE, ASSET_NEWS_IMAGE) else "icon"] = url
    return resolved


async def enrich_items(
    items: Sequence[CatalogItem],
    assets: AssetStore,
    *,
    category_label: Optional[str] = None,
) -> List[Dict[str, Any]]:
    resolved = await asyncio.gather(*(resolve_item_assets(item, assets) for item in items))
    return [
        serialize_item(item, category_label=category_label, assets=item_assets)
        for item, item_assets in zip(items, resolved)
    ]


async def list_items_service(
    catalog_filter: CatalogFilter,
    *,
    db: AsyncSession,
    assets: AssetStore,
) -> Tuple[List[Dict[str, Any]], int]:
    """Return one page of matching items plus the total match count."""
    compiled = compile_catalog_query(catalog_filter)

    count_result = await db.execute(
        select(func.count()).select_from(CatalogItem).where(*compiled.predicates)
    )
    total = int(count_result.scalar() or 0)

    page = catalog_filter.page
    if page.offset >= total:
        return [], total

    result = await db.execute(
        select(CatalogItem)
        .where(*compiled.predicates)
        .order_by(*compiled.order_by)
        .offset(page.offset)
        .limit(page.size)
    )
    items = result.scalars().all()
    label = FREEBIES_LABEL if compiled.relabel_freebies else None
    return await enrich_items(items, assets, category_label=label), total


async def get_item(item_id: str, db: AsyncSession) -> CatalogItem:
    result = await db.execute(select(CatalogItem).where(CatalogItem.id == item_id))
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError("Post not found")
    return item


async def get_item_service(item_id: str, *, db: AsyncSession, assets: AssetStore) -> Dict[str, Any]:
    item = await get_item(item_id, db)
    return serialize_item(item, assets=await resolve_item_assets(item, assets))


async def popular_items_service(
    category: str,
    *,
    db: AsyncSession,
    assets: AssetStore,
    limit: Optional[int] = None,
    kind: str = ITEM_KIND_TOOL,
) -> List[Dict[str, Any]]:
    """Top items by view count inside a category (``freebies`` included)."""
    if not _clean(category):
        raise CatalogValidationError("category is required")
    size = max(1, min(int(limit or settings.POPULAR_POSTS_LIMIT), settings.MAX_PAGE_SIZE))
    items, _ = await list_items_service(
        CatalogFilter(kind=kind, category=category, page=PageRequest(index=0, size=size)),
        db=db,
        assets=assets,
    )
    return items


async def trending_items_service(
    *,
    db: AsyncSession,
    assets: AssetStore,
    limit: Optional[int] = None,
    kind: str = ITEM_KIND_TOOL,
) -> List[Dict[str, Any]]:
    size = max(1, min(int(limit or settings.TRENDING_POSTS_LIMIT), settings.MAX_PAGE_SIZE))
    items, _ = await list_items_service(
        CatalogFilter(kind=kind, page=PageRequest(index=0, size=size)),
        db=db,
        assets=assets,
    )
    return items
