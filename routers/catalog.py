"""Catalog browsing, ranking and view registration router."""

from __future__ import annotations

import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Body, Cookie, Depends, Header, Query, Response
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.catalog_item import ITEM_KIND_NEWS, ITEM_KIND_TOOL
from routers.rate_limit import rate_limit
from services.assets import AssetStore, get_asset_store
from services.catalog import (
    CatalogFilter,
    get_item_service,
    list_items_service,
    popular_items_service,
    trending_items_service,
)
from services.categories import list_categories_service, resolve_category_kind
from services.errors import AssetNotFoundError, NotFoundError
from services.pagination import resolve_page_request, total_pages
from services.views import ViewGuard, get_view_guard, register_view_service

router = APIRouter()

SESSION_COOKIE = "catalog_session"
SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 30


class RegisterViewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_id: str = Field(alias="postId", min_length=1)
    # Older clients still send the count they last saw; it is ignored.
    post_view: Optional[int] = None


def _listing_response(items, total: int, page_size: int, page_index: int):
    return {
        "items": items,
        "total_count": total,
        "page": page_index + 1,
        "page_size": page_size,
        "total_pages": total_pages(total, page_size),
    }


async def _list(
    *,
    kind: str,
    category: Optional[str],
    search_term: Optional[str],
    sort_by: Optional[str],
    sort_order: Optional[str],
    price: Optional[str],
    offset: Optional[int],
    limit: Optional[int],
    page: Optional[int],
    page_size: Optional[int],
    db: AsyncSession,
    assets: AssetStore,
):
    page_request = resolve_page_request(offset=offset, limit=limit, page=page, page_size=page_size)
    catalog_filter = CatalogFilter(
        kind=kind,
        category=category,
        search_term=search_term,
        sort_by=sort_by,
        sort_order=sort_order,
        price=price,
        page=page_request,
    )
    items, total = await list_items_service(catalog_filter, db=db, assets=assets)
    return _listing_response(items, total, page_request.size, page_request.index)


@router.get("/categories")
async def list_categories(
    category_type: Optional[str] = Query(default=None, alias="type", description="tools | news"),
    search: Optional[str] = Query(default=None, alias="searchTerm"),
    offset: Optional[int] = Query(default=None, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
    page: Optional[int] = Query(default=None, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
):
    page_request = resolve_page_request(
        offset=offset,
        limit=limit,
        page=page,
        page_size=page_size,
        max_size=1000,
        default_size=1000,
    )
    categories, total = await list_categories_service(
        db=db,
        page=page_request,
        search=search,
        kind=resolve_category_kind(category_type),
    )
    return {"categories": categories, "total_count": total}


@router.get("/postsByCategory")
async def posts_by_category(
    category_name: Optional[str] = Query(default=None, alias="categoryName"),
    category: Optional[str] = Query(default=None),
    search_term: Optional[str] = Query(default=None, alias="searchTerm"),
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    sort_order: Optional[Literal["asc", "desc"]] = Query(default=None, alias="sortOrder"),
    filter_by: Optional[str] = Query(default=None, alias="filterBy", description="Exact price tier"),
    offset: Optional[int] = Query(default=None, ge=0, description="Zero-based page index"),
    limit: Optional[int] = Query(default=None, ge=1),
    page: Optional[int] = Query(default=None, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
):
    return await _list(
        kind=ITEM_KIND_TOOL,
        category=category_name or category,
        search_term=search_term,
        sort_by=sort_by,
        sort_order=sort_order,
        price=filter_by,
        offset=offset,
        limit=limit,
        page=page,
        page_size=page_size,
        db=db,
        assets=assets,
    )


@router.get("/newsByCategory")
async def news_by_category(
    category_name: Optional[str] = Query(default=None, alias="categoryName"),
    category: Optional[str] = Query(default=None),
    search_term: Optional[str] = Query(default=None, alias="searchTerm"),
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    sort_order: Optional[Literal["asc", "desc"]] = Query(default=None, alias="sortOrder"),
    offset: Optional[int] = Query(default=None, ge=0, description="Zero-based page index"),
    limit: Optional[int] = Query(default=None, ge=1),
    page: Optional[int] = Query(default=None, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
):
    return await _list(
        kind=ITEM_KIND_NEWS,
        category=category_name or category,
        search_term=search_term,
        sort_by=sort_by,
        sort_order=sort_order,
        price=None,
        offset=offset,
        limit=limit,
        page=page,
        page_size=page_size,
        db=db,
        assets=assets,
    )


@router.get("/postById/{post_id}")
async def post_by_id(
    post_id: str,
    db: AsyncSession = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
):
    return await get_item_service(post_id, db=db, assets=assets)


@router.get("/popularPosts/{category}")
async def popular_posts(
    category: str,
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
):
    items = await popular_items_service(category, db=db, assets=assets, limit=limit)
    return {"items": items, "count": len(items)}


@router.get("/trendingPosts")
async def trending_posts(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
):
    items = await trending_items_service(db=db, assets=assets, limit=limit)
    return {"items": items, "count": len(items)}


@router.api_route("/updatePostView", methods=["PUT", "POST"])
async def update_post_view(
    response: Response,
    request: RegisterViewRequest = Body(...),
    x_session_id: Optional[str] = Header(default=None),
    session_cookie: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    _rate_limit: None = Depends(rate_limit("update_post_view", limit=600, window_seconds=3600)),
    guard: ViewGuard = Depends(get_view_guard),
    db: AsyncSession = Depends(get_db),
):
    session_key = (x_session_id or session_cookie or "").strip()
    if not session_key:
        session_key = uuid.uuid4().hex
        response.set_cookie(
            SESSION_COOKIE,
            session_key,
            max_age=SESSION_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
        )
    return await register_view_service(request.post_id, session_key, db=db, guard=guard)


@router.get("/postImage/{post_id}")
async def post_image(
    post_id: str,
    kind: Literal["image", "icon", "news_image"] = Query(default="image"),
    assets: AssetStore = Depends(get_asset_store),
):
    try:
        await assets.resolve(post_id, kind)
        path = assets.path_for(post_id, kind)
    except AssetNotFoundError as exc:
        raise NotFoundError(f"No {kind} stored for this post") from exc
    return FileResponse(path, media_type=assets.media_type(kind), filename=path.name)


