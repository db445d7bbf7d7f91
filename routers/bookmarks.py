"""Bookmark router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from services.assets import AssetStore, get_asset_store
from services.bookmarks import (
    list_bookmark_ids,
    list_bookmarked_items_service,
    remove_bookmark_service,
    set_bookmark_service,
    toggle_bookmark_service,
)
from services.moderation import list_user_submission_ids
from services.pagination import resolve_page_request, total_pages
from services.users import ensure_user

router = APIRouter()


class BookmarkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_id: str = Field(alias="postId", min_length=1)
    user_id: Optional[str] = Field(default=None, alias="userId")


class UpdateBookmarkRequest(BookmarkRequest):
    bookmarked: bool


@router.put("/toggleBookmark")
async def toggle_bookmark(
    request: BookmarkRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, user_id, auth.email)
    return await toggle_bookmark_service(user_id, request.post_id, db=db)


@router.put("/updateBookmark")
async def update_bookmark(
    request: UpdateBookmarkRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, user_id, auth.email)
    return await set_bookmark_service(user_id, request.post_id, request.bookmarked, db=db)


@router.delete("/removeBookmark")
async def remove_bookmark(
    post_id: str = Query(..., alias="postId", min_length=1),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    return await remove_bookmark_service(scoped_user_id, post_id, db=db)


@router.get("/getBookmarks")
async def get_bookmarks(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    bookmarked = await list_bookmark_ids(scoped_user_id, db)
    return {
        "bookmarked_post_ids": sorted(bookmarked),
        "user_added_post_ids": await list_user_submission_ids(scoped_user_id, db),
    }


@router.get("/getBookmarkPosts")
async def get_bookmark_posts(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    offset: Optional[int] = Query(default=None, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
    page: Optional[int] = Query(default=None, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, alias="pageSize"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    page_request = resolve_page_request(offset=offset, limit=limit, page=page, page_size=page_size)
    items, total = await list_bookmarked_items_service(
        scoped_user_id,
        page=page_request,
        db=db,
        assets=assets,
    )
    return {
        "items": items,
        "total_count": total,
        "page": page_request.page,
        "page_size": page_request.size,
        "total_pages": total_pages(total, page_request.size),
    }
