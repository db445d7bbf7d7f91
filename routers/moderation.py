"""Tool submission, moderation decision and issue report router."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.assets import AssetStore, get_asset_store
from services.moderation import (
    decide_submission_service,
    list_user_submissions_service,
    submit_tool_service,
)
from services.notifier import Notifier, get_notifier, send_issue_report
from services.pagination import resolve_page_request, total_pages
from services.session_token import verify_moderation_token
from services.users import ensure_user

router = APIRouter()
logger = logging.getLogger(__name__)


class SubmitToolRequest(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    post_title: str = ""
    post_link: str = ""
    post_category: str = ""
    post_price: Optional[str] = None
    post_description: Optional[str] = None
    post_image: Optional[str] = Field(default=None, description="data:image/png;base64,... payload")


class ReportIssueRequest(BaseModel):
    post: str = Field(min_length=1, max_length=500)
    message: str = Field(min_length=1, max_length=5000)
    email: Optional[str] = None

    @field_validator("post", "email")
    @classmethod
    def single_line(cls, value: Optional[str]) -> Optional[str]:
        # Both values are written into mail headers.
        if value is not None and ("\r" in value or "\n" in value):
            raise ValueError("must not contain line breaks")
        return value


@router.post("/send-email")
async def submit_tool(
    request: SubmitToolRequest,
    background_tasks: BackgroundTasks,
    _rate_limit: None = Depends(rate_limit("submit_tool", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
    notifier: Notifier = Depends(get_notifier),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    submission = await submit_tool_service(
        user_id=scoped_user_id,
        payload={
            "email": request.email or auth.email,
            "title": request.post_title,
            "link": request.post_link,
            "category": request.post_category,
            "price": request.post_price,
            "description": request.post_description,
            "image": request.post_image,
        },
        db=db,
        assets=assets,
        notifier=notifier,
        background_tasks=background_tasks,
    )
    return {"submission_id": submission["id"], "status": submission["status"], "submission": submission}


@router.get("/update-tool-status", response_class=PlainTextResponse)
async def update_tool_status(
    tool_id: str = Query(..., alias="toolId", min_length=1),
    pending: Literal["approved", "declined"] = Query(..., description="Decision to apply"),
    token: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    if settings.MODERATION_REQUIRE_TOKEN:
        try:
            verify_moderation_token(token or "", tool_id)
        except ValueError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc

    outcome = await decide_submission_service(tool_id, pending, db=db)
    if not outcome["changed"]:
        return f"Tool has already been {outcome['status']}"
    return f"Tool has been {outcome['status']}"


@router.get("/added-posts/{user_id}")
async def list_added_posts(
    user_id: str,
    page: Optional[int] = Query(default=None, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, alias="pageSize"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    page_request = resolve_page_request(page=page or 1, page_size=page_size or 5)
    submissions, total = await list_user_submissions_service(
        scoped_user_id,
        page=page_request,
        db=db,
        assets=assets,
    )
    return {
        "items": submissions,
        "total_count": total,
        "page": page_request.page,
        "page_size": page_request.size,
        "total_pages": total_pages(total, page_request.size),
    }


@router.post("/report-issue")
async def report_issue(
    request: ReportIssueRequest,
    _rate_limit: None = Depends(rate_limit("report_issue", limit=20, window_seconds=3600)),
    notifier: Notifier = Depends(get_notifier),
):
    await send_issue_report(notifier, post=request.post, body=request.message, reporter_email=request.email)
    logger.info("issue_report_sent post=%s", request.post)
    return {"message": "Report sent successfully"}
