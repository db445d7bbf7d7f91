"""Submission intake and moderation decisions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from fastapi import BackgroundTasks
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.catalog_item import ITEM_KIND_TOOL, CatalogItem
from models.submission import (
    SUBMISSION_APPROVED,
    SUBMISSION_DECLINED,
    SUBMISSION_PENDING,
    Submission,
)
from services.assets import ASSET_ICON, AssetStore, decode_data_url
from services.errors import (
    AssetNotFoundError,
    CatalogValidationError,
    ConflictError,
    DependencyFailureError,
    NotFoundError,
    PartialFailureError,
)
from services.notifier import Notifier, notify_submission
from services.pagination import PageRequest

logger = logging.getLogger(__name__)

DECISIONS = {SUBMISSION_APPROVED, SUBMISSION_DECLINED}
REQUIRED_FIELDS = ("title", "link", "category")
SUBMISSION_IMAGE_KIND = ASSET_ICON


def _normalize_text(value: Any) -> str:
    return str(value or "").strip()


def _validate_link(link: str) -> str:
    parsed = urlparse(link)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise CatalogValidationError("link must be an absolute http(s) URL")
    return link


def validate_submission_payload(payload: Dict[str, Any]) -> Dict[str, Optional[str]]:
    fields = {
        "title": _normalize_text(payload.get("title")),
        "link": _normalize_text(payload.get("link")),
        "category": _normalize_text(payload.get("category")),
        "price": _normalize_text(payload.get("price")) or None,
        "description": _normalize_text(payload.get("description")) or None,
        "email": _normalize_text(payload.get("email")) or None,
    }
    missing = [name for name in REQUIRED_FIELDS if not fields[name]]
    if missing:
        raise CatalogValidationError(f"Missing required fields: {', '.join(missing)}")
    _validate_link(fields["link"])
    # The email ends up in a mail header.
    if fields["email"] and ("\r" in fields["email"] or "\n" in fields["email"]):
        raise CatalogValidationError("email must be a single line")
    return fields


def submission_snapshot(submission: Submission) -> Dict[str, Any]:
    return {
        "id": submission.id,
        "user_id": submission.user_id,
        "email": submission.email,
        "title": submission.title,
        "link": submission.link,
        "category": submission.category,
        "price": submission.price,
        "description": submission.description,
        "has_image": bool(submission.has_image),
        "status": submission.status,
        "created_at": submission.created_at.isoformat() if submission.created_at else None,
        "decided_at": submission.decided_at.isoformat() if submission.decided_at else None,
    }


async def submit_tool_service(
    *,
    user_id: str,
    payload: Dict[str, Any],
    db: AsyncSession,
    assets: AssetStore,
    notifier: Optional[Notifier] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Dict[str, Any]:
    """Persist a pending submission and schedule its notifications.

    An embedded image is stored under the submission id before the row is
    written, so an approved item always finds its icon.
    """
    fields = validate_submission_payload(payload)
    image_payload = payload.get("image")
    image_bytes = decode_data_url(image_payload) if _normalize_text(image_payload) else None

    submission_id = str(uuid.uuid4())
    if image_bytes is not None:
        await assets.save(submission_id, SUBMISSION_IMAGE_KIND, image_bytes)

    submission = Submission(
        id=submission_id,
        user_id=user_id,
        email=fields["email"],
        title=fields["title"],
        link=fields["link"],
        category=fields["category"],
        price=fields["price"],
        description=fields["description"],
        has_image=image_bytes is not None,
        status=SUBMISSION_PENDING,
    )
    db.add(submission)
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("submission_persist_failed id=%s error=%s", submission_id, exc)
        if image_bytes is not None:
            try:
                await assets.delete(submission_id, SUBMISSION_IMAGE_KIND)
            except DependencyFailureError as cleanup_exc:
                logger.error(
                    "submission_asset_cleanup_failed id=%s reason=%s", submission_id, cleanup_exc.reason
                )
                raise PartialFailureError(
                    "Submission was not saved but its uploaded image could not be removed.",
                    reference_id=submission_id,
                ) from exc
        raise DependencyFailureError(f"submission insert failed: {exc}") from exc

    await db.refresh(submission)
    snapshot = submission_snapshot(submission)
    logger.info("submission_created id=%s user=%s has_image=%s", submission_id, user_id, snapshot["has_image"])

    if notifier is not None and background_tasks is not None:
        background_tasks.add_task(notify_submission, notifier, snapshot)
    return snapshot


async def _load_submission(submission_id: str, db: AsyncSession) -> Submission:
    result = await db.execute(
        select(Submission)
        .where(Submission.id == submission_id)
        .execution_options(populate_existing=True)
    )
    submission = result.scalar_one_or_none()
    if not submission:
        raise NotFoundError("Submission not found")
    return submission


def _normalize_decision(decision: Any) -> str:
    normalized = _normalize_text(decision).lower()
    if normalized not in DECISIONS:
        raise CatalogValidationError("decision must be 'approved' or 'declined'")
    return normalized


def _decision_outcome(submission: Submission, *, changed: bool) -> Dict[str, Any]:
    return {
        "submission_id": submission.id,
        "status": submission.status,
        "item_id": submission.id if submission.status == SUBMISSION_APPROVED else None,
        "changed": changed,
    }


def _terminal_outcome(submission: Submission, decision: str) -> Dict[str, Any]:
    if submission.status == decision:
        return _decision_outcome(submission, changed=False)
    raise ConflictError(f"Submission has already been {submission.status}")


def _promote(submission: Submission) -> CatalogItem:
    return CatalogItem(
        id=submission.id,
        kind=ITEM_KIND_TOOL,
        title=submission.title,
        category=submission.category,
        price=submission.price,
        description=submission.description,
        link=submission.link,
        view_count=0,
    )


async def decide_submission_service(
    submission_id: str,
    decision: str,
    *,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Apply an admin decision to a pending submission.

    Promotion and the status change commit in one transaction. The status
    update only matches a row that is still pending, so two racing
    decisions cannot both take effect.
    """
    decision = _normalize_decision(decision)
    submission_id = _normalize_text(submission_id)
    if not submission_id:
        raise CatalogValidationError("toolId is required")

    submission = await _load_submission(submission_id, db)
    if submission.status != SUBMISSION_PENDING:
        return _terminal_outcome(submission, decision)

    try:
        if decision == SUBMISSION_APPROVED:
            db.add(_promote(submission))
            await db.flush()
        result = await db.execute(
            update(Submission)
            .where(Submission.id == submission_id, Submission.status == SUBMISSION_PENDING)
            .values(status=decision, decided_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            return _terminal_outcome(await _load_submission(submission_id, db), decision)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        current = await _load_submission(submission_id, db)
        if current.status != SUBMISSION_PENDING:
            return _terminal_outcome(current, decision)
        logger.error("submission_promotion_conflict id=%s error=%s", submission_id, exc)
        raise ConflictError("A catalog item with this id already exists") from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("submission_decision_failed id=%s decision=%s error=%s", submission_id, decision, exc)
        raise DependencyFailureError(f"decision commit failed: {exc}") from exc

    submission = await _load_submission(submission_id, db)
    logger.info("submission_decided id=%s status=%s", submission_id, submission.status)
    return _decision_outcome(submission, changed=True)


async def list_user_submissions_service(
    user_id: str,
    *,
    page: PageRequest,
    db: AsyncSession,
    assets: AssetStore,
) -> Tuple[List[Dict[str, Any]], int]:
    count_result = await db.execute(
        select(func.count()).select_from(Submission).where(Submission.user_id == user_id)
    )
    total = int(count_result.scalar() or 0)
    if page.offset >= total:
        return [], total

    result = await db.execute(
        select(Submission)
        .where(Submission.user_id == user_id)
        .order_by(Submission.created_at.desc(), Submission.id.asc())
        .offset(page.offset)
        .limit(page.size)
    )
    rows: List[Dict[str, Any]] = []
    for submission in result.scalars().all():
        payload = submission_snapshot(submission)
        try:
            payload["icon"] = await assets.resolve(submission.id, SUBMISSION_IMAGE_KIND)
        except AssetNotFoundError:
            payload["icon"] = None
        rows.append(payload)
    return rows, total


async def list_user_submission_ids(user_id: str, db: AsyncSession) -> List[str]:
    result = await db.execute(select(Submission.id).where(Submission.user_id == user_id))
    return list(result.scalars().all())
