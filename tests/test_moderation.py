import asyncio
import base64

import pytest
from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from conftest import TEST_USER_ID, RecordingNotifier, auth_header
from models.catalog_item import CatalogItem
from models.submission import Submission
from services.assets import AssetStore
from services.errors import (
    CatalogValidationError,
    ConflictError,
    DependencyFailureError,
    NotFoundError,
    PartialFailureError,
)
import services.moderation as moderation
from services.moderation import decide_submission_service, submit_tool_service
from services.notifier import notify_submission
from services.session_token import create_moderation_token, verify_moderation_token


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-icon"
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


def _payload(**overrides):
    payload = {
        "title": "Prompt Studio",
        "link": "https://promptstudio.example.com",
        "category": "Writing",
        "price": "Freemium",
        "description": "Organize prompts.",
        "email": "maker@example.com",
    }
    payload.update(overrides)
    return payload


class UndeletableAssetStore(AssetStore):
    async def delete(self, item_id, kind):
        raise DependencyFailureError("asset bucket read-only")


class CommitFailingSession(AsyncSession):
    async def commit(self):
        raise OperationalError("INSERT INTO submissions", {}, Exception("disk I/O error"))


def _failing_session(session_maker):
    return CommitFailingSession(bind=session_maker.kw["bind"], expire_on_commit=False)


async def _submit(session_maker, asset_store, **overrides):
    async with session_maker() as session:
        return await submit_tool_service(
            user_id=TEST_USER_ID,
            payload=_payload(**overrides),
            db=session,
            assets=asset_store,
        )


@pytest.mark.asyncio
async def test_submission_is_pending_and_image_stored_under_its_id(session_maker, asset_store):
    submission = await _submit(session_maker, asset_store, image=PNG_DATA_URL)

    assert submission["status"] == "pending"
    assert submission["has_image"] is True
    assert asset_store.path_for(submission["id"], "icon").read_bytes() == PNG_BYTES


@pytest.mark.asyncio
async def test_submission_validation(session_maker, asset_store):
    with pytest.raises(CatalogValidationError):
        await _submit(session_maker, asset_store, title="  ")
    with pytest.raises(CatalogValidationError):
        await _submit(session_maker, asset_store, link="promptstudio.example.com")
    with pytest.raises(CatalogValidationError):
        await _submit(session_maker, asset_store, image="data:image/png;base64,@@not-base64@@")
    with pytest.raises(CatalogValidationError):
        await _submit(session_maker, asset_store, email="maker@example.com\r\nBcc: someone@example.com")


@pytest.mark.asyncio
async def test_failed_persist_removes_the_uploaded_image(session_maker, asset_store):
    async with _failing_session(session_maker) as session:
        with pytest.raises(DependencyFailureError):
            await submit_tool_service(
                user_id=TEST_USER_ID,
                payload=_payload(image=PNG_DATA_URL),
                db=session,
                assets=asset_store,
            )

    assert not list((asset_store.root / "favicons").glob("*.png"))


@pytest.mark.asyncio
async def test_failed_persist_with_stuck_image_is_partial_failure(session_maker, tmp_path):
    assets = UndeletableAssetStore(tmp_path / "stuck", "https://cdn.example.com/assets")
    async with _failing_session(session_maker) as session:
        with pytest.raises(PartialFailureError) as exc_info:
            await submit_tool_service(
                user_id=TEST_USER_ID,
                payload=_payload(image=PNG_DATA_URL),
                db=session,
                assets=assets,
            )
    assert exc_info.value.status_code == 500
    assert exc_info.value.reference_id


@pytest.mark.asyncio
async def test_approval_promotes_submission_fields(session_maker, asset_store):
    submission = await _submit(session_maker, asset_store)

    async with session_maker() as session:
        outcome = await decide_submission_service(submission["id"], "approved", db=session)

    assert outcome == {
        "submission_id": submission["id"],
        "status": "approved",
        "item_id": submission["id"],
        "changed": True,
    }
    async with session_maker() as session:
        item = (await session.execute(select(CatalogItem).where(CatalogItem.id == submission["id"]))).scalar_one()
    assert item.title == submission["title"]
    assert item.link == submission["link"]
    assert item.category == submission["category"]
    assert item.price == submission["price"]
    assert item.description == submission["description"]
    assert item.view_count == 0


@pytest.mark.asyncio
async def test_decline_leaves_catalog_untouched(session_maker, asset_store):
    submission = await _submit(session_maker, asset_store)
    async with session_maker() as session:
        outcome = await decide_submission_service(submission["id"], "declined", db=session)
        items = await session.execute(select(func.count()).select_from(CatalogItem))
        assert items.scalar() == 0

    assert outcome["status"] == "declined"
    assert outcome["item_id"] is None


@pytest.mark.asyncio
async def test_terminal_submission_conflicts_and_repeats_are_idempotent(session_maker, asset_store):
    submission = await _submit(session_maker, asset_store)

    async with session_maker() as session:
        await decide_submission_service(submission["id"], "approved", db=session)
        repeat = await decide_submission_service(submission["id"], "approved", db=session)
        assert repeat["changed"] is False
        with pytest.raises(ConflictError):
            await decide_submission_service(submission["id"], "declined", db=session)

        items = await session.execute(
            select(func.count()).select_from(CatalogItem).where(CatalogItem.id == submission["id"])
        )
        assert items.scalar() == 1
        status = await session.execute(select(Submission.status).where(Submission.id == submission["id"]))
        assert status.scalar_one() == "approved"


@pytest.mark.asyncio
async def test_decision_validation(session_maker, asset_store):
    submission = await _submit(session_maker, asset_store)
    async with session_maker() as session:
        with pytest.raises(CatalogValidationError):
            await decide_submission_service(submission["id"], "maybe", db=session)
        with pytest.raises(NotFoundError):
            await decide_submission_service("missing", "approved", db=session)


@pytest.mark.asyncio
async def test_notifications_are_best_effort(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@example.com")
    snapshot = {
        "id": "sub-1",
        "user_id": TEST_USER_ID,
        "email": "maker@example.com",
        "title": "Prompt <Studio>",
        "link": "https://promptstudio.example.com",
        "category": "Writing",
        "price": None,
        "description": None,
    }

    healthy = RecordingNotifier()
    assert await notify_submission(healthy, snapshot) == {"submitter": True, "admin": True}
    admin_message = healthy.sent[1]
    assert admin_message["To"] == "admin@example.com"
    html_part = admin_message.get_body(preferencelist=("html",)).get_content()
    text_part = admin_message.get_body(preferencelist=("plain",)).get_content()
    assert "Prompt &lt;Studio&gt;" in html_part
    assert "/update-tool-status?toolId=sub-1&pending=approved&token=" in text_part

    broken = RecordingNotifier(fail=True)
    assert await notify_submission(broken, snapshot) == {"submitter": False, "admin": False}
    assert broken.attempts == 2


def test_moderation_token_is_bound_to_submission():
    token = create_moderation_token("sub-1")
    verify_moderation_token(token, "sub-1")
    with pytest.raises(ValueError):
        verify_moderation_token(token, "sub-2")
    with pytest.raises(ValueError):
        verify_moderation_token("not-a-token", "sub-1")


@pytest.mark.asyncio
async def test_submit_route_survives_notifier_failure(catalog_env, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@example.com")
    catalog_env.notifier.fail = True

    response = await catalog_env.client.post(
        "/send-email",
        json={
            "post_title": "Prompt Studio",
            "post_link": "https://promptstudio.example.com",
            "post_category": "Writing",
            "post_price": "Free",
            "post_description": "Organize prompts.",
            "post_image": PNG_DATA_URL,
        },
        headers=auth_header(),
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "pending"
    assert payload["submission"]["email"] == "reader@example.com"
    assert catalog_env.notifier.attempts == 2

    response = await catalog_env.client.get("/getBookmarks", headers=auth_header())
    assert response.json()["user_added_post_ids"] == [payload["submission_id"]]

    response = await catalog_env.client.get(f"/added-posts/{TEST_USER_ID}", headers=auth_header())
    listing = response.json()
    assert listing["total_count"] == 1
    assert listing["items"][0]["icon"].endswith(f"/favicons/{payload['submission_id']}.png")


@pytest.mark.asyncio
async def test_update_tool_status_route(catalog_env, monkeypatch):
    submission = await _submit(catalog_env.session_maker, catalog_env.assets)
    client = catalog_env.client

    response = await client.get(f"/update-tool-status?toolId={submission['id']}&pending=approved&token=forged")
    assert response.status_code == 401

    token = create_moderation_token(submission["id"])
    response = await client.get(f"/update-tool-status?toolId={submission['id']}&pending=approved&token={token}")
    assert response.status_code == 200
    assert response.text == "Tool has been approved"

    response = await client.get(f"/update-tool-status?toolId={submission['id']}&pending=approved&token={token}")
    assert response.text == "Tool has already been approved"

    response = await client.get(f"/update-tool-status?toolId={submission['id']}&pending=declined&token={token}")
    assert response.status_code == 409

    monkeypatch.setattr(settings, "MODERATION_REQUIRE_TOKEN", False)
    response = await client.get("/update-tool-status?toolId=missing&pending=declined")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_report_issue_route(catalog_env, monkeypatch):
    client = catalog_env.client
    body = {"post": "Prompt Studio", "message": "The link is broken.", "email": "reader@example.com"}

    monkeypatch.setattr(settings, "ADMIN_EMAIL", "")
    response = await client.post("/report-issue", json=body)
    assert response.status_code == 503
    assert response.json()["detail"] == DependencyFailureError.GENERIC_DETAIL

    monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@example.com")
    response = await client.post("/report-issue", json=body)
    assert response.status_code == 200
    message = catalog_env.notifier.sent[-1]
    assert message["Subject"] == "Report for post: Prompt Studio"
    assert message["Reply-To"] == "reader@example.com"


@pytest.mark.asyncio
async def test_report_issue_rejects_header_line_breaks(catalog_env, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@example.com")
    client = catalog_env.client

    response = await client.post("/report-issue", json={"post": "a\nb", "message": "m"})
    assert response.status_code == 422

    response = await client.post(
        "/report-issue",
        json={"post": "Prompt Studio", "message": "m", "email": "reader@example.com\r\nBcc: x@example.com"},
    )
    assert response.status_code == 422
    assert catalog_env.notifier.attempts == 0


@pytest.mark.asyncio
async def test_unbuildable_submitter_message_does_not_block_admin_review(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@example.com")
    notifier = RecordingNotifier()
    snapshot = {
        "id": "sub-2",
        "user_id": TEST_USER_ID,
        "email": "maker@example.com\r\nBcc: someone@example.com",
        "title": "Prompt Studio",
        "link": "https://promptstudio.example.com",
        "category": "Writing",
        "price": None,
        "description": None,
    }

    outcome = await notify_submission(notifier, snapshot)

    assert outcome == {"submitter": False, "admin": True}
    assert [message["To"] for message in notifier.sent] == ["admin@example.com"]


def _serve_stale_pending_first(monkeypatch, submission):
    """Make the first load see the submission as still pending."""
    real_load = moderation._load_submission
    calls = []

    async def load(submission_id, db):
        calls.append(submission_id)
        if len(calls) == 1:
            return Submission(
                id=submission["id"],
                user_id=submission["user_id"],
                title=submission["title"],
                link=submission["link"],
                category=submission["category"],
                price=submission["price"],
                description=submission["description"],
                status="pending",
            )
        return await real_load(submission_id, db)

    monkeypatch.setattr(moderation, "_load_submission", load)
    return calls


@pytest.mark.asyncio
async def test_approval_losing_the_race_to_an_approval_is_idempotent(session_maker, asset_store, monkeypatch):
    submission = await _submit(session_maker, asset_store)
    async with session_maker() as session:
        await decide_submission_service(submission["id"], "approved", db=session)

    calls = _serve_stale_pending_first(monkeypatch, submission)
    async with session_maker() as session:
        outcome = await decide_submission_service(submission["id"], "approved", db=session)
        items = await session.execute(select(func.count()).select_from(CatalogItem))
        assert items.scalar() == 1

    assert outcome["changed"] is False
    assert outcome["status"] == "approved"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_decline_losing_the_race_to_an_approval_conflicts(session_maker, asset_store, monkeypatch):
    submission = await _submit(session_maker, asset_store)
    async with session_maker() as session:
        await decide_submission_service(submission["id"], "approved", db=session)

    _serve_stale_pending_first(monkeypatch, submission)
    async with session_maker() as session:
        with pytest.raises(ConflictError):
            await decide_submission_service(submission["id"], "declined", db=session)
        status = await session.execute(select(Submission.status).where(Submission.id == submission["id"]))
        assert status.scalar_one() == "approved"


@pytest.mark.asyncio
async def test_concurrent_approvals_promote_once(session_maker, asset_store):
    submission = await _submit(session_maker, asset_store)

    async def approve():
        async with session_maker() as session:
            return await decide_submission_service(submission["id"], "approved", db=session)

    results = await asyncio.gather(approve(), approve())

    assert sorted(result["changed"] for result in results) == [False, True]
    async with session_maker() as session:
        items = await session.execute(
            select(func.count()).select_from(CatalogItem).where(CatalogItem.id == submission["id"])
        )
        assert items.scalar() == 1
