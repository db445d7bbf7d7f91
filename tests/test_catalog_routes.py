import pytest

from conftest import make_item, seed_items
from main import app
from models.catalog_item import ITEM_KIND_NEWS
from services.assets import get_asset_store
from services.errors import DependencyFailureError


class UnreachableAssetStore:
    async def resolve(self, item_id, kind):
        raise DependencyFailureError("asset bucket unreachable")


@pytest.mark.asyncio
async def test_categories_route(catalog_env):
    await seed_items(
        catalog_env.session_maker,
        [
            make_item("a", category="Writing"),
            make_item("b", category="Coding", minutes=1),
            make_item("n", category="Policy", kind=ITEM_KIND_NEWS, minutes=2),
        ],
    )
    client = catalog_env.client

    response = await client.get("/categories")
    assert response.json() == {"categories": ["Coding", "Writing"], "total_count": 2}

    response = await client.get("/categories?searchTerm=rit")
    assert response.json()["categories"] == ["Writing"]

    response = await client.get("/categories?type=newscategories")
    assert response.json()["categories"] == ["Policy"]


@pytest.mark.asyncio
async def test_posts_by_category_paging_and_sorting(catalog_env):
    await seed_items(
        catalog_env.session_maker,
        [make_item(f"tool-{index}", minutes=index, view_count=index) for index in range(5)],
    )
    client = catalog_env.client

    response = await client.get("/postsByCategory?categoryName=Writing&page=1&pageSize=2")
    payload = response.json()
    assert response.status_code == 200
    assert [item["id"] for item in payload["items"]] == ["tool-4", "tool-3"]
    assert payload["total_count"] == 5
    assert payload["total_pages"] == 3

    response = await client.get("/postsByCategory?category=Writing&offset=2&limit=2")
    assert [item["id"] for item in response.json()["items"]] == ["tool-0"]

    response = await client.get("/postsByCategory?sortBy=post_view&sortOrder=asc&limit=1")
    assert [item["id"] for item in response.json()["items"]] == ["tool-0"]

    response = await client.get("/postsByCategory?sortBy=rating")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_news_listing_excludes_tools(catalog_env):
    await seed_items(
        catalog_env.session_maker,
        [
            make_item("tool", category="Policy"),
            make_item("story", category="Policy", kind=ITEM_KIND_NEWS, minutes=1),
        ],
    )
    response = await catalog_env.client.get("/newsByCategory?categoryName=Policy")
    assert [item["id"] for item in response.json()["items"]] == ["story"]


@pytest.mark.asyncio
async def test_post_by_id_and_popular_routes(catalog_env):
    await seed_items(
        catalog_env.session_maker,
        [
            make_item("free-one", price="Free", view_count=3),
            make_item("paid-one", price="Paid", view_count=9, minutes=1),
        ],
    )
    client = catalog_env.client

    response = await client.get("/postById/free-one")
    assert response.status_code == 200
    assert response.json()["title"] == "Tool free-one"

    response = await client.get("/postById/unknown")
    assert response.status_code == 404

    response = await client.get("/popularPosts/freebies")
    payload = response.json()
    assert payload["count"] == 1
    assert payload["items"][0]["category"] == "Freebies"

    response = await client.get("/trendingPosts?limit=1")
    assert [item["id"] for item in response.json()["items"]] == ["paid-one"]


@pytest.mark.asyncio
async def test_update_post_view_uses_session_header_or_cookie(catalog_env):
    await seed_items(catalog_env.session_maker, [make_item("post")])
    client = catalog_env.client

    response = await client.put("/updatePostView", json={"postId": "post"}, headers={"X-Session-Id": "tab-1"})
    assert response.json() == {"post_id": "post", "view_count": 1, "counted": True}

    response = await client.put("/updatePostView", json={"postId": "post", "post_view": 41}, headers={"X-Session-Id": "tab-1"})
    assert response.json() == {"post_id": "post", "view_count": 1, "counted": False}

    response = await client.put("/updatePostView", json={"postId": "post"})
    assert response.json()["view_count"] == 2
    assert "catalog_session" in response.cookies

    response = await client.put("/updatePostView", json={"postId": "missing"}, headers={"X-Session-Id": "tab-1"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_post_image_route(catalog_env):
    await catalog_env.assets.save("post", "icon", b"\x89PNG-icon")

    response = await catalog_env.client.get("/postImage/post?kind=icon")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content == b"\x89PNG-icon"

    response = await catalog_env.client.get("/postImage/post?kind=image")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_asset_outage_surfaces_as_generic_503(catalog_env):
    await seed_items(catalog_env.session_maker, [make_item("post")])
    app.dependency_overrides[get_asset_store] = lambda: UnreachableAssetStore()

    response = await catalog_env.client.get("/postsByCategory")

    assert response.status_code == 503
    assert response.json()["detail"] == DependencyFailureError.GENERIC_DETAIL
    assert "bucket" not in response.text


@pytest.mark.asyncio
async def test_health_endpoints(catalog_env, monkeypatch):
    from config import settings

    client = catalog_env.client
    response = await client.get("/health/live")
    assert response.json() == {"alive": True}

    monkeypatch.setattr(settings, "SMTP_HOST", "")
    response = await client.get("/health/ready")
    assert response.status_code == 503
    assert "SMTP_HOST" in response.json()["missing"]

    response = await client.get("/")
    assert response.json()["status"] == "running"


class BrokenConnection:
    async def __aenter__(self):
        raise RuntimeError("connect failed for password=secret")

    async def __aexit__(self, *exc_info):
        return False


class BrokenEngine:
    def connect(self):
        return BrokenConnection()


@pytest.mark.asyncio
async def test_health_reports_database_down_without_error_text(catalog_env, monkeypatch):
    import database
    from config import settings

    monkeypatch.setattr(database, "engine", BrokenEngine())
    monkeypatch.setattr(settings, "VIEW_GUARD_BACKEND", "memory")

    response = await catalog_env.client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "down"
    assert body["status"] == "degraded"
    assert "secret" not in response.text
