from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.catalog_item import ITEM_KIND_TOOL, CatalogItem
from models.user import User
from routers import rate_limit
from services.assets import AssetStore, get_asset_store
from services.errors import DependencyFailureError
from services.notifier import Notifier, get_notifier
from services.session_token import create_session_token
from services.views import MemoryViewGuard, get_view_guard


TEST_USER_ID = "catalog-user"
TEST_USER_EMAIL = "reader@example.com"
OTHER_USER_ID = "other-user"
BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def auth_header(user_id: str = TEST_USER_ID, email: str = TEST_USER_EMAIL):
    return {"Authorization": f"Bearer {create_session_token(user_id, email)['token']}"}


class RecordingNotifier(Notifier):
    """Captures outgoing messages instead of talking to SMTP."""

    def __init__(self, fail: bool = False):
        super().__init__(host="smtp.test", port=25, use_tls=False, sender="catalog@example.com")
        self.fail = fail
        self.sent: List = []
        self.attempts = 0

    async def send(self, message) -> None:
        self.attempts += 1
        if self.fail:
            raise DependencyFailureError("smtp relay refused connection")
        self.sent.append(message)


@dataclass
class CatalogEnv:
    client: AsyncClient
    session_maker: async_sessionmaker
    assets: AssetStore
    guard: MemoryViewGuard
    notifier: RecordingNotifier


def make_item(item_id: str, *, minutes: int = 0, **overrides) -> CatalogItem:
    values = {
        "id": item_id,
        "kind": ITEM_KIND_TOOL,
        "title": f"Tool {item_id}",
        "category": "Writing",
        "price": "Paid",
        "description": f"Description for {item_id}",
        "link": f"https://example.com/{item_id}",
        "view_count": 0,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
    }
    values.update(overrides)
    return CatalogItem(**values)


async def seed_items(session_maker, items):
    async with session_maker() as session:
        session.add_all(items)
        await session.commit()


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "catalog.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        connect_args={"timeout": 30},
    )
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with maker() as session:
        session.add_all(
            [
                User(id=TEST_USER_ID, email=TEST_USER_EMAIL),
                User(id=OTHER_USER_ID, email="other@example.com"),
            ]
        )
        await session.commit()

    yield maker
    await engine.dispose()


@pytest.fixture
def asset_store(tmp_path):
    return AssetStore(tmp_path / "assets", "https://cdn.example.com/assets", timeout_seconds=5)


@pytest_asyncio.fixture
async def catalog_env(session_maker, asset_store):
    guard = MemoryViewGuard(ttl_seconds=600)
    notifier = RecordingNotifier()

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_asset_store] = lambda: asset_store
    app.dependency_overrides[get_view_guard] = lambda: guard
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield CatalogEnv(
            client=client,
            session_maker=session_maker,
            assets=asset_store,
            guard=guard,
            notifier=notifier,
        )

    for dependency in (get_db, get_asset_store, get_view_guard, get_notifier):
        app.dependency_overrides.pop(dependency, None)
