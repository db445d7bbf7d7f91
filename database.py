"""
Async database engine, session factory and FastAPI session dependency.
"""

from typing import AsyncIterator, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import async_database_url, settings


def _connect_args(url: str) -> Dict[str, Any]:
    timeout = float(settings.STORE_TIMEOUT_SECONDS)
    if url.startswith("postgresql+asyncpg"):
        return {"timeout": timeout, "command_timeout": timeout}
    if url.startswith("sqlite"):
        return {"timeout": timeout}
    return {}


DATABASE_URL = async_database_url(settings.DATABASE_URL)

engine = create_async_engine(
    DATABASE_URL,
    connect_args=_connect_args(DATABASE_URL),
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a request-scoped session."""
    async with async_session_maker() as session:
        yield session
