from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from attachment_lite.core.config import get_settings

from .utils import normalize_database_url


def build_engine(url: str | None = None) -> AsyncEngine:
    database_url = normalize_database_url(url or get_settings().database_dsn)
    return create_async_engine(database_url, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Attachment values must stay readable after commit for deferred cleanup.
    return async_sessionmaker(bind=engine, expire_on_commit=False)
