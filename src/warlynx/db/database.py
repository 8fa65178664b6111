from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from warlynx.config import settings


def make_engine(url: str | None = None) -> AsyncEngine:
    """Create an async engine.  In-memory SQLite shares one connection."""
    url = url or settings.database_url
    if url.startswith("sqlite") and ":memory:" in url:
        return create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(url, echo=False)


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine()
async_session = make_sessionmaker(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables if they don't exist."""
    from warlynx.db.tables import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
