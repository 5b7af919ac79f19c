from __future__ import annotations

from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..config import get_database_url
from .models import Base


def _coerce_database_url(url: Optional[str]) -> str:
    return url or get_database_url()


@lru_cache
def get_async_engine(database_url: Optional[str] = None) -> AsyncEngine:
    url = _coerce_database_url(database_url)
    return create_async_engine(url, pool_pre_ping=True, future=True)


@lru_cache
def get_session_maker(database_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    engine = get_async_engine(database_url)
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def init_db(database_url: Optional[str] = None) -> None:
    """Create any missing tables."""
    engine = get_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "get_async_engine",
    "get_session_maker",
    "init_db",
]
