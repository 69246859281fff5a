"""Async engine and session factory bound to the configured database."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from loyalty_accrual.core.settings import settings
from loyalty_accrual.db.base import Base

engine: AsyncEngine = create_async_engine(settings.database_url, future=True, pool_pre_ping=True)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def init_models(bind: AsyncEngine | None = None) -> None:
    """Create tables for all registered models.

    Failures propagate: a database that cannot be reached at startup is fatal.
    """

    import loyalty_accrual.models  # noqa: F401

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = ["async_session", "engine", "get_session", "init_models"]
