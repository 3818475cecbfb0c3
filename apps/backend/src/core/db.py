from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

import models  # noqa: F401  registers table metadata
from .config import get_settings


@lru_cache
def get_engine() -> AsyncEngine:
    settings = get_settings()
    return create_async_engine(settings.database_url, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return create_session_factory(get_engine())


async def init_db(engine: AsyncEngine) -> None:
    """
    Creates missing tables and seeds the singleton indexing_latest row.
    Schema is owned by the models package; there is no migration step.
    """
    from src.services.indexing_service import ensure_latest_status

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with create_session_factory(engine)() as db:
        await ensure_latest_status(db)
