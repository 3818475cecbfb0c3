"""
Queue-facing entry points for indexing runs.

A producer (admin trigger or cron) builds an IndexingJobMessage; the
consumer runs the orchestrator with its own session. Failures re-raise
so the queue redelivers the message.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from src.core.cache import CacheBackend
from src.core.db import get_session_factory
from src.services.indexing_service import IndexingSummary, index_all_registries
from src.services.registry_fetcher import RegistryFetcher


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IndexingJobMessage(BaseModel):
    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    trigger_source: Literal["manual", "scheduled"]
    created_by: Optional[str] = None
    archive_url: Optional[str] = None
    # Set when the producer already claimed the run lock
    history_id: Optional[int] = None
    timestamp: datetime = Field(default_factory=_utc_now)


def create_indexing_message(
    trigger_source: Literal["manual", "scheduled"],
    created_by: str | None = None,
    archive_url: str | None = None,
    history_id: int | None = None,
) -> IndexingJobMessage:
    return IndexingJobMessage(
        trigger_source=trigger_source,
        created_by=created_by,
        archive_url=archive_url,
        history_id=history_id,
    )


async def process_indexing_message(
    message: IndexingJobMessage,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    cache: CacheBackend | None = None,
    fetcher: RegistryFetcher | None = None,
) -> IndexingSummary:
    session_factory = session_factory or get_session_factory()
    logger.info(
        f"Processing indexing job {message.job_id} "
        f"(trigger={message.trigger_source}, created_by={message.created_by})"
    )

    try:
        async with session_factory() as db:
            summary = await index_all_registries(
                db,
                trigger_source=message.trigger_source,
                created_by=message.created_by,
                archive_url=message.archive_url,
                fetcher=fetcher,
                cache=cache,
                history_id=message.history_id,
            )
    except Exception as e:
        logger.error(f"Indexing job {message.job_id} failed: {e}")
        raise

    logger.info(
        f"Indexing job {message.job_id} finished: {summary.status}, "
        f"{summary.success_count}/{summary.total_registries} registries"
    )
    return summary


async def run_scheduled_indexing(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    cache: CacheBackend | None = None,
    fetcher: RegistryFetcher | None = None,
) -> IndexingSummary:
    """Cron entry point."""
    message = create_indexing_message("scheduled")
    return await process_indexing_message(message, session_factory, cache, fetcher)
