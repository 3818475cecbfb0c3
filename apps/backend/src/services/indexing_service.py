"""
Indexing orchestrator and run bookkeeping.

One run = discover + fetch every registry, then normalize them one at a
time. Run state lives in indexing_history; indexing_latest is a
singleton row (id=1) pointing at the most recent run and doubles as the
run lock: a run starts only by flipping it to 'running' with a
conditional UPDATE.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from models import IndexingHistory, IndexingLatest, LATEST_STATUS_ID, SyncLog
from src.core.cache import CacheBackend
from src.core.errors import IndexingInProgressError, IndexingNotRunningError
from src.services.registry_fetcher import RegistryFetcher
from src.services.registry_normalizer import index_registry
from src.services.search_index import invalidate_search_index


logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TRIGGER_MANUAL = "manual"
TRIGGER_SCHEDULED = "scheduled"

STOPPED_MESSAGE = "Indexing was manually stopped"

# Upper bound on one page of run history
MAX_HISTORY_LIMIT = 50


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IndexingSummary:
    history_id: int
    status: str
    total_registries: int = 0
    processed_registries: int = 0
    success_count: int = 0
    failed_count: int = 0
    errors: List[str] = field(default_factory=list)
    stopped: bool = False


@dataclass
class IndexingStatus:
    current: Optional[IndexingHistory]
    is_running: bool


async def ensure_latest_status(db: AsyncSession) -> IndexingLatest:
    """
    Returns the singleton latest row, creating it as 'idle' on first use.
    A concurrent creator losing the insert race re-reads the winner's row.
    """
    latest = await db.get(IndexingLatest, LATEST_STATUS_ID)
    if latest is not None:
        return latest

    db.add(IndexingLatest(id=LATEST_STATUS_ID, status=STATUS_IDLE))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()

    return await db.get(IndexingLatest, LATEST_STATUS_ID)


async def get_latest_status(db: AsyncSession) -> IndexingLatest:
    latest = await ensure_latest_status(db)
    await db.refresh(latest)
    return latest


async def start_indexing_run(
    db: AsyncSession,
    trigger_source: str,
    created_by: str | None = None,
) -> IndexingHistory:
    """
    Claims the run lock and creates the history row in one transaction.
    Raises IndexingInProgressError when another run holds the lock.
    """
    await ensure_latest_status(db)

    claim = (
        update(IndexingLatest)
        .where(
            IndexingLatest.id == LATEST_STATUS_ID,
            IndexingLatest.status != STATUS_RUNNING,
        )
        .values(status=STATUS_RUNNING, updated_at=_utc_now())
    )
    result = await db.exec(claim)
    if result.rowcount == 0:
        await db.rollback()
        latest = await get_latest_status(db)
        raise IndexingInProgressError(latest.history_id)

    history = IndexingHistory(
        trigger_source=trigger_source,
        status=STATUS_RUNNING,
        created_by=created_by,
    )
    db.add(history)
    await db.flush()

    latest = await db.get(IndexingLatest, LATEST_STATUS_ID)
    latest.history_id = history.id
    await db.commit()

    logger.info(
        f"Indexing run {history.id} started ({trigger_source})",
        extra={"run_id": history.id},
    )
    return history


async def _claimed_run(db: AsyncSession, history_id: int) -> IndexingHistory:
    history = await db.get(IndexingHistory, history_id)
    if history is not None:
        await db.refresh(history)
    if history is None or history.status != STATUS_RUNNING:
        raise IndexingNotRunningError(f"Indexing run {history_id} is not running")
    return history


async def _touch_latest(db: AsyncSession, status: str | None = None) -> None:
    latest = await db.get(IndexingLatest, LATEST_STATUS_ID)
    latest.updated_at = _utc_now()
    if status is not None:
        latest.status = status


async def _finalize_run(
    db: AsyncSession,
    history: IndexingHistory,
    status: str,
    error_message: str | None = None,
) -> None:
    """Writes the terminal state; the latest row mirrors it in the same commit."""
    history.status = status
    history.completed_at = _utc_now()
    history.current_registry = None
    if error_message is not None:
        history.error_message = error_message

    latest = await db.get(IndexingLatest, LATEST_STATUS_ID)
    if latest.history_id == history.id:
        latest.status = status
        latest.updated_at = history.completed_at

    await db.commit()


def _summary(history: IndexingHistory, stopped: bool = False) -> IndexingSummary:
    return IndexingSummary(
        history_id=history.id,
        status=history.status,
        total_registries=history.total_registries or 0,
        processed_registries=history.processed_registries,
        success_count=history.success_count,
        failed_count=history.failed_count,
        errors=list(history.errors or []),
        stopped=stopped,
    )


async def index_all_registries(
    db: AsyncSession,
    trigger_source: str = TRIGGER_SCHEDULED,
    created_by: str | None = None,
    archive_url: str | None = None,
    *,
    fetcher: RegistryFetcher | None = None,
    cache: CacheBackend | None = None,
    history_id: int | None = None,
) -> IndexingSummary:
    """
    Runs one full indexing pass.

    Registries are processed sequentially in name order; a failure in one
    registry is recorded on the run and the loop moves on. Discovery
    failures and store failures outside a registry mark the run failed
    and re-raise. A stop request is honoured between registries; work
    already written stays.

    Raises IndexingInProgressError without touching any state when a run
    is already active.
    Pass history_id to execute a run already claimed with
    start_indexing_run(); IndexingNotRunningError is raised when that run
    is no longer running.
    """
    if fetcher is None:
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await index_all_registries(
                db,
                trigger_source,
                created_by,
                archive_url,
                fetcher=RegistryFetcher(client),
                cache=cache,
                history_id=history_id,
            )

    if history_id is None:
        history = await start_indexing_run(db, trigger_source, created_by)
    else:
        history = await _claimed_run(db, history_id)
    run_log = {"run_id": history.id}

    try:
        documents = await fetcher.fetch_registry_files(archive_url)
        names = sorted(documents)

        history.total_registries = len(names)
        await _touch_latest(db)
        await db.commit()

        for name in names:
            await db.refresh(history)
            if history.stop_requested or history.status != STATUS_RUNNING:
                if history.status == STATUS_RUNNING:
                    await _finalize_run(db, history, STATUS_FAILED, STOPPED_MESSAGE)
                logger.info(f"Indexing run {history.id} stopped before {name}", extra=run_log)
                await _invalidate_after_run(history, cache)
                return _summary(history, stopped=True)

            history.current_registry = name
            history.processed_registries += 1
            await _touch_latest(db)
            await db.commit()

            try:
                await index_registry(db, name, documents[name])
            except Exception as e:
                # index_registry rolled back; reload what it expired
                await db.refresh(history)
                history.failed_count += 1
                history.errors = [*(history.errors or []), f"{name}: {e}"]
                db.add(SyncLog(registry_name=name, status="error", error_message=str(e)))
                logger.error(
                    f"Failed to index {name}: {e}",
                    extra={"run_id": history.id, "registry": name},
                )
            else:
                history.success_count += 1

            await db.commit()

        await db.refresh(history)
        if history.status == STATUS_RUNNING:
            await _finalize_run(db, history, STATUS_COMPLETED)
    except Exception as e:
        await db.rollback()
        await db.refresh(history)
        if history.status == STATUS_RUNNING:
            await _finalize_run(db, history, STATUS_FAILED, str(e))
        logger.error(f"Indexing run {history.id} failed: {e}", extra=run_log)
        await _invalidate_after_run(history, cache)
        raise

    logger.info(
        f"Indexing run {history.id} {history.status}: "
        f"{history.success_count} succeeded, {history.failed_count} failed",
        extra=run_log,
    )
    await _invalidate_after_run(history, cache)
    return _summary(history)


async def _invalidate_after_run(
    history: IndexingHistory, cache: CacheBackend | None
) -> None:
    if history.success_count > 0:
        await invalidate_search_index(cache)


async def get_indexing_status(db: AsyncSession) -> IndexingStatus:
    latest = await get_latest_status(db)
    current = None
    if latest.history_id is not None:
        current = await db.get(IndexingHistory, latest.history_id)
        if current is not None:
            await db.refresh(current)
    return IndexingStatus(current=current, is_running=latest.status == STATUS_RUNNING)


async def get_indexing_history(
    db: AsyncSession, limit: int = MAX_HISTORY_LIMIT, offset: int = 0
) -> list[IndexingHistory]:
    """Newest first. limit is clamped to MAX_HISTORY_LIMIT."""
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    statement = (
        select(IndexingHistory)
        .order_by(IndexingHistory.started_at.desc(), IndexingHistory.id.desc())
        .offset(max(offset, 0))
        .limit(limit)
    )
    result = await db.exec(statement)
    return list(result.all())


async def stop_indexing(db: AsyncSession, force: bool = False) -> IndexingHistory:
    """
    Requests the active run to stop. The worker finalizes the run as failed
    before its next registry. With force=True the run is finalized here,
    for runs whose worker is gone.

    Raises IndexingNotRunningError when nothing is running.
    """
    latest = await get_latest_status(db)
    if latest.status != STATUS_RUNNING:
        raise IndexingNotRunningError("No indexing run is in progress")

    history = None
    if latest.history_id is not None:
        history = await db.get(IndexingHistory, latest.history_id)
    if history is None:
        # Lock held without a run row; release it
        latest.status = STATUS_FAILED
        latest.updated_at = _utc_now()
        await db.commit()
        raise IndexingNotRunningError("No indexing run is in progress")

    await db.refresh(history)
    history.stop_requested = True
    if force:
        await _finalize_run(db, history, STATUS_FAILED, STOPPED_MESSAGE)
        logger.info(f"Indexing run {history.id} force-stopped", extra={"run_id": history.id})
    else:
        await db.commit()
        logger.info(f"Stop requested for indexing run {history.id}", extra={"run_id": history.id})

    return history
