"""Admin indexing routes. All endpoints require X-Admin-API-Key."""
import logging
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlmodel.ext.asyncio.session import AsyncSession

from src.api.dependencies import get_cache, get_db, get_http_client
from src.core.cache import CacheBackend
from src.core.errors import IndexingInProgressError, IndexingNotRunningError
from src.middleware.admin import AdminContext, require_admin_key
from src.services.indexing_service import (
    MAX_HISTORY_LIMIT,
    get_indexing_history,
    TRIGGER_MANUAL,
    get_indexing_status,
    start_indexing_run,
    stop_indexing,
)
from src.services.registry_fetcher import RegistryFetcher
from src.tasks.indexing_tasks import (
    IndexingJobMessage,
    create_indexing_message,
    process_indexing_message,
)
from models import IndexingHistory


logger = logging.getLogger(__name__)

router = APIRouter()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerInput(CamelModel):
    archive_url: Optional[str] = Field(default=None)


class TriggerOutput(CamelModel):
    status: Literal["queued"]
    job_id: str
    message: str


class StopOutput(CamelModel):
    status: Literal["stopping", "stopped", "not_running"]
    message: str
    timestamp: datetime


class IndexingHistoryEntry(CamelModel):
    id: int
    trigger_source: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_registries: Optional[int] = None
    processed_registries: int = 0
    current_registry: Optional[str] = None
    success_count: int = 0
    failed_count: int = 0
    errors: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    created_by: Optional[str] = None
    stop_requested: bool = False

    @classmethod
    def from_history(cls, history: IndexingHistory) -> "IndexingHistoryEntry":
        data = history.model_dump()
        data["errors"] = data.get("errors") or []
        return cls.model_validate(data)


class StatusOutput(CamelModel):
    current: Optional[IndexingHistoryEntry]
    is_running: bool


class HistoryOutput(CamelModel):
    data: List[IndexingHistoryEntry]
    limit: int
    offset: int


async def run_indexing_job(message: IndexingJobMessage, cache: CacheBackend | None) -> None:
    """Background task wrapper; the response has already been sent, so failures are only logged."""
    try:
        fetcher = RegistryFetcher(get_http_client())
        await process_indexing_message(message, cache=cache, fetcher=fetcher)
    except IndexingNotRunningError:
        logger.warning(f"Indexing job {message.job_id} skipped: run {message.history_id} was stopped")
    except Exception:
        logger.exception(f"Indexing job {message.job_id} failed")


@router.post("/indexing/trigger", response_model=TriggerOutput, status_code=202)
async def trigger_indexing(
    background_tasks: BackgroundTasks,
    payload: Optional[TriggerInput] = Body(default=None),
    admin: AdminContext = Depends(require_admin_key),
    db: AsyncSession = Depends(get_db),
    cache: CacheBackend | None = Depends(get_cache),
) -> TriggerOutput:
    # The lock is claimed in the request; the background job executes that run
    try:
        run = await start_indexing_run(db, TRIGGER_MANUAL, created_by=admin.created_by)
    except IndexingInProgressError:
        raise HTTPException(status_code=409, detail="Indexing already in progress")

    message = create_indexing_message(
        TRIGGER_MANUAL,
        created_by=admin.created_by,
        archive_url=payload.archive_url if payload else None,
        history_id=run.id,
    )
    background_tasks.add_task(run_indexing_job, message, cache)
    logger.info(f"Queued indexing job {message.job_id} from {admin.ip_address}")

    return TriggerOutput(
        status="queued",
        job_id=message.job_id,
        message="Indexing job queued",
    )


@router.post("/indexing/stop", response_model=StopOutput)
async def stop(
    force: bool = False,
    admin: AdminContext = Depends(require_admin_key),
    db: AsyncSession = Depends(get_db),
) -> StopOutput:
    now = datetime.now(timezone.utc)
    try:
        await stop_indexing(db, force=force)
    except IndexingNotRunningError:
        return StopOutput(
            status="not_running",
            message="No indexing job is currently running",
            timestamp=now,
        )

    if force:
        return StopOutput(status="stopped", message="Indexing stopped successfully", timestamp=now)
    return StopOutput(
        status="stopping",
        message="Stop requested; the run ends before its next registry",
        timestamp=now,
    )


@router.get("/indexing/status", response_model=StatusOutput)
async def status(
    admin: AdminContext = Depends(require_admin_key),
    db: AsyncSession = Depends(get_db),
) -> StatusOutput:
    result = await get_indexing_status(db)
    return StatusOutput(
        current=IndexingHistoryEntry.from_history(result.current) if result.current else None,
        is_running=result.is_running,
    )


@router.get("/indexing/history", response_model=HistoryOutput)
async def history(
    limit: int = Query(default=MAX_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    offset: int = Query(default=0, ge=0),
    admin: AdminContext = Depends(require_admin_key),
    db: AsyncSession = Depends(get_db),
) -> HistoryOutput:
    runs = await get_indexing_history(db, limit=limit, offset=offset)
    return HistoryOutput(
        data=[IndexingHistoryEntry.from_history(run) for run in runs],
        limit=limit,
        offset=offset,
    )
