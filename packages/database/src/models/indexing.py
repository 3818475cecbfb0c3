from typing import List, Optional
from datetime import datetime, timezone
import sqlalchemy as sa
from sqlmodel import SQLModel, Field, Column


# Fixed key of the single indexing_latest row
LATEST_STATUS_ID = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IndexingHistory(SQLModel, table=True):
    """One indexing run. Finalized exactly once as completed or failed."""
    __tablename__ = "indexing_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    trigger_source: str  # manual | scheduled
    status: str = Field(default="running", index=True)  # running | completed | failed
    started_at: datetime = Field(default_factory=_utc_now, index=True)
    completed_at: Optional[datetime] = None

    total_registries: Optional[int] = None
    processed_registries: int = Field(default=0)
    current_registry: Optional[str] = None
    success_count: int = Field(default=0)
    failed_count: int = Field(default=0)

    errors: List[str] = Field(default_factory=list, sa_column=Column(sa.JSON))
    error_message: Optional[str] = None
    # Last 4 chars of the admin API key for manual runs
    created_by: Optional[str] = None
    stop_requested: bool = Field(default=False)


class IndexingLatest(SQLModel, table=True):
    """Singleton pointer at the most recent run; status is denormalized."""
    __tablename__ = "indexing_latest"

    id: int = Field(default=LATEST_STATUS_ID, primary_key=True)
    history_id: Optional[int] = Field(default=None, foreign_key="indexing_history.id")
    status: str = Field(default="idle")  # idle | running | completed | failed
    updated_at: datetime = Field(default_factory=_utc_now)
