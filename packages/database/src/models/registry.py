from typing import List, Optional
from datetime import datetime, timezone
import sqlalchemy as sa
from sqlmodel import SQLModel, Field, Column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Repository(SQLModel, table=True):
    """Canonical GitHub repository; shared by every registry that lists it."""
    __tablename__ = "repositories"
    __table_args__ = (sa.UniqueConstraint("owner", "name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    owner: str = Field(index=True)
    name: str
    description: Optional[str] = None
    stars: int = Field(default=0, index=True)
    language: Optional[str] = Field(default=None, index=True)
    # ISO-8601 string as published by the registry data files
    last_commit: Optional[str] = Field(default=None, index=True)
    archived: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class RegistryMetadata(SQLModel, table=True):
    __tablename__ = "registry_metadata"

    registry_name: str = Field(primary_key=True)
    title: str
    description: str = Field(default="")
    source_repository: str
    last_updated: str
    total_items: int = Field(default=0)
    total_stars: int = Field(default=0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class RegistryRepository(SQLModel, table=True):
    """
    Registry <-> repository association with registry-specific display fields.
    repository_id is NULL for items that carry no repository info.
    """
    __tablename__ = "registry_repositories"

    id: Optional[int] = Field(default=None, primary_key=True)
    registry_name: str = Field(index=True)
    repository_id: Optional[int] = Field(
        default=None, foreign_key="repositories.id", index=True
    )
    title: str
    description: Optional[str] = None
    # Ordered set of normalized category labels
    categories: List[str] = Field(default_factory=list, sa_column=Column(sa.JSON))
    created_at: datetime = Field(default_factory=_utc_now)


class RepositoryFacet(SQLModel, table=True):
    __tablename__ = "repository_facets"
    __table_args__ = (
        sa.Index(
            "idx_facets_registry_lang_cat",
            "registry_name", "language", "category_name", "repository_id",
        ),
    )

    repository_id: int = Field(primary_key=True)
    registry_name: str = Field(primary_key=True)
    category_name: str = Field(primary_key=True, index=True)
    language: Optional[str] = Field(default=None, index=True)


class SyncLog(SQLModel, table=True):
    __tablename__ = "sync_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    registry_name: str = Field(index=True)
    status: str  # success | error
    items_synced: int = Field(default=0)
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now, index=True)
