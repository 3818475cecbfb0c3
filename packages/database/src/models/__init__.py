from sqlmodel import SQLModel

from models.registry import (
    Repository,
    RegistryMetadata,
    RegistryRepository,
    RepositoryFacet,
    SyncLog,
)
from models.indexing import IndexingHistory, IndexingLatest, LATEST_STATUS_ID

__all__ = [
    "SQLModel",
    "Repository",
    "RegistryMetadata",
    "RegistryRepository",
    "RepositoryFacet",
    "SyncLog",
    "IndexingHistory",
    "IndexingLatest",
    "LATEST_STATUS_ID",
]
