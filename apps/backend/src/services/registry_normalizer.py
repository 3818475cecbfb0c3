import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import delete
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from models import (
    RegistryMetadata,
    RegistryRepository,
    Repository,
    RepositoryFacet,
    SyncLog,
)
from src.services.category_service import normalize_category_name
from src.services.registry_fetcher import RegistryDocument, RegistryItem, RepoInfo


logger = logging.getLogger(__name__)

# Bound on IN (...) parameters; SQLite rejects very large lists
LOOKUP_CHUNK_SIZE = 500


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RegistryIndexResult:
    registry_name: str
    items_indexed: int
    repositories: int
    total_stars: int
    skipped_items: int = 0


@dataclass
class _Association:
    title: str
    description: Optional[str]
    repo: Optional[RepoInfo] = None
    categories: List[str] = field(default_factory=list)

    def add_category(self, category: Optional[str]) -> None:
        if category and category not in self.categories:
            self.categories.append(category)


def flatten_items(items: List[RegistryItem]) -> Iterator[RegistryItem]:
    """Depth-first walk; children land in their parent's section."""
    for item in items:
        yield item
        if item.children:
            yield from flatten_items(item.children)


def _has_repo(item: RegistryItem) -> bool:
    info = item.repo_info
    return info is not None and bool(info.owner) and bool(info.repo)


def collect_associations(
    registry_name: str, document: RegistryDocument
) -> tuple[list[_Association], int]:
    """
    Groups the document's items into one association per repository
    (keyed by owner/repo) or, for items without repository info, per title.
    Returns (associations in first-seen order, skipped item count).
    """
    by_repo: dict[tuple[str, str], _Association] = {}
    by_title: dict[str, _Association] = {}
    ordered: list[_Association] = []
    skipped = 0

    for section in document.items:
        normalized = normalize_category_name(section.title)
        category = normalized.name if normalized else None

        for item in flatten_items(section.items):
            title = (item.title or "").strip()
            if not title:
                skipped += 1
                logger.warning(
                    f"Skipping item without title in {registry_name}/{section.title}",
                    extra={"registry": registry_name},
                )
                continue

            if _has_repo(item):
                info = item.repo_info
                key = (info.owner, info.repo)
                entry = by_repo.get(key)
                if entry is None:
                    entry = _Association(title=title, description=item.description, repo=info)
                    by_repo[key] = entry
                    ordered.append(entry)
                else:
                    # Later sightings refresh repository fields, not the title
                    entry.repo = info
                    if item.description:
                        entry.description = item.description
            else:
                entry = by_title.get(title)
                if entry is None:
                    entry = _Association(title=title, description=item.description)
                    by_title[title] = entry
                    ordered.append(entry)

            entry.add_category(category)

    return ordered, skipped


async def _load_repositories(
    db: AsyncSession, keys: list[tuple[str, str]]
) -> dict[tuple[str, str], Repository]:
    owners = sorted({owner for owner, _ in keys})
    wanted = set(keys)
    found: dict[tuple[str, str], Repository] = {}

    for start in range(0, len(owners), LOOKUP_CHUNK_SIZE):
        chunk = owners[start:start + LOOKUP_CHUNK_SIZE]
        result = await db.exec(select(Repository).where(Repository.owner.in_(chunk)))
        for repo in result.all():
            key = (repo.owner, repo.name)
            if key in wanted:
                found[key] = repo

    return found


async def upsert_repositories(
    db: AsyncSession, associations: list[_Association]
) -> dict[tuple[str, str], Repository]:
    """Insert on first sight, refresh mutable fields afterwards. Flushes for ids."""
    keys = [(a.repo.owner, a.repo.repo) for a in associations if a.repo is not None]
    existing = await _load_repositories(db, keys)
    now = _utc_now()

    for entry in associations:
        if entry.repo is None:
            continue
        info = entry.repo
        key = (info.owner, info.repo)
        repo = existing.get(key)
        if repo is None:
            repo = Repository(owner=info.owner, name=info.repo)
            existing[key] = repo
            db.add(repo)
        else:
            repo.updated_at = now

        if entry.description:
            repo.description = entry.description
        repo.stars = info.stars or 0
        repo.language = info.language
        repo.last_commit = info.last_commit
        repo.archived = info.archived

    await db.flush()
    return existing


async def _upsert_metadata(
    db: AsyncSession,
    registry_name: str,
    document: RegistryDocument,
    total_items: int,
    total_stars: int,
) -> None:
    meta = document.metadata
    existing = await db.get(RegistryMetadata, registry_name)
    if existing is None:
        existing = RegistryMetadata(
            registry_name=registry_name,
            title=meta.title,
            source_repository=meta.source_repository,
            last_updated=meta.last_updated,
        )
        db.add(existing)
    else:
        existing.title = meta.title
        existing.source_repository = meta.source_repository
        existing.last_updated = meta.last_updated
        existing.updated_at = _utc_now()

    existing.description = meta.source_repository_description or ""
    existing.total_items = total_items
    existing.total_stars = total_stars


async def index_registry(
    db: AsyncSession,
    registry_name: str,
    document: RegistryDocument,
) -> RegistryIndexResult:
    """
    Replaces everything stored for one registry with the contents of
    `document` in a single transaction.

    Repositories are shared across registries and are only upserted,
    never deleted. Associations and facets of this registry are rebuilt
    from scratch, so indexing the same document twice is a no-op.
    Metadata totals count repository-backed associations only.

    On any store error the transaction is rolled back and the error
    propagates to the caller.
    """
    associations, skipped = collect_associations(registry_name, document)

    try:
        repos = await upsert_repositories(db, associations)

        await db.exec(
            delete(RepositoryFacet).where(RepositoryFacet.registry_name == registry_name)
        )
        await db.exec(
            delete(RegistryRepository).where(RegistryRepository.registry_name == registry_name)
        )

        total_stars = 0
        repo_backed = 0
        for entry in associations:
            repository = None
            if entry.repo is not None:
                repository = repos[(entry.repo.owner, entry.repo.repo)]
                repo_backed += 1
                total_stars += repository.stars

            db.add(RegistryRepository(
                registry_name=registry_name,
                repository_id=repository.id if repository else None,
                title=entry.title,
                description=None if repository else entry.description,
                categories=list(entry.categories),
            ))

            if repository is None:
                continue
            for category in entry.categories:
                db.add(RepositoryFacet(
                    repository_id=repository.id,
                    registry_name=registry_name,
                    category_name=category,
                    language=repository.language,
                ))

        await _upsert_metadata(db, registry_name, document, repo_backed, total_stars)

        db.add(SyncLog(
            registry_name=registry_name,
            status="success",
            items_synced=len(associations),
        ))

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Indexed {registry_name}: {len(associations)} items, "
        f"{repo_backed} repositories, {skipped} skipped",
        extra={"registry": registry_name},
    )

    return RegistryIndexResult(
        registry_name=registry_name,
        items_indexed=len(associations),
        repositories=repo_backed,
        total_stars=total_stars,
        skipped_items=skipped,
    )
