"""
Relational queries behind the public read endpoints: filtered item search,
facet counts, language lists and registry metadata. Nothing here is cached.
"""
import json
import math
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy import String, cast, func, or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from models import RegistryMetadata, RegistryRepository, Repository, RepositoryFacet


SortBy = Literal["stars", "name", "updated", "quality"]

DEFAULT_SEARCH_LIMIT = 100
MAX_SEARCH_LIMIT = 500

FRESHNESS_WINDOW_DAYS = 365
FRESHNESS_WEIGHT = 0.5
ACTIVITY_WEIGHT = 0.3
# Commit frequency is not stored; activity is estimated from freshness
ACTIVITY_FROM_FRESHNESS = 0.8


class SearchParams(BaseModel):
    q: Optional[str] = None
    registry: Optional[str] = None
    category: Optional[str] = None
    language: Optional[str] = None
    archived: Optional[bool] = None
    min_stars: Optional[int] = None
    sort_by: SortBy = "stars"
    limit: int = DEFAULT_SEARCH_LIMIT
    offset: int = 0


class RepoInfoOut(BaseModel):
    owner: str
    repo: str
    stars: int
    language: Optional[str] = None
    last_commit: str = ""
    archived: bool = False


class SearchItem(BaseModel):
    id: int
    registry: str
    category: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    title: str
    description: Optional[str] = None
    repo_info: Optional[RepoInfoOut] = None
    quality_score: float = Field(serialization_alias="qualityScore")


class SearchPage(BaseModel):
    data: List[SearchItem]
    total: int
    has_more: bool = Field(serialization_alias="hasMore")
    offset: int


class CategoryCount(BaseModel):
    category: str
    count: int
    key: str
    registry: str


class RegistryStats(BaseModel):
    categories: int
    languages: List[str]
    latest_update: str = Field(serialization_alias="latestUpdate")
    total_repos: int = Field(serialization_alias="totalRepos")
    total_stars: int = Field(serialization_alias="totalStars")


class RegistryMetadataOut(BaseModel):
    name: str
    title: str
    description: str
    source_repository: str
    stats: RegistryStats


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def calculate_quality_score(
    stars: Optional[int],
    last_commit: Optional[str],
    now: Optional[datetime] = None,
) -> float:
    """
    log10(stars) plus weighted freshness and activity, where freshness
    decays linearly from 1 (committed now) to 0 (a year or older).
    """
    score = math.log10(max(stars or 0, 1))

    freshness = 0.0
    committed_at = _parse_timestamp(last_commit) if last_commit else None
    if committed_at is not None:
        now = now or datetime.now(timezone.utc)
        days = max(0.0, (now - committed_at).total_seconds() / 86400)
        freshness = max(0.0, 1 - days / FRESHNESS_WINDOW_DAYS)

    activity = freshness * ACTIVITY_FROM_FRESHNESS
    return score + freshness * FRESHNESS_WEIGHT + activity * ACTIVITY_WEIGHT


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _search_conditions(params: SearchParams) -> list:
    conditions = []
    categories_text = cast(RegistryRepository.categories, String)

    if params.registry:
        conditions.append(RegistryRepository.registry_name == params.registry)
    if params.category:
        needle = escape_like(json.dumps(params.category))
        conditions.append(categories_text.like(f"%{needle}%", escape="\\"))
    if params.language:
        conditions.append(Repository.language == params.language)
    if params.min_stars:
        conditions.append(Repository.stars >= params.min_stars)
    if params.archived is True:
        conditions.append(Repository.archived == True)  # noqa: E712
    elif params.archived is False:
        # Items without a repository count as active
        conditions.append(or_(Repository.id.is_(None), Repository.archived == False))  # noqa: E712

    query = (params.q or "").strip()
    if query:
        pattern = f"%{escape_like(query)}%"
        conditions.append(or_(
            RegistryRepository.title.ilike(pattern, escape="\\"),
            func.coalesce(Repository.description, RegistryRepository.description)
            .ilike(pattern, escape="\\"),
            categories_text.ilike(pattern, escape="\\"),
        ))

    return conditions


def _order_by(sort_by: SortBy) -> list:
    if sort_by == "name":
        return [RegistryRepository.title.asc(), RegistryRepository.id.asc()]
    if sort_by == "updated":
        return [
            func.coalesce(Repository.last_commit, "").desc(),
            RegistryRepository.id.asc(),
        ]
    # stars, and quality which is re-sorted per page after scoring
    return [func.coalesce(Repository.stars, 0).desc(), RegistryRepository.id.asc()]


def _to_item(association: RegistryRepository, repo: Optional[Repository]) -> SearchItem:
    categories = list(association.categories or [])
    repo_info = None
    if repo is not None:
        repo_info = RepoInfoOut(
            owner=repo.owner,
            repo=repo.name,
            stars=repo.stars,
            language=repo.language,
            last_commit=repo.last_commit or "",
            archived=repo.archived,
        )
    return SearchItem(
        id=association.id,
        registry=association.registry_name,
        category=categories[0] if categories else None,
        categories=categories,
        title=association.title,
        description=repo.description if repo else association.description,
        repo_info=repo_info,
        quality_score=calculate_quality_score(
            repo.stars if repo else 0,
            repo.last_commit if repo else None,
        ),
    )


async def search_registry_items(db: AsyncSession, params: SearchParams) -> SearchPage:
    """
    Filtered, sorted, offset-paginated search over registry items.

    archived: None = no filter, True = only archived, False = only active.
    min_stars of 0/None applies no filter. sort_by="quality" orders the
    page by quality score after fetching it in stars order.
    """
    limit = max(1, min(params.limit, MAX_SEARCH_LIMIT))
    offset = max(params.offset, 0)
    conditions = _search_conditions(params)

    count_statement = (
        select(func.count(RegistryRepository.id))
        .select_from(RegistryRepository)
        .outerjoin(Repository, RegistryRepository.repository_id == Repository.id)
        .where(*conditions)
    )
    total = (await db.exec(count_statement)).one()

    statement = (
        select(RegistryRepository, Repository)
        .outerjoin(Repository, RegistryRepository.repository_id == Repository.id)
        .where(*conditions)
        .order_by(*_order_by(params.sort_by))
        .offset(offset)
        .limit(limit)
    )
    rows = (await db.exec(statement)).all()
    items = [_to_item(association, repo) for association, repo in rows]

    if params.sort_by == "quality":
        items.sort(key=lambda item: item.quality_score, reverse=True)

    return SearchPage(
        data=items,
        total=total,
        has_more=offset + len(items) < total,
        offset=offset,
    )


async def get_categories(db: AsyncSession, registry: str | None = None) -> list[CategoryCount]:
    statement = (
        select(
            RepositoryFacet.registry_name,
            RepositoryFacet.category_name,
            func.count(RepositoryFacet.repository_id),
        )
        .group_by(RepositoryFacet.registry_name, RepositoryFacet.category_name)
        .order_by(RepositoryFacet.category_name.asc(), RepositoryFacet.registry_name.asc())
    )
    if registry:
        statement = statement.where(RepositoryFacet.registry_name == registry)

    result = await db.exec(statement)
    return [
        CategoryCount(
            category=category,
            count=count,
            key=f"{registry_name}::{category}",
            registry=registry_name,
        )
        for registry_name, category, count in result.all()
    ]


async def get_languages(db: AsyncSession, registry: str | None = None) -> list[str]:
    statement = (
        select(Repository.language)
        .join(RegistryRepository, RegistryRepository.repository_id == Repository.id)
        .where(Repository.language.is_not(None))
        .distinct()
        .order_by(Repository.language.asc())
    )
    if registry:
        statement = statement.where(RegistryRepository.registry_name == registry)

    result = await db.exec(statement)
    return list(result.all())


async def get_registry_metadata(db: AsyncSession) -> list[RegistryMetadataOut]:
    """Every indexed registry with its stats, ordered by name."""
    metadata = (await db.exec(
        select(RegistryMetadata).order_by(RegistryMetadata.registry_name.asc())
    )).all()

    language_rows = (await db.exec(
        select(RegistryRepository.registry_name, Repository.language)
        .join(Repository, RegistryRepository.repository_id == Repository.id)
        .where(Repository.language.is_not(None))
        .distinct()
    )).all()
    languages: dict[str, list[str]] = {}
    for registry_name, language in language_rows:
        languages.setdefault(registry_name, []).append(language)

    category_rows = (await db.exec(
        select(
            RepositoryFacet.registry_name,
            func.count(func.distinct(RepositoryFacet.category_name)),
        ).group_by(RepositoryFacet.registry_name)
    )).all()
    category_counts = dict(category_rows)

    return [
        RegistryMetadataOut(
            name=meta.registry_name,
            title=meta.title,
            description=meta.description,
            source_repository=meta.source_repository,
            stats=RegistryStats(
                categories=category_counts.get(meta.registry_name, 0),
                languages=sorted(languages.get(meta.registry_name, [])),
                latest_update=meta.last_updated,
                total_repos=meta.total_items,
                total_stars=meta.total_stars,
            ),
        )
        for meta in metadata
    ]
