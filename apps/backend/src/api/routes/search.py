"""Public read endpoints: item search, facets and registry metadata."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlmodel.ext.asyncio.session import AsyncSession

from src.api.dependencies import get_cache, get_db
from src.core.cache import CacheBackend
from src.services.query_service import (
    CategoryCount,
    MAX_SEARCH_LIMIT,
    RegistryMetadataOut,
    SearchItem,
    SearchPage,
    SearchParams,
    get_categories,
    get_languages,
    get_registry_metadata,
    search_registry_items,
)
from src.services.search_index import SearchDocument, SearchOptions, server_search


logger = logging.getLogger(__name__)

router = APIRouter()

SEARCH_CACHE_CONTROL = "public, max-age=300"
FACET_CACHE_CONTROL = "public, max-age=3600"

SORT_OPTIONS = {"name", "stars", "updated", "quality"}


class QuickSearchHit(BaseModel):
    id: int
    score: float
    registry: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    language: Optional[str] = None
    stars: int = 0
    archived: bool = False
    owner: Optional[str] = None
    repo: Optional[str] = None

    @classmethod
    def from_document(cls, doc: SearchDocument, score: float) -> "QuickSearchHit":
        return cls(
            id=doc.id,
            score=score,
            registry=doc.registry_name,
            title=doc.title,
            description=doc.description,
            category=doc.category,
            categories=doc.categories,
            language=doc.language,
            stars=doc.stars,
            archived=doc.archived,
            owner=doc.owner,
            repo=doc.repo,
        )

    @classmethod
    def from_search_item(cls, item: SearchItem) -> "QuickSearchHit":
        info = item.repo_info
        return cls(
            id=item.id,
            score=1.0,
            registry=item.registry,
            title=item.title,
            description=item.description,
            category=item.category,
            categories=item.categories,
            language=info.language if info else None,
            stars=info.stars if info else 0,
            archived=info.archived if info else False,
            owner=info.owner if info else None,
            repo=info.repo if info else None,
        )


class QuickSearchResponse(BaseModel):
    data: List[QuickSearchHit]
    used_fallback: bool = Field(serialization_alias="usedFallback")


def parse_archived(value: str | None) -> bool | None:
    """'true' / 'false'; anything else means no archived filter."""
    if value == "true":
        return True
    if value == "false":
        return False
    return None


@router.get("/search", response_model=SearchPage)
async def search(
    response: Response,
    q: str | None = None,
    registry: str | None = None,
    category: str | None = None,
    language: str | None = None,
    archived: str | None = None,
    min_stars: int | None = Query(default=None, alias="minStars"),
    sort_by: str | None = Query(default=None, alias="sortBy"),
    limit: int = Query(default=100, ge=1, le=MAX_SEARCH_LIMIT),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> SearchPage:
    params = SearchParams(
        q=q or None,
        registry=registry or None,
        category=category or None,
        language=language or None,
        archived=parse_archived(archived),
        min_stars=min_stars,
        sort_by=sort_by if sort_by in SORT_OPTIONS else "stars",
        limit=limit,
        offset=offset,
    )
    page = await search_registry_items(db, params)
    response.headers["Cache-Control"] = SEARCH_CACHE_CONTROL
    return page


@router.get("/search/quick", response_model=QuickSearchResponse)
async def quick_search(
    response: Response,
    q: str = "",
    registry: str | None = None,
    category: str | None = None,
    language: str | None = None,
    archived: str | None = None,
    min_stars: int | None = Query(default=None, alias="minStars"),
    limit: int = Query(default=20, ge=1, le=MAX_SEARCH_LIMIT),
    db: AsyncSession = Depends(get_db),
    cache: CacheBackend | None = Depends(get_cache),
) -> QuickSearchResponse:
    """
    Index-backed search. When the index is unavailable the same filters
    run against the relational store and usedFallback is set.
    """
    include_archived = archived == "true"
    options = SearchOptions(
        registry_name=registry or None,
        category=category or None,
        language=language or None,
        min_stars=min_stars,
        archived=include_archived,
        limit=limit,
    )
    result = await server_search(db, q, options, cache)
    response.headers["Cache-Control"] = SEARCH_CACHE_CONTROL

    if not result.used_fallback:
        return QuickSearchResponse(
            data=[QuickSearchHit.from_document(i.document, i.score) for i in result.items],
            used_fallback=False,
        )

    logger.warning("Index search unavailable; using relational search")
    await db.rollback()
    page = await search_registry_items(db, SearchParams(
        q=q or None,
        registry=options.registry_name,
        category=options.category,
        language=options.language,
        archived=None if include_archived else False,
        min_stars=min_stars,
        limit=limit,
    ))
    return QuickSearchResponse(
        data=[QuickSearchHit.from_search_item(item) for item in page.data],
        used_fallback=True,
    )


@router.get("/categories", response_model=List[CategoryCount])
async def categories(
    response: Response,
    registry: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> List[CategoryCount]:
    result = await get_categories(db, registry or None)
    response.headers["Cache-Control"] = FACET_CACHE_CONTROL
    return result


@router.get("/languages", response_model=List[str])
async def languages(
    response: Response,
    registry: str | None = None,
    db: AsyncSession = Depends(get_db),
) -> List[str]:
    result = await get_languages(db, registry or None)
    response.headers["Cache-Control"] = FACET_CACHE_CONTROL
    return result


@router.get("/metadata", response_model=List[RegistryMetadataOut])
async def metadata(
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> List[RegistryMetadataOut]:
    result = await get_registry_metadata(db)
    response.headers["Cache-Control"] = FACET_CACHE_CONTROL
    return result
