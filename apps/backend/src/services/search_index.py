"""
In-memory search index over every registry item, snapshotted to the cache.

The snapshot is a list of SearchDocument plus an inverted index
(token -> positions into the document list). It is rebuilt lazily on a
cache miss and invalidated after every indexing run.
"""
import json
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from constants import (
    SEARCH_FIELD_WEIGHTS,
    SEARCH_INDEX_CACHE_KEY,
    SEARCH_INDEX_TTL_SECONDS,
    SEARCH_INDEX_VERSION,
    SEARCH_OVERFETCH_FACTOR,
)
from models import RegistryRepository, Repository
from src.core.cache import CacheBackend


logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[^\W_]+")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SearchDocument(BaseModel):
    id: int
    registry_name: str
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    language: Optional[str] = None
    stars: int = 0
    archived: bool = False
    owner: Optional[str] = None
    repo: Optional[str] = None
    last_commit: Optional[str] = None

    def field_text(self, name: str) -> str:
        if name == "category":
            return " ".join(self.categories).lower()
        return (getattr(self, name) or "").lower()


class SearchIndexSnapshot(BaseModel):
    version: int = SEARCH_INDEX_VERSION
    built_at: datetime
    documents: List[SearchDocument]
    postings: Dict[str, List[int]] = Field(default_factory=dict)


class SearchOptions(BaseModel):
    """
    Post-filters for flex_search. min_stars of 0/None means no filter;
    archived=False hides archived repositories, True shows everything.
    """
    registry_name: Optional[str] = None
    category: Optional[str] = None
    language: Optional[str] = None
    min_stars: Optional[int] = None
    archived: bool = False
    limit: int = 20


class SearchResultItem(BaseModel):
    id: int
    score: float
    document: SearchDocument


class ServerSearchResult(BaseModel):
    items: List[SearchResultItem] = Field(default_factory=list)
    used_fallback: bool = False


def tokenize(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return _TOKEN.findall(text.lower())


def _index_document(postings: Dict[str, List[int]], position: int, doc: SearchDocument) -> None:
    for name in SEARCH_FIELD_WEIGHTS:
        for token in tokenize(doc.field_text(name)):
            positions = postings.setdefault(token, [])
            if not positions or positions[-1] != position:
                positions.append(position)


async def build_search_index(db: AsyncSession) -> SearchIndexSnapshot:
    """Reads every association with its repository, in insertion order."""
    statement = (
        select(RegistryRepository, Repository)
        .outerjoin(Repository, RegistryRepository.repository_id == Repository.id)
        .order_by(RegistryRepository.id)
    )
    result = await db.exec(statement)

    documents: List[SearchDocument] = []
    postings: Dict[str, List[int]] = {}
    for association, repo in result.all():
        categories = list(association.categories or [])
        doc = SearchDocument(
            id=association.id,
            registry_name=association.registry_name,
            title=association.title,
            description=repo.description if repo else association.description,
            category=categories[0] if categories else None,
            categories=categories,
            language=repo.language if repo else None,
            stars=repo.stars if repo else 0,
            archived=repo.archived if repo else False,
            owner=repo.owner if repo else None,
            repo=repo.name if repo else None,
            last_commit=repo.last_commit if repo else None,
        )
        _index_document(postings, len(documents), doc)
        documents.append(doc)

    logger.info(f"Built search index: {len(documents)} documents, {len(postings)} tokens")
    return SearchIndexSnapshot(
        version=SEARCH_INDEX_VERSION,
        built_at=_utc_now(),
        documents=documents,
        postings=postings,
    )


def decode_snapshot(raw: str) -> Optional[SearchIndexSnapshot]:
    """None for undecodable payloads and for snapshots of another version."""
    try:
        data = json.loads(raw)
        if not isinstance(data, dict) or data.get("version") != SEARCH_INDEX_VERSION:
            return None
        return SearchIndexSnapshot.model_validate(data)
    except (ValueError, ValidationError):
        return None


async def get_or_create_search_index(
    db: AsyncSession, cache: Optional[CacheBackend] = None
) -> SearchIndexSnapshot:
    """
    Cache hit with the current version returns as-is. Anything else
    rebuilds from the store. Cache failures are logged and never raised;
    store failures propagate.
    """
    if cache is not None:
        try:
            raw = await cache.get(SEARCH_INDEX_CACHE_KEY)
        except Exception as e:
            logger.warning(f"Search index cache read failed: {e}")
            raw = None

        if raw:
            snapshot = decode_snapshot(raw)
            if snapshot is not None:
                return snapshot
            logger.info("Cached search index is stale or unreadable; rebuilding")

    snapshot = await build_search_index(db)

    if cache is not None:
        try:
            await cache.put(
                SEARCH_INDEX_CACHE_KEY,
                snapshot.model_dump_json(),
                SEARCH_INDEX_TTL_SECONDS,
            )
        except Exception as e:
            logger.warning(f"Search index cache write failed: {e}")

    return snapshot


async def invalidate_search_index(cache: Optional[CacheBackend] = None) -> None:
    if cache is None:
        return
    try:
        await cache.delete(SEARCH_INDEX_CACHE_KEY)
        logger.info("Search index invalidated")
    except Exception as e:
        logger.warning(f"Search index invalidation failed: {e}")


def _matches(doc: SearchDocument, options: SearchOptions) -> bool:
    if options.registry_name and doc.registry_name != options.registry_name:
        return False
    if options.category and options.category not in doc.categories:
        return False
    if options.language and doc.language != options.language:
        return False
    if options.min_stars and doc.stars < options.min_stars:
        return False
    if not options.archived and doc.archived:
        return False
    return True


def _score(doc: SearchDocument, terms: List[str]) -> float:
    score = 0.0
    for term in terms:
        for name, weight in SEARCH_FIELD_WEIGHTS.items():
            if term in doc.field_text(name):
                score += weight
    return score


def _candidate_positions(snapshot: SearchIndexSnapshot, terms: List[str]) -> List[int]:
    """Positions containing every term as a substring of some indexed token."""
    matched: Optional[set[int]] = None
    for term in terms:
        positions: set[int] = set()
        for token, token_positions in snapshot.postings.items():
            if term in token:
                positions.update(token_positions)
        matched = positions if matched is None else matched & positions
        if not matched:
            return []
    return sorted(matched or ())


def flex_search(
    snapshot: SearchIndexSnapshot,
    query: str,
    options: Optional[SearchOptions] = None,
) -> List[SearchResultItem]:
    """
    Blank query: every document passing the filters, stars descending,
    constant score 1.0.

    Text query: ranked candidates (score descending, index order on ties)
    are over-fetched to limit * SEARCH_OVERFETCH_FACTOR, then filtered in
    ranking order until `limit` results are collected. A document that
    matches the text but ranks past the candidate window is not returned.
    """
    options = options or SearchOptions()
    limit = max(options.limit, 0)

    if not query or not query.strip():
        docs = [d for d in snapshot.documents if _matches(d, options)]
        docs.sort(key=lambda d: d.stars, reverse=True)
        return [SearchResultItem(id=d.id, score=1.0, document=d) for d in docs[:limit]]

    terms = tokenize(query)
    if not terms:
        return []

    ranked = []
    for position in _candidate_positions(snapshot, terms):
        doc = snapshot.documents[position]
        ranked.append((-_score(doc, terms), position, doc))
    ranked.sort(key=lambda entry: (entry[0], entry[1]))

    results: List[SearchResultItem] = []
    for neg_score, _, doc in ranked[: limit * SEARCH_OVERFETCH_FACTOR]:
        if len(results) >= limit:
            break
        if _matches(doc, options):
            results.append(SearchResultItem(id=doc.id, score=-neg_score, document=doc))
    return results


async def server_search(
    db: AsyncSession,
    query: str,
    options: Optional[SearchOptions] = None,
    cache: Optional[CacheBackend] = None,
) -> ServerSearchResult:
    """Never raises; any failure yields used_fallback=True so callers can degrade."""
    try:
        snapshot = await get_or_create_search_index(db, cache)
        return ServerSearchResult(items=flex_search(snapshot, query, options))
    except Exception:
        logger.exception("Index search failed; signalling fallback")
        return ServerSearchResult(items=[], used_fallback=True)
