from typing import AsyncIterator, Optional

import httpx
from fastapi import Request
from sqlmodel.ext.asyncio.session import AsyncSession

from src.core.cache import CacheBackend
from src.core.config import get_settings
from src.core.db import get_session_factory


_http_client: httpx.AsyncClient | None = None


async def get_db() -> AsyncIterator[AsyncSession]:
    async with get_session_factory()() as session:
        yield session


def get_http_client() -> httpx.AsyncClient:
    """Process-wide client; fetch timeout is bounded by FETCH_TIMEOUT_SECONDS."""
    global _http_client
    if _http_client is None:
        settings = get_settings()
        _http_client = httpx.AsyncClient(
            timeout=settings.fetch_timeout_seconds,
            follow_redirects=True,
        )
    return _http_client


async def close_http_client() -> None:
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def get_cache(request: Request) -> Optional[CacheBackend]:
    """Cache built in the app lifespan; None when REDIS_URL is unset."""
    return getattr(request.app.state, "cache", None)
