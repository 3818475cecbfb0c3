"""
Key-value cache collaborator for the search index snapshot.

The cache is constructed once per process (app lifespan) and passed
explicitly to the services that use it. Any backend implementing
CacheBackend works; RedisCache is the production one.
"""
from typing import Optional, Protocol

import redis.asyncio as redis


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisCache:
    """CacheBackend over redis.asyncio; values are stored as UTF-8 strings."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def create_cache(url: str) -> Optional[RedisCache]:
    """Returns None when no cache URL is configured; callers treat that as no cache."""
    if not url:
        return None
    return RedisCache.from_url(url)
