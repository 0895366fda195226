"""
Redis-backed ClaimStore for strict mode (SET NX EX).
"""
from __future__ import annotations

from typing import Optional

from redis import asyncio as aioredis

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class RedisClaimStore:
    def __init__(
        self,
        client: aioredis.Redis,
        *,
        namespace: str = "",
        ttl_seconds: int = 120,
    ) -> None:
        self._client = client
        self._namespace = namespace.strip(":")
        self._ttl = ttl_seconds

    @classmethod
    def from_settings(cls, url: Optional[str] = None) -> "RedisClaimStore":
        url = url or settings.redis.url
        if not url:
            raise RuntimeError("REDIS__URL is required for strict marker mode")
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, namespace=settings.redis.namespace, ttl_seconds=settings.redis.claim_ttl_seconds)

    def _format_key(self, key: str) -> str:
        if not self._namespace:
            return f"claim:{key}"
        return f"{self._namespace}:claim:{key}"

    async def claim(self, key: str) -> bool:
        acquired = await self._client.set(self._format_key(key), "1", ex=self._ttl, nx=True)
        logger.debug("claim_attempted", key=key, acquired=bool(acquired))
        return bool(acquired)

    async def release(self, key: str) -> None:
        await self._client.delete(self._format_key(key))

    async def aclose(self) -> None:
        await self._client.aclose()
