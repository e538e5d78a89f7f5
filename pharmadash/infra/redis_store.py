from __future__ import annotations
from typing import Any, Optional
import redis.asyncio as aioredis
from pharmadash.core.config import settings

# -----------------------------------------------------------------------------
# Key-value store (Redis) usado pelo cache de resultados
# -----------------------------------------------------------------------------

class RedisKeyValueStore:
    """
    Namespaced bytes get/set with TTL on top of ``redis.asyncio``.

    Errors are not handled here; ``ResultCache`` treats any failure as a miss.
    """

    def __init__(self, client: Any, *, namespace: str = "pharmadash:analytics:v1"):
        self._client = client
        self._ns = namespace

    @classmethod
    def from_url(cls, url: str, *, namespace: Optional[str] = None) -> "RedisKeyValueStore":
        client = aioredis.from_url(
            url,
            decode_responses=False,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
        return cls(client, namespace=namespace or settings.CACHE_NAMESPACE)

    def _k(self, key: str) -> str:
        return f"{self._ns}:{key.lstrip(':')}"

    async def get(self, key: str) -> Optional[bytes]:
        return await self._client.get(self._k(key))

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await self._client.set(self._k(key), value, ex=max(int(ttl_seconds), 1))

    async def close(self) -> None:
        await self._client.aclose()
