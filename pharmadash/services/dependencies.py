"""FastAPI dependency providers for service layer."""

from functools import lru_cache

from fastapi import Depends

from pharmadash.core.cache import ResultCache
from pharmadash.core.config import settings
from pharmadash.core.logging import app_logger
from pharmadash.infra.redis_store import RedisKeyValueStore
from pharmadash.repositories.identifier_resolver import (
    MemoryIdentifierResolver,
    PassthroughIdentifierResolver,
    SqlIdentifierResolver,
)
from pharmadash.repositories.memory_fact_store import MemoryFactStore
from pharmadash.repositories.protocols import FactStoreProtocol, IdentifierResolverProtocol
from pharmadash.repositories.sql_fact_store import SqlFactStore
from pharmadash.services.analytics_service import AnalyticsService


@lru_cache(maxsize=1)
def get_fact_store() -> FactStoreProtocol:
    if settings.FACT_STORE == "memory":
        if settings.MEMORY_DATA_DIR:
            return MemoryFactStore.from_directory(settings.MEMORY_DATA_DIR)
        app_logger.warning("FACT_STORE=memory without MEMORY_DATA_DIR, serving an empty store")
        return MemoryFactStore()
    return SqlFactStore(statement_timeout_ms=settings.STATEMENT_TIMEOUT_MS)


def get_identifier_resolver(
    store: FactStoreProtocol = Depends(get_fact_store),
) -> IdentifierResolverProtocol:
    if not settings.RESOLVE_IDENTIFIERS:
        return PassthroughIdentifierResolver()
    if isinstance(store, MemoryFactStore):
        return MemoryIdentifierResolver(store)
    return SqlIdentifierResolver()


@lru_cache(maxsize=1)
def get_result_cache() -> ResultCache:
    store = (
        RedisKeyValueStore.from_url(settings.REDIS_URL, namespace=settings.CACHE_NAMESPACE)
        if settings.REDIS_URL
        else None
    )
    return ResultCache(store, ttl_seconds=settings.CACHE_TTL_SECONDS)


def get_analytics_service(
    store: FactStoreProtocol = Depends(get_fact_store),
    resolver: IdentifierResolverProtocol = Depends(get_identifier_resolver),
    cache: ResultCache = Depends(get_result_cache),
) -> AnalyticsService:
    return AnalyticsService(store, resolver=resolver, cache=cache)
