# tests/conftest.py
from __future__ import annotations

from typing import List

import pytest
from fastapi.testclient import TestClient

from pharmadash.core.cache import ResultCache
from pharmadash.core.config import Settings
from pharmadash.repositories.memory_fact_store import MemoryFactStore
from pharmadash.services.analytics_service import AnalyticsService

from support import network_store


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def memory_store() -> MemoryFactStore:
    """Two pharmacies, four products, January 2025 plus a December 2024 baseline."""
    return network_store()


@pytest.fixture
def empty_store() -> MemoryFactStore:
    return MemoryFactStore()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, QUERY_TIMEOUT_MS=2000, MAX_PERIOD_DAYS=365)


@pytest.fixture
def make_service(test_settings: Settings):
    def _make(store, resolver=None, cache=None, config=None) -> AnalyticsService:
        return AnalyticsService(
            store,
            resolver=resolver,
            cache=cache or ResultCache(None),
            config=config or test_settings,
        )

    return _make


@pytest.fixture
def build_client(monkeypatch: pytest.MonkeyPatch):
    """Factory: TestClient over the real app with the service wired to ``store``."""
    from pharmadash.core.application import create_application
    from pharmadash.core.config import settings
    from pharmadash.services.dependencies import get_analytics_service, get_fact_store

    monkeypatch.setattr(settings, "AUTH_ENABLED", True)
    clients: List[TestClient] = []

    def _build(store, cache=None, raise_server_exceptions: bool = True) -> TestClient:
        app = create_application()
        service = AnalyticsService(store, cache=cache or ResultCache(None))
        app.dependency_overrides[get_fact_store] = lambda: store
        app.dependency_overrides[get_analytics_service] = lambda: service
        client = TestClient(app, raise_server_exceptions=raise_server_exceptions)
        client.__enter__()
        clients.append(client)
        return client

    yield _build

    for client in clients:
        client.__exit__(None, None, None)
