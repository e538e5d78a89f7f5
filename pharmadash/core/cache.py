from __future__ import annotations
import hashlib
import json
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from pharmadash.core.config import settings
from pharmadash.core.logging import cache_logger
from pharmadash.repositories.protocols import KeyValueStoreProtocol

# ---------------------------------------------------------------------------
# Helpers de ETag
# ---------------------------------------------------------------------------

def make_etag_from_bytes(body: bytes) -> str:
    return hashlib.md5(body).hexdigest()


def dumps_deterministic(obj: Any) -> bytes:
    return json.dumps(
        obj,
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
        default=str,
    ).encode("utf-8")


# Observability fields that change on every call and must not affect the ETag.
VOLATILE_KEYS: Tuple[str, ...] = ("queryTime", "cached")


def _stable_view(payload: Any, volatile_keys: Iterable[str]) -> Any:
    if not isinstance(payload, dict):
        return payload
    skip = set(volatile_keys)
    return {k: v for k, v in payload.items() if k not in skip}


# ---------------------------------------------------------------------------
# Aplicação de headers (Cache-Control, ETag, Vary)
# ---------------------------------------------------------------------------

def _cache_control_value(max_age: Optional[int], swr: Optional[int]) -> str:

    max_age = settings.CACHE_MAX_AGE if max_age is None else max_age
    swr = settings.CACHE_SWR if swr is None else swr
    return f"max-age={int(max_age)}, stale-while-revalidate={int(swr)}"


def apply_cache_headers(
    response: Response,
    etag: str,
    *,
    max_age: Optional[int] = None,
    swr: Optional[int] = None,
    vary_authorization: bool = True,
) -> None:
    """
    Aplica ETag e Cache-Control na resposta. Opcionalmente adiciona Vary: Authorization.
    """
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = _cache_control_value(max_age, swr)
    if vary_authorization:
        # The payload depends on the caller's pharmacy scope.
        response.headers["Vary"] = "Authorization"


# ---------------------------------------------------------------------------
# Resposta JSON com ETag (+ 304 se bater If-None-Match)
# ---------------------------------------------------------------------------

def etag_json(
    request: Request,
    payload: Any,
    *,
    status_code: int = 200,
    max_age: Optional[int] = None,
    swr: Optional[int] = None,
    vary_authorization: bool = True,
    volatile_keys: Iterable[str] = VOLATILE_KEYS,
) -> Response:

    body = dumps_deterministic(_stable_view(payload, volatile_keys))
    etag = make_etag_from_bytes(body)

    # Revalidação condicional
    inm = request.headers.get("If-None-Match")
    if inm and inm == etag:
        resp = Response(status_code=304)
        apply_cache_headers(resp, etag, max_age=max_age, swr=swr, vary_authorization=vary_authorization)
        return resp

    # Resposta normal
    resp = JSONResponse(status_code=status_code, content=payload)
    apply_cache_headers(resp, etag, max_age=max_age, swr=swr, vary_authorization=vary_authorization)
    return resp


# ---------------------------------------------------------------------------
# Cache de resultados (key-value externo, fail-open)
# ---------------------------------------------------------------------------

def make_cache_key(
    endpoint: str,
    normalized_spec: Dict[str, Any],
    metrics: Iterable[str],
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    """SHA-256 over the deterministic dump of everything that shapes a result."""
    material = {
        "endpoint": endpoint,
        "spec": normalized_spec,
        "metrics": sorted(metrics),
        "extra": extra or {},
    }
    return hashlib.sha256(dumps_deterministic(material)).hexdigest()


class ResultCache:
    """
    Memoizes computed payloads in a KeyValueStore.

    Every store failure and every undecodable entry is logged and treated as a
    miss (reads) or a no-op (writes); the request never fails because of it.
    """

    def __init__(self, store: Optional[KeyValueStoreProtocol], ttl_seconds: int = 300):
        self._store = store
        self._ttl = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._store is not None

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        if self._store is None:
            return None
        try:
            raw = await self._store.get(key)
        except Exception as exc:
            cache_logger.warning("Cache read failed, recomputing", exc=exc, cache_key=key)
            return None
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError, UnicodeDecodeError) as exc:
            cache_logger.warning("Corrupt cache entry ignored", exc=exc, cache_key=key)
            return None
        if not isinstance(value, dict):
            cache_logger.warning("Unexpected cache entry type ignored", cache_key=key)
            return None
        return value

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        if self._store is None:
            return
        try:
            await self._store.set(key, dumps_deterministic(value), self._ttl)
        except Exception as exc:
            cache_logger.warning("Cache write failed", exc=exc, cache_key=key)

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> Tuple[Dict[str, Any], bool]:
        """Return ``(payload, cached)``; computes and stores on a miss."""
        hit = await self.get(key)
        if hit is not None:
            cache_logger.debug("Cache hit", cache_key=key)
            return hit, True
        value = await compute()
        await self.set(key, value)
        return value, False

    async def close(self) -> None:
        close = getattr(self._store, "close", None)
        if close is None:
            return
        try:
            await close()
        except Exception as exc:
            cache_logger.warning("Cache close failed", exc=exc)
