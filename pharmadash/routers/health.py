from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from pharmadash.core.logging import app_logger
from pharmadash.domain.errors import AnalyticsError
from pharmadash.repositories.protocols import FactStoreProtocol
from pharmadash.services.dependencies import get_fact_store

router = APIRouter(tags=["health"])

@router.get("/healthz")
def healthz():
    return {"status": "ok"}

@router.get("/readyz")
async def readyz(store: FactStoreProtocol = Depends(get_fact_store)):
    try:
        info = await store.ping()
    except (AnalyticsError, RuntimeError) as exc:
        app_logger.error("Readiness check failed", exc=exc)
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "error": "Fact store unavailable"},
        )
    return {"status": "ready", "factStore": info}
