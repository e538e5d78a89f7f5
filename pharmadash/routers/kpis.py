"""KPI endpoints: dashboard, sales and period comparison."""

from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict

from pharmadash.core.cache import etag_json
from pharmadash.core.security import AccessClaims, require_roles
from pharmadash.domain.requests import AnalyticsRequest
from pharmadash.services.analytics_service import AnalyticsService
from pharmadash.services.dependencies import get_analytics_service


router = APIRouter(prefix="/kpis", tags=["kpis"])

ANALYTICS_ROLES = ("viewer", "analyst", "manager", "admin")


# -----------------------------------------------------------------------------
# Response Models
# -----------------------------------------------------------------------------


class ComparisonBlock(BaseModel):
    """Current vs previous period."""
    current: Dict[str, Optional[float]]
    previous: Optional[Dict[str, Optional[float]]] = None
    evolutionPct: Dict[str, Optional[float]]


class KpiResponse(BaseModel):
    """Flat metric fields plus the optional comparison block."""
    model_config = ConfigDict(extra="allow")

    comparison: Optional[ComparisonBlock] = None
    queryTime: float
    cached: bool


class ComparisonResponse(ComparisonBlock):
    factType: str
    queryTime: float
    cached: bool


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@router.post("", response_model=KpiResponse)
async def dashboard_kpis(
    body: AnalyticsRequest,
    request: Request,
    user: AccessClaims = Depends(require_roles(*ANALYTICS_ROLES)),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Sales, purchase and stock KPIs for the period."""
    payload = await service.dashboard_kpis(body, user.pharmacy_scope)
    return etag_json(request, payload)


@router.post("/sales", response_model=KpiResponse)
async def sales_kpis(
    body: AnalyticsRequest,
    request: Request,
    user: AccessClaims = Depends(require_roles(*ANALYTICS_ROLES)),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Sales KPIs with revenue and margin market share."""
    payload = await service.sales_kpis(body, user.pharmacy_scope)
    return etag_json(request, payload)


@router.post("/comparison", response_model=ComparisonResponse)
async def comparison_kpis(
    body: AnalyticsRequest,
    request: Request,
    user: AccessClaims = Depends(require_roles(*ANALYTICS_ROLES)),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Metrics of one fact type over the period and the comparison period."""
    payload = await service.comparison_kpis(body, user.pharmacy_scope)
    return etag_json(request, payload)
