"""Market share endpoints."""

from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from pharmadash.core.cache import etag_json
from pharmadash.core.security import AccessClaims, require_roles
from pharmadash.domain.requests import AnalyticsRequest
from pharmadash.routers.kpis import ANALYTICS_ROLES
from pharmadash.services.analytics_service import AnalyticsService
from pharmadash.services.dependencies import get_analytics_service


router = APIRouter(prefix="/market-share", tags=["market-share"])


# -----------------------------------------------------------------------------
# Response Models
# -----------------------------------------------------------------------------


class MarketShareResponse(BaseModel):
    """Flat market share response model."""
    factType: str
    selection: Dict[str, Optional[float]]
    total: Dict[str, Optional[float]]
    sharePct: Dict[str, float]
    queryTime: float
    cached: bool


class TopEntityRow(BaseModel):
    name: str
    value: float
    metrics: Dict[str, Optional[float]]


class SegmentRow(BaseModel):
    """One hierarchy segment."""
    segmentName: str
    selection: Dict[str, Optional[float]]
    total: Dict[str, Optional[float]]
    sharePct: Dict[str, float]
    top: List[TopEntityRow]


class PaginationInfo(BaseModel):
    page: int
    pageSize: int
    total: int
    totalPages: int


class HierarchyShareResponse(BaseModel):
    """Hierarchical market share response model."""
    factType: str
    segmentJoinMode: str
    hierarchyLevel: str
    segments: List[SegmentRow]
    pagination: PaginationInfo
    queryTime: float
    cached: bool


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@router.post("", response_model=MarketShareResponse)
async def market_share(
    body: AnalyticsRequest,
    request: Request,
    user: AccessClaims = Depends(require_roles(*ANALYTICS_ROLES)),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Selection share of the unfiltered scope."""
    payload = await service.market_share_flat(body, user.pharmacy_scope)
    return etag_json(request, payload)


@router.post("/hierarchy", response_model=HierarchyShareResponse)
async def market_share_hierarchy(
    body: AnalyticsRequest,
    request: Request,
    user: AccessClaims = Depends(require_roles(*ANALYTICS_ROLES)),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Share per segment of ``hierarchyLevel`` with the top laboratories, paginated."""
    payload = await service.market_share_hierarchy(body, user.pharmacy_scope)
    return etag_json(request, payload)
