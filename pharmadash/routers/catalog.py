"""Metric and filter catalog."""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from pharmadash.core.security import AccessClaims, require_roles
from pharmadash.domain.catalog import catalog_doc
from pharmadash.routers.kpis import ANALYTICS_ROLES

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("")
def get_catalog(user: AccessClaims = Depends(require_roles(*ANALYTICS_ROLES))):
    """Metrics, range filters, hierarchy levels and sub-entities the API accepts."""
    return asdict(catalog_doc())
