"""API routers module."""

from . import catalog, health, kpis, market_share

__all__ = [
    "catalog",
    "health",
    "kpis",
    "market_share",
]
