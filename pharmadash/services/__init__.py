"""
Serviços de domínio separados das rotas.

Aggregation, comparison and market-share engines plus the request orchestrator.
"""

from .aggregation import AggregationEngine  # noqa: F401
from .analytics_service import AnalyticsService  # noqa: F401
from .comparison import ComparisonEngine  # noqa: F401
from .market_share import MarketShareEngine  # noqa: F401
from .pagination import ResultPaginator  # noqa: F401

__all__ = [
    "AggregationEngine",
    "AnalyticsService",
    "ComparisonEngine",
    "MarketShareEngine",
    "ResultPaginator",
]
