"""
Domain layer: filters, predicate AST, metric catalog and result objects.
Independent of FastAPI and of any storage backend.
"""

from .catalog import FactType, SegmentJoinMode
from .compiler import QueryCompiler
from .errors import AnalyticsError, ExecutionError, ValidationError
from .filters import FilterSpecification, IdentifierSets, NumericRange, Period
from .models import (
    ComparisonResult,
    HierarchicalShareResult,
    MarketShareResult,
    MetricSet,
    Page,
    SegmentShare,
    TopEntity,
)
from .predicates import CompiledPredicate

__all__ = [
    "FactType",
    "SegmentJoinMode",
    "QueryCompiler",
    "AnalyticsError",
    "ExecutionError",
    "ValidationError",
    "FilterSpecification",
    "IdentifierSets",
    "NumericRange",
    "Period",
    "ComparisonResult",
    "HierarchicalShareResult",
    "MarketShareResult",
    "MetricSet",
    "Page",
    "SegmentShare",
    "TopEntity",
    "CompiledPredicate",
]
