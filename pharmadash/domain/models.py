"""
Result objects produced by the analytics engines.

All of them are built per request and never mutated; ``to_dict`` renders the
camelCase wire shape used by the routers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from math import ceil
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

Number = Union[int, float]
MetricSet = Dict[str, Optional[Number]]

T = TypeVar("T")


@dataclass(frozen=True)
class ComparisonResult:
    """Same metrics over two periods plus the per-metric evolution."""

    current: MetricSet
    previous: Optional[MetricSet]
    evolution_pct: Dict[str, Optional[float]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": dict(self.current),
            "previous": dict(self.previous) if self.previous is not None else None,
            "evolutionPct": dict(self.evolution_pct),
        }


@dataclass(frozen=True)
class TopEntity:
    """One of the N best sub-entities (laboratory) inside a segment.

    ``value`` is the ranking metric, ``metrics`` holds every requested metric.
    """

    name: str
    value: Number
    metrics: MetricSet = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value, "metrics": dict(self.metrics)}


@dataclass(frozen=True)
class MarketShareResult:
    """Flat market share: selection vs total, per metric."""

    selection: MetricSet
    total: MetricSet
    share_pct: Dict[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selection": dict(self.selection),
            "total": dict(self.total),
            "sharePct": dict(self.share_pct),
        }


@dataclass(frozen=True)
class SegmentShare:
    """Market share of one hierarchy segment."""

    segment_name: str
    selection: MetricSet
    total: MetricSet
    share_pct: Dict[str, float]
    top: List[TopEntity] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segmentName": self.segment_name,
            "selection": dict(self.selection),
            "total": dict(self.total),
            "sharePct": dict(self.share_pct),
            "top": [t.to_dict() for t in self.top],
        }


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return ceil(self.total / self.page_size)

    def pagination(self) -> Dict[str, int]:
        return {
            "page": self.page,
            "pageSize": self.page_size,
            "total": self.total,
            "totalPages": self.total_pages,
        }


@dataclass(frozen=True)
class HierarchicalShareResult:
    """Paginated segments for one hierarchy level."""

    level: str
    page: Page[SegmentShare]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hierarchyLevel": self.level,
            "segments": [s.to_dict() for s in self.page.items],
            "pagination": self.page.pagination(),
        }
