"""Period-over-period comparison."""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, Optional, Sequence

from pharmadash.domain.catalog import FactType
from pharmadash.domain.filters import Period
from pharmadash.domain.models import ComparisonResult, MetricSet
from pharmadash.domain.predicates import CompiledPredicate
from pharmadash.services.aggregation import AggregationEngine
from pharmadash.services.concurrency import gather_all


def evolution_pct(current, previous) -> Optional[float]:
    """``(cur - prev) / |prev| * 100``; None when prev is 0 or either side is None."""
    if current is None or previous is None or previous == 0:
        return None
    return (current - previous) / abs(previous) * 100


def evolution(current: MetricSet, previous: Optional[MetricSet]) -> Dict[str, Optional[float]]:
    if previous is None:
        return {name: None for name in current}
    return {name: evolution_pct(value, previous.get(name)) for name, value in current.items()}


class ComparisonEngine:
    """Runs the same predicate over two periods and derives the evolution."""

    def __init__(self, aggregation: AggregationEngine):
        self.aggregation = aggregation

    async def compare_with(
        self,
        run: Callable[[Period], Awaitable[MetricSet]],
        period: Period,
        comparison_period: Optional[Period],
    ) -> ComparisonResult:
        """Compare any period -> MetricSet computation."""
        if comparison_period is None:
            current = await run(period)
            return ComparisonResult(current=current, previous=None, evolution_pct=evolution(current, None))

        current, previous = await gather_all(run(period), run(comparison_period))
        return ComparisonResult(
            current=current,
            previous=previous,
            evolution_pct=evolution(current, previous),
        )

    async def compare(
        self,
        predicate: CompiledPredicate,
        period: Period,
        comparison_period: Optional[Period],
        fact_type: FactType,
        metrics: Sequence[str],
    ) -> ComparisonResult:
        # Fail on bad metric names before any I/O.
        self.aggregation.resolve_metrics(metrics, fact_type)

        async def run(p: Period) -> MetricSet:
            return await self.aggregation.aggregate(predicate, p, fact_type, metrics)

        return await self.compare_with(run, period, comparison_period)
