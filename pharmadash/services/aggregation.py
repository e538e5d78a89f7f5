"""Metric aggregation over the fact store."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from pharmadash.core.logging import engine_logger
from pharmadash.domain.catalog import (
    PARETO_THRESHOLD,
    FactField,
    FactType,
    MetricDefinition,
    MetricKind,
    metric_definition,
)
from pharmadash.domain.errors import ValidationError
from pharmadash.domain.filters import Period
from pharmadash.domain.models import MetricSet
from pharmadash.domain.predicates import CompiledPredicate
from pharmadash.repositories.protocols import FactStoreProtocol
from pharmadash.services.concurrency import gather_all


def pareto_count(rows: Iterable[Dict[str, Any]], threshold: float = PARETO_THRESHOLD) -> int:
    """
    Number of products whose cumulative revenue stays within ``threshold`` of
    the total. Products are ranked by revenue desc, then product code; only
    positive revenues take part.
    """
    ranked = sorted(
        (
            (float(r["revenue_ttc"]), str(r[FactField.PRODUCT_CODE.value]))
            for r in rows
            if r.get("revenue_ttc") is not None and float(r["revenue_ttc"]) > 0
        ),
        key=lambda item: (-item[0], item[1]),
    )
    total = sum(value for value, _ in ranked)
    if total <= 0:
        return 0
    limit = total * threshold
    count = 0
    cumulative = 0.0
    for value, _ in ranked:
        cumulative += value
        if cumulative > limit:
            break
        count += 1
    return count


class AggregationEngine:
    """
    Computes MetricSets from the fact store's base aggregates.

    The store never derives metrics; this class owns the zero/null policy:
    SUM and COUNT metrics are 0 when nothing matches, RATIO metrics are None
    when their denominator is 0.
    """

    def __init__(self, store: FactStoreProtocol):
        self.store = store

    # -- validation -------------------------------------------------------

    @staticmethod
    def resolve_metrics(
        metrics: Sequence[str],
        fact_type: Optional[FactType] = None,
    ) -> List[MetricDefinition]:
        if not metrics:
            raise ValidationError("At least one metric is required")
        definitions = []
        for name in metrics:
            definition = metric_definition(name)
            if definition is None:
                raise ValidationError(f"Unknown metric: {name}")
            if fact_type is not None and definition.fact_type is not fact_type:
                raise ValidationError(
                    f"Metric {name} is not available for fact type {fact_type.value}"
                )
            definitions.append(definition)
        return definitions

    @staticmethod
    def _bases_by_fact(definitions: Iterable[MetricDefinition]) -> Dict[FactType, List[str]]:
        wanted: Dict[FactType, Set[str]] = {}
        for definition in definitions:
            if definition.per_product:
                continue
            for fact_type, base in definition.requires:
                wanted.setdefault(fact_type, set()).add(base)
        return {fact_type: sorted(bases) for fact_type, bases in wanted.items()}

    # -- derivation -------------------------------------------------------

    @staticmethod
    def _number(value: Any) -> float:
        return 0 if value is None else value

    def _derive(
        self,
        definition: MetricDefinition,
        bases: Dict[FactType, Dict[str, Any]],
        period: Period,
        per_product: Optional[List[Dict[str, Any]]] = None,
    ) -> Any:
        values = [self._number(bases.get(ft, {}).get(base)) for ft, base in definition.requires]

        if definition.kind is MetricKind.SUM:
            return values[0]
        if definition.kind is MetricKind.COUNT:
            if definition.per_product:
                return pareto_count(per_product or [])
            return int(values[0])

        numerator, denominator = values
        if definition.daily_denominator:
            denominator = denominator / period.days
        if not denominator:
            return None
        return numerator / denominator * definition.scale

    # -- public API -------------------------------------------------------

    async def _collect(
        self,
        predicate: CompiledPredicate,
        period: Period,
        definitions: List[MetricDefinition],
    ) -> MetricSet:
        by_fact = self._bases_by_fact(definitions)
        fact_types = sorted(by_fact, key=lambda ft: ft.value)
        calls = [
            self.store.aggregate(predicate, period, ft, by_fact[ft]) for ft in fact_types
        ]
        per_product_needed = any(d.per_product for d in definitions)
        if per_product_needed:
            calls.append(
                self.store.aggregate_grouped(
                    predicate, period, FactType.SALES, ["revenue_ttc"], [FactField.PRODUCT_CODE]
                )
            )

        results = await gather_all(*calls)
        bases = dict(zip(fact_types, results[: len(fact_types)]))
        per_product = results[-1] if per_product_needed else None

        return {d.name: self._derive(d, bases, period, per_product) for d in definitions}

    async def aggregate(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        metrics: Sequence[str],
    ) -> MetricSet:
        """MetricSet of ``metrics`` (all of ``fact_type``) for one period."""
        definitions = self.resolve_metrics(metrics, fact_type)
        result = await self._collect(predicate, period, definitions)
        engine_logger.debug(
            "Aggregated",
            fact_type=fact_type.value,
            period=f"{period.start}..{period.end}",
            fragments=len(predicate.fragments),
        )
        return result

    async def aggregate_across(
        self,
        predicate: CompiledPredicate,
        period: Period,
        metrics: Sequence[str],
    ) -> MetricSet:
        """Like ``aggregate`` but metrics may mix fact types (dashboard view)."""
        definitions = self.resolve_metrics(metrics)
        return await self._collect(predicate, period, definitions)

    async def aggregate_grouped(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        metrics: Sequence[str],
        group_by: Sequence[FactField],
    ) -> List[Dict[str, Any]]:
        """
        One row per group: the ``group_by`` field values plus the metrics.

        Only metrics computed from ``fact_type`` alone are supported here.
        """
        definitions = self.resolve_metrics(metrics, fact_type)
        for d in definitions:
            if d.per_product or any(ft is not fact_type for ft, _ in d.requires):
                raise ValidationError(f"Metric {d.name} cannot be computed per group")

        bases = sorted({base for d in definitions for _, base in d.requires})
        rows = await self.store.aggregate_grouped(predicate, period, fact_type, bases, group_by)

        keys = [f.value for f in group_by]
        out = []
        for row in rows:
            item = {k: row.get(k) for k in keys}
            item.update(
                {d.name: self._derive(d, {fact_type: row}, period) for d in definitions}
            )
            out.append(item)
        return out
