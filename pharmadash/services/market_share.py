"""Market share: flat and broken down by a product hierarchy level."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from pharmadash.core.logging import engine_logger
from pharmadash.domain.catalog import (
    SHARE_METRICS,
    FactType,
    MetricKind,
    SegmentJoinMode,
)
from pharmadash.domain.compiler import QueryCompiler
from pharmadash.domain.errors import ValidationError
from pharmadash.domain.filters import Period
from pharmadash.domain.models import (
    HierarchicalShareResult,
    MarketShareResult,
    MetricSet,
    SegmentShare,
    TopEntity,
)
from pharmadash.domain.predicates import CompiledPredicate
from pharmadash.services.aggregation import AggregationEngine
from pharmadash.services.concurrency import gather_all
from pharmadash.services.pagination import ResultPaginator


def share_pct(selection: Any, total: Any) -> float:
    """``selection / total * 100``; 0 when the total is not positive."""
    if selection is None or total is None or total <= 0:
        return 0.0
    return selection / total * 100


def share_map(selection: MetricSet, total: MetricSet) -> Dict[str, float]:
    return {name: share_pct(selection.get(name), total.get(name)) for name in selection}


class MarketShareEngine:
    """
    Expresses a selection as a percentage of a larger total.

    ``selection`` is the predicate of the user's filters, ``total`` is the same
    predicate without its selection fragments (see
    ``CompiledPredicate.without_selection``).
    """

    def __init__(
        self,
        aggregation: AggregationEngine,
        paginator: Optional[ResultPaginator] = None,
        top_n: int = 3,
        sub_entity: str = "laboratory",
    ):
        self.aggregation = aggregation
        self.paginator = paginator or ResultPaginator()
        self.top_n = top_n
        self.sub_entity = sub_entity

    @staticmethod
    def validate_metrics(metrics: Sequence[str], fact_type: FactType) -> None:
        definitions = AggregationEngine.resolve_metrics(metrics, fact_type)
        for d in definitions:
            if d.kind is MetricKind.RATIO or d.per_product:
                raise ValidationError(f"Metric {d.name} cannot be expressed as a market share")

    # -- flat -------------------------------------------------------------

    async def share(
        self,
        selection: CompiledPredicate,
        total: CompiledPredicate,
        period: Period,
        metrics: Sequence[str] = SHARE_METRICS,
        fact_type: FactType = FactType.SALES,
    ) -> MarketShareResult:
        self.validate_metrics(metrics, fact_type)
        sel, tot = await gather_all(
            self.aggregation.aggregate(selection, period, fact_type, metrics),
            self.aggregation.aggregate(total, period, fact_type, metrics),
        )
        return MarketShareResult(selection=sel, total=tot, share_pct=share_map(sel, tot))

    # -- hierarchical -----------------------------------------------------

    async def share_by_hierarchy(
        self,
        selection: CompiledPredicate,
        total: CompiledPredicate,
        period: Period,
        level: str,
        page: Optional[int] = 1,
        page_size: Optional[int] = None,
        join_mode: SegmentJoinMode = SegmentJoinMode.INNER,
        metrics: Sequence[str] = SHARE_METRICS,
        fact_type: FactType = FactType.SALES,
    ) -> HierarchicalShareResult:
        """
        Share per segment of ``level``, with the top sub-entities of each.

        Segments are ranked by the selection value of the first metric
        (desc, then name asc) before pagination.
        """
        segment_field = QueryCompiler.hierarchy_field(level)
        sub_field = QueryCompiler.sub_entity_field(self.sub_entity)
        self.validate_metrics(metrics, fact_type)
        ranking = metrics[0]

        sel_rows, tot_rows, sub_rows = await gather_all(
            self.aggregation.aggregate_grouped(selection, period, fact_type, metrics, [segment_field]),
            self.aggregation.aggregate_grouped(total, period, fact_type, metrics, [segment_field]),
            self.aggregation.aggregate_grouped(total, period, fact_type, metrics, [segment_field, sub_field]),
        )

        key = segment_field.value
        sel_by_segment = _index(sel_rows, key, metrics)
        tot_by_segment = _index(tot_rows, key, metrics)

        if join_mode is SegmentJoinMode.TOTAL:
            names = list(tot_by_segment)
        else:
            names = [name for name in tot_by_segment if name in sel_by_segment]

        tops = self._top_entities(sub_rows, key, sub_field.value, ranking, metrics)
        zero = {m: 0 for m in metrics}

        segments: List[SegmentShare] = []
        for name in names:
            sel = sel_by_segment.get(name, zero)
            tot = tot_by_segment[name]
            segments.append(
                SegmentShare(
                    segment_name=name,
                    selection=sel,
                    total=tot,
                    share_pct=share_map(sel, tot),
                    top=tops.get(name, []),
                )
            )

        segments.sort(key=lambda s: (-(s.selection.get(ranking) or 0), s.segment_name))
        result = HierarchicalShareResult(
            level=level,
            page=self.paginator.paginate(segments, page, page_size),
        )
        engine_logger.debug(
            "Hierarchical share computed",
            level=level,
            join_mode=join_mode.value,
            segments=len(segments),
        )
        return result

    def _top_entities(
        self,
        rows: Sequence[Dict[str, Any]],
        segment_key: str,
        sub_key: str,
        ranking: str,
        metrics: Sequence[str],
    ) -> Dict[str, List[TopEntity]]:
        grouped: Dict[str, List[TopEntity]] = {}
        for row in rows:
            segment, sub = row.get(segment_key), row.get(sub_key)
            if segment is None or segment == "" or sub is None or sub == "":
                continue
            grouped.setdefault(str(segment), []).append(
                TopEntity(
                    name=str(sub),
                    value=row.get(ranking) or 0,
                    metrics={m: row.get(m) for m in metrics},
                )
            )
        # sorted() is stable: ties keep their input order.
        return {
            segment: sorted(entities, key=lambda e: -e.value)[: self.top_n]
            for segment, entities in grouped.items()
        }


def _index(rows: Sequence[Dict[str, Any]], key: str, metrics: Sequence[str]) -> Dict[str, MetricSet]:
    out: Dict[str, MetricSet] = {}
    for row in rows:
        name = row.get(key)
        if name is None or name == "":
            continue
        out[str(name)] = {m: row.get(m) for m in metrics}
    return out
