"""Analytics business logic service."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from pharmadash.core.cache import ResultCache, make_cache_key
from pharmadash.core.config import Settings, settings as default_settings
from pharmadash.core.logging import api_logger, engine_logger
from pharmadash.domain.catalog import (
    DASHBOARD_METRICS,
    SALES_KPI_METRICS,
    SHARE_METRICS,
    FactType,
    SegmentJoinMode,
    metrics_for,
)
from pharmadash.domain.compiler import QueryCompiler
from pharmadash.domain.errors import ExecutionError, ValidationError
from pharmadash.domain.filters import FilterSpecification, Period
from pharmadash.domain.models import MetricSet
from pharmadash.domain.predicates import CompiledPredicate
from pharmadash.domain.requests import AnalyticsRequest
from pharmadash.repositories.identifier_resolver import PassthroughIdentifierResolver
from pharmadash.repositories.protocols import FactStoreProtocol, IdentifierResolverProtocol
from pharmadash.services.aggregation import AggregationEngine
from pharmadash.services.comparison import ComparisonEngine
from pharmadash.services.concurrency import gather_all
from pharmadash.services.market_share import MarketShareEngine
from pharmadash.services.pagination import ResultPaginator

Payload = Dict[str, Any]

# Names of the flat share fields of the sales KPI view, per share metric.
SALES_SHARE_FIELDS = {
    "ca_ttc": "part_marche_ca_pct",
    "montant_marge": "part_marche_marge_pct",
}


class AnalyticsService:
    """
    Orchestrates one analytics request.

    request -> FilterSpecification -> identifier resolution -> compilation ->
    engines -> payload, with the result cache and the request timeout around
    the computation.
    """

    def __init__(
        self,
        store: FactStoreProtocol,
        resolver: IdentifierResolverProtocol | None = None,
        cache: ResultCache | None = None,
        config: Settings | None = None,
    ):
        """Initialize the service with its collaborators."""
        self.config = config or default_settings
        self.store = store
        self.resolver = resolver or PassthroughIdentifierResolver()
        self.cache = cache or ResultCache(None)
        self.compiler = QueryCompiler()
        self.aggregation = AggregationEngine(store)
        self.comparison = ComparisonEngine(self.aggregation)
        self.market_share = MarketShareEngine(
            self.aggregation,
            ResultPaginator(
                min_size=self.config.PAGE_SIZE_MIN,
                max_size=self.config.PAGE_SIZE_MAX,
                default_size=self.config.PAGE_SIZE_DEFAULT,
            ),
            top_n=self.config.TOP_N_SUB_ENTITIES,
        )

    # -------------------------------------------------------------------------
    # Request plumbing
    # -------------------------------------------------------------------------

    def specification(self, request: AnalyticsRequest, pharmacy_scope: Iterable[str]) -> FilterSpecification:
        return request.to_specification(
            pharmacy_scope=pharmacy_scope,
            max_period_days=self.config.MAX_PERIOD_DAYS,
        )

    async def _compile(self, spec: FilterSpecification) -> tuple[FilterSpecification, CompiledPredicate]:
        include, exclude = await gather_all(
            self.resolver.resolve(spec.include),
            self.resolver.resolve(spec.exclude),
        )
        resolved = spec.with_identifiers(include, exclude)
        return resolved, self.compiler.compile(resolved)

    async def _with_timeout(self, coro: Awaitable[Payload]) -> Payload:
        timeout_s = self.config.QUERY_TIMEOUT_MS / 1000 if self.config.QUERY_TIMEOUT_MS else None
        try:
            return await asyncio.wait_for(coro, timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            engine_logger.error("Analytics request timed out", timeout_ms=self.config.QUERY_TIMEOUT_MS)
            raise ExecutionError("Query timed out", status_code=504) from exc

    async def _serve(
        self,
        endpoint: str,
        spec: FilterSpecification,
        metrics: Sequence[str],
        compute: Callable[[CompiledPredicate], Awaitable[Payload]],
        extra: Optional[Dict[str, Any]] = None,
    ) -> Payload:
        self.compiler.validate(spec)
        started = time.perf_counter()
        key = make_cache_key(endpoint, spec.normalized(), metrics, extra)

        async def run() -> Payload:
            _, predicate = await self._compile(spec)
            return await compute(predicate)

        payload, cached = await self.cache.get_or_compute(key, lambda: self._with_timeout(run()))
        query_time = round((time.perf_counter() - started) * 1000, 2)
        api_logger.info(
            "Analytics request served",
            endpoint=endpoint,
            query_time_ms=query_time,
            cached=cached,
            include_count=len(spec.include.product_universe) + len(spec.include.pharmacies),
            exclude_count=len(spec.exclude.product_universe) + len(spec.exclude.pharmacies),
            range_count=sum(1 for r in spec.ranges.values() if not r.is_empty),
        )
        return {**payload, "queryTime": query_time, "cached": cached}

    @staticmethod
    def _metrics(request: AnalyticsRequest, default: Sequence[str]) -> List[str]:
        return list(request.metrics) if request.metrics else list(default)

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    async def dashboard_kpis(self, request: AnalyticsRequest, pharmacy_scope: Iterable[str] = ()) -> Payload:
        """Sales, purchase and stock KPIs in one flat MetricSet."""
        spec = self.specification(request, pharmacy_scope)
        metrics = self._metrics(request, DASHBOARD_METRICS)
        self.aggregation.resolve_metrics(metrics)

        async def compute(predicate: CompiledPredicate) -> Payload:
            async def run(period: Period) -> MetricSet:
                return await self.aggregation.aggregate_across(predicate, period, metrics)

            result = await self.comparison.compare_with(run, spec.period, spec.comparison_period)
            return _flat(result)

        return await self._serve("kpis", spec, metrics, compute)

    async def sales_kpis(self, request: AnalyticsRequest, pharmacy_scope: Iterable[str] = ()) -> Payload:
        """Sales KPIs plus revenue/margin market share against the unfiltered scope."""
        spec = self.specification(request, pharmacy_scope)
        metrics = self._metrics(request, SALES_KPI_METRICS)
        self.aggregation.resolve_metrics(metrics, FactType.SALES)

        async def compute(predicate: CompiledPredicate) -> Payload:
            total = predicate.without_selection()

            async def run(period: Period) -> MetricSet:
                values, share = await gather_all(
                    self.aggregation.aggregate(predicate, period, FactType.SALES, metrics),
                    self.market_share.share(predicate, total, period, SHARE_METRICS),
                )
                out = dict(values)
                for name, field in SALES_SHARE_FIELDS.items():
                    out[field] = share.share_pct[name]
                return out

            result = await self.comparison.compare_with(run, spec.period, spec.comparison_period)
            return _flat(result)

        return await self._serve("kpis/sales", spec, metrics, compute)

    async def comparison_kpis(self, request: AnalyticsRequest, pharmacy_scope: Iterable[str] = ()) -> Payload:
        """Current vs comparison period for the metrics of one fact type."""
        spec = self.specification(request, pharmacy_scope)
        fact_type = request.fact_type or FactType.SALES
        default = SALES_KPI_METRICS if fact_type is FactType.SALES else metrics_for(fact_type)
        metrics = self._metrics(request, default)
        self.aggregation.resolve_metrics(metrics, fact_type)

        async def compute(predicate: CompiledPredicate) -> Payload:
            result = await self.comparison.compare(
                predicate, spec.period, spec.comparison_period, fact_type, metrics
            )
            return {"factType": fact_type.value, **result.to_dict()}

        return await self._serve(
            "kpis/comparison", spec, metrics, compute, extra={"factType": fact_type.value}
        )

    async def market_share_flat(self, request: AnalyticsRequest, pharmacy_scope: Iterable[str] = ()) -> Payload:
        """Selection vs total for additive metrics."""
        spec = self.specification(request, pharmacy_scope)
        fact_type = request.fact_type or FactType.SALES
        metrics = self._metrics(request, SHARE_METRICS)
        MarketShareEngine.validate_metrics(metrics, fact_type)

        async def compute(predicate: CompiledPredicate) -> Payload:
            result = await self.market_share.share(
                predicate, predicate.without_selection(), spec.period, metrics, fact_type
            )
            return {"factType": fact_type.value, **result.to_dict()}

        return await self._serve(
            "market-share", spec, metrics, compute, extra={"factType": fact_type.value}
        )

    async def market_share_hierarchy(
        self,
        request: AnalyticsRequest,
        pharmacy_scope: Iterable[str] = (),
    ) -> Payload:
        """Share per hierarchy segment, with top laboratories, paginated."""
        spec = self.specification(request, pharmacy_scope)
        if not request.hierarchy_level:
            raise ValidationError("hierarchyLevel is required")
        self.compiler.hierarchy_field(request.hierarchy_level)

        fact_type = request.fact_type or FactType.SALES
        metrics = self._metrics(request, SHARE_METRICS)
        MarketShareEngine.validate_metrics(metrics, fact_type)
        join_mode = request.segment_join_mode or SegmentJoinMode(self.config.SEGMENT_JOIN_MODE)
        paginator = self.market_share.paginator
        page = paginator.clamp_page(request.page)
        page_size = paginator.clamp_page_size(request.page_size)

        async def compute(predicate: CompiledPredicate) -> Payload:
            result = await self.market_share.share_by_hierarchy(
                predicate,
                predicate.without_selection(),
                spec.period,
                request.hierarchy_level,
                page=page,
                page_size=page_size,
                join_mode=join_mode,
                metrics=metrics,
                fact_type=fact_type,
            )
            return {"factType": fact_type.value, "segmentJoinMode": join_mode.value, **result.to_dict()}

        return await self._serve(
            "market-share/hierarchy",
            spec,
            metrics,
            compute,
            extra={
                "factType": fact_type.value,
                "level": request.hierarchy_level,
                "page": page,
                "pageSize": page_size,
                "joinMode": join_mode.value,
            },
        )

    async def readiness(self) -> Dict[str, Any]:
        return await self.store.ping()


def _flat(result) -> Payload:
    """Current metrics as flat fields, ``comparison`` only when a previous period exists."""
    payload: Payload = dict(result.current)
    if result.previous is not None:
        payload["comparison"] = result.to_dict()
    return payload
