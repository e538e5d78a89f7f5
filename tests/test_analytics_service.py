from __future__ import annotations

import pytest

from pharmadash.core.cache import ResultCache
from pharmadash.core.config import Settings
from pharmadash.domain.errors import ExecutionError, ValidationError
from pharmadash.domain.requests import AnalyticsRequest
from pharmadash.repositories.identifier_resolver import MemoryIdentifierResolver

from support import DictKeyValueStore, FailingStore, SlowStore, body


def _request(**overrides) -> AnalyticsRequest:
    return AnalyticsRequest.model_validate(body(**overrides))


@pytest.mark.anyio
async def test_dashboard_kpis_mix_fact_types(make_service, memory_store) -> None:
    payload = await make_service(memory_store).dashboard_kpis(_request())

    assert payload["ca_ttc"] == pytest.approx(450.0)
    assert payload["montant_achat_ht"] == pytest.approx(725.0)
    assert payload["valeur_stock_ht"] == pytest.approx(360.0)
    assert payload["nb_pharmacies"] == 2
    assert "comparison" not in payload
    assert payload["cached"] is False
    assert isinstance(payload["queryTime"], float)


@pytest.mark.anyio
async def test_dashboard_kpis_respect_pharmacy_scope(make_service, memory_store) -> None:
    payload = await make_service(memory_store).dashboard_kpis(_request(), pharmacy_scope=["ph1"])
    assert payload["ca_ttc"] == pytest.approx(250.0)
    assert payload["nb_pharmacies"] == 1


@pytest.mark.anyio
async def test_sales_kpis_with_comparison(make_service, memory_store) -> None:
    payload = await make_service(memory_store).sales_kpis(
        _request(
            productCodes=["P1"],
            comparisonDateRange={"start": "2024-12-01", "end": "2024-12-31"},
        )
    )

    assert payload["ca_ttc"] == pytest.approx(100.0)
    assert payload["part_marche_ca_pct"] == pytest.approx(100 / 450 * 100)
    assert payload["part_marche_marge_pct"] == pytest.approx(40 / 150 * 100)
    comparison = payload["comparison"]
    assert comparison["previous"]["ca_ttc"] == pytest.approx(80.0)
    assert comparison["evolutionPct"]["ca_ttc"] == pytest.approx(25.0)


@pytest.mark.anyio
async def test_comparison_kpis_for_stock(make_service, memory_store) -> None:
    payload = await make_service(memory_store).comparison_kpis(
        _request(factType="stock", comparisonDateRange={"start": "2024-12-01", "end": "2024-12-31"})
    )
    assert payload["factType"] == "stock"
    assert payload["current"]["quantite_stock"] == 70
    assert payload["previous"]["quantite_stock"] == 0
    assert payload["evolutionPct"]["quantite_stock"] is None


@pytest.mark.anyio
async def test_hierarchy_requires_a_level(make_service, memory_store) -> None:
    with pytest.raises(ValidationError, match="hierarchyLevel"):
        await make_service(memory_store).market_share_hierarchy(_request())


@pytest.mark.anyio
async def test_hierarchy_payload(make_service, memory_store) -> None:
    payload = await make_service(memory_store).market_share_hierarchy(
        _request(productCodes=["P1", "P3"], hierarchyLevel="bcb_segment_l0", segmentJoinMode="total", pageSize=2)
    )
    assert payload["segmentJoinMode"] == "total"
    assert [s["segmentName"] for s in payload["segments"]] == ["SEG_X", "SEG_Y"]
    assert payload["pagination"] == {"page": 1, "pageSize": 2, "total": 3, "totalPages": 2}


@pytest.mark.anyio
async def test_unknown_metric_fails_before_io(make_service) -> None:
    with pytest.raises(ValidationError, match="Unknown metric"):
        await make_service(FailingStore()).dashboard_kpis(_request(metrics=["nope"]))


@pytest.mark.anyio
async def test_store_failure_propagates(make_service) -> None:
    with pytest.raises(ExecutionError):
        await make_service(FailingStore()).market_share_flat(_request())


@pytest.mark.anyio
async def test_timeout_becomes_504_and_cancels_queries(make_service) -> None:
    store = SlowStore(delay=5)
    config = Settings(_env_file=None, QUERY_TIMEOUT_MS=50)

    with pytest.raises(ExecutionError) as info:
        await make_service(store, config=config).market_share_flat(_request())

    assert info.value.status_code == 504
    assert store.cancelled == 2


@pytest.mark.anyio
async def test_second_identical_request_is_served_from_cache(make_service, memory_store) -> None:
    service = make_service(memory_store, cache=ResultCache(DictKeyValueStore()))

    first = await service.market_share_flat(_request(productCodes=["P1"]))
    second = await service.market_share_flat(_request(productCodes=["P1"]))

    assert first["cached"] is False
    assert second["cached"] is True
    assert second["sharePct"] == first["sharePct"]


@pytest.mark.anyio
async def test_laboratory_codes_are_resolved(make_service, memory_store) -> None:
    service = make_service(memory_store, resolver=MemoryIdentifierResolver(memory_store))
    payload = await service.market_share_flat(_request(laboratoryCodes=["LAB_A"]))
    assert payload["selection"]["ca_ttc"] == pytest.approx(200.0)
    assert payload["total"]["ca_ttc"] == pytest.approx(450.0)


@pytest.mark.anyio
async def test_unresolvable_laboratory_matches_nothing(make_service, memory_store) -> None:
    service = make_service(memory_store, resolver=MemoryIdentifierResolver(memory_store))
    payload = await service.market_share_flat(_request(laboratoryCodes=["LAB_UNKNOWN"]))
    assert payload["selection"]["ca_ttc"] == 0
    assert payload["sharePct"]["ca_ttc"] == 0.0


@pytest.mark.anyio
async def test_excluded_category_is_resolved(make_service, memory_store) -> None:
    service = make_service(memory_store, resolver=MemoryIdentifierResolver(memory_store))
    payload = await service.market_share_flat(_request(excludedCategoryCodes=["SEG_X"]))
    assert payload["total"]["ca_ttc"] == pytest.approx(200.0)


class _UnreachableResolver:
    async def resolve(self, ids):
        raise ExecutionError("Fact store query failed")


@pytest.mark.anyio
async def test_inverted_range_fails_before_cache_and_resolution(make_service, memory_store) -> None:
    kv = DictKeyValueStore()
    service = make_service(memory_store, resolver=_UnreachableResolver(), cache=ResultCache(kv))

    with pytest.raises(ValidationError, match="sell_price"):
        await service.market_share_flat(_request(sellPriceRange={"min": 10, "max": 1}))

    assert kv.reads == 0
