from __future__ import annotations

import pandas as pd
import pytest

from pharmadash.domain.catalog import FactType, SegmentJoinMode
from pharmadash.domain.compiler import QueryCompiler
from pharmadash.domain.errors import ValidationError
from pharmadash.domain.filters import FilterSpecification, IdentifierSets
from pharmadash.domain.models import Page
from pharmadash.domain.predicates import CompiledPredicate
from pharmadash.repositories.memory_fact_store import MemoryFactStore
from pharmadash.services.aggregation import AggregationEngine
from pharmadash.services.market_share import MarketShareEngine, share_pct
from pharmadash.services.pagination import ResultPaginator

from support import JANUARY, segmented_store


def _compile(**kwargs) -> CompiledPredicate:
    return QueryCompiler().compile(FilterSpecification(period=JANUARY, **kwargs))


def test_share_pct() -> None:
    assert share_pct(25, 100) == 25.0
    assert share_pct(100, 100) == 100.0
    assert share_pct(0, 0) == 0.0
    assert share_pct(5, 0) == 0.0
    assert share_pct(None, 10) == 0.0


# -----------------------------------------------------------------------------
# Pagination
# -----------------------------------------------------------------------------


def test_paginate_second_page() -> None:
    page = ResultPaginator().paginate(list(range(1, 13)), page=2, page_size=5)
    assert page.items == [6, 7, 8, 9, 10]
    assert page.pagination() == {"page": 2, "pageSize": 5, "total": 12, "totalPages": 3}


def test_page_size_and_page_are_clamped() -> None:
    paginator = ResultPaginator(min_size=1, max_size=50, default_size=5)
    assert paginator.clamp_page_size(None) == 5
    assert paginator.clamp_page_size(0) == 1
    assert paginator.clamp_page_size(500) == 50
    assert paginator.clamp_page(0) == 1
    assert paginator.clamp_page(-3) == 1


def test_page_beyond_end_is_empty_but_counts_stay() -> None:
    page = ResultPaginator().paginate(list(range(12)), page=9, page_size=5)
    assert page.items == []
    assert page.total == 12
    assert page.total_pages == 3


def test_empty_page() -> None:
    assert Page(items=[], page=1, page_size=5, total=0).total_pages == 0


# -----------------------------------------------------------------------------
# Flat share
# -----------------------------------------------------------------------------


@pytest.mark.anyio
async def test_flat_share_against_unfiltered_scope(memory_store) -> None:
    predicate = _compile(include=IdentifierSets.of(products=["P1", "P3"]))
    engine = MarketShareEngine(AggregationEngine(memory_store))

    result = await engine.share(predicate, predicate.without_selection(), JANUARY)

    assert result.selection["ca_ttc"] == pytest.approx(200.0)
    assert result.total["ca_ttc"] == pytest.approx(450.0)
    assert result.share_pct["ca_ttc"] == pytest.approx(200 / 450 * 100)
    assert result.share_pct["montant_marge"] == pytest.approx(60 / 150 * 100)


@pytest.mark.anyio
async def test_exclusion_applies_to_selection_and_total(memory_store) -> None:
    predicate = _compile(
        include=IdentifierSets.of(products=["P1"]),
        exclude=IdentifierSets.of(products=["P4"]),
    )
    result = await MarketShareEngine(AggregationEngine(memory_store)).share(
        predicate, predicate.without_selection(), JANUARY, ["ca_ttc"]
    )
    assert result.selection["ca_ttc"] == pytest.approx(100.0)
    assert result.total["ca_ttc"] == pytest.approx(350.0)


@pytest.mark.anyio
async def test_no_filter_is_a_full_share(memory_store) -> None:
    predicate = CompiledPredicate()
    result = await MarketShareEngine(AggregationEngine(memory_store)).share(
        predicate, predicate.without_selection(), JANUARY
    )
    assert result.share_pct == {"ca_ttc": pytest.approx(100.0), "montant_marge": pytest.approx(100.0)}


@pytest.mark.anyio
async def test_empty_total_gives_zero_share(empty_store) -> None:
    predicate = _compile(include=IdentifierSets.of(products=["P1"]))
    result = await MarketShareEngine(AggregationEngine(empty_store)).share(
        predicate, predicate.without_selection(), JANUARY
    )
    assert result.share_pct == {"ca_ttc": 0.0, "montant_marge": 0.0}


def test_ratio_and_pareto_metrics_are_not_shares() -> None:
    with pytest.raises(ValidationError):
        MarketShareEngine.validate_metrics(["taux_marge_pct"], FactType.SALES)
    with pytest.raises(ValidationError):
        MarketShareEngine.validate_metrics(["nb_references_80pct_ca"], FactType.SALES)
    MarketShareEngine.validate_metrics(["valeur_stock_ht"], FactType.STOCK)


# -----------------------------------------------------------------------------
# Hierarchical share
# -----------------------------------------------------------------------------


@pytest.mark.anyio
async def test_inner_join_keeps_segments_with_selection(memory_store) -> None:
    predicate = _compile(include=IdentifierSets.of(products=["P1", "P3"]))
    engine = MarketShareEngine(AggregationEngine(memory_store))

    result = await engine.share_by_hierarchy(
        predicate, predicate.without_selection(), JANUARY, "bcb_segment_l0"
    )

    names = [s.segment_name for s in result.page.items]
    assert names == ["SEG_X", "SEG_Y"]
    seg_x, seg_y = result.page.items
    assert seg_x.share_pct["ca_ttc"] == pytest.approx(100 / 250 * 100)
    assert seg_y.share_pct["ca_ttc"] == pytest.approx(100.0)
    # Top laboratories come from the total scope.
    assert [(t.name, t.value) for t in seg_x.top] == [("LAB_B", pytest.approx(150.0)), ("LAB_A", pytest.approx(100.0))]


@pytest.mark.anyio
async def test_total_join_keeps_every_segment(memory_store) -> None:
    predicate = _compile(include=IdentifierSets.of(products=["P1", "P3"]))
    engine = MarketShareEngine(AggregationEngine(memory_store))

    result = await engine.share_by_hierarchy(
        predicate, predicate.without_selection(), JANUARY, "bcb_segment_l0", join_mode=SegmentJoinMode.TOTAL
    )

    names = [s.segment_name for s in result.page.items]
    assert names == ["SEG_X", "SEG_Y", "SEG_Z"]
    seg_z = result.page.items[2]
    assert seg_z.selection == {"ca_ttc": 0, "montant_marge": 0}
    assert seg_z.share_pct["ca_ttc"] == 0.0
    assert seg_z.total["ca_ttc"] == pytest.approx(100.0)


@pytest.mark.anyio
async def test_segments_are_ranked_then_paginated() -> None:
    store = segmented_store(12)
    predicate = CompiledPredicate()
    engine = MarketShareEngine(AggregationEngine(store), ResultPaginator(default_size=5))

    result = await engine.share_by_hierarchy(
        predicate, predicate, JANUARY, "bcb_segment_l1", page=2, page_size=5
    )

    assert [s.segment_name for s in result.page.items] == ["S06", "S07", "S08", "S09", "S10"]
    assert result.to_dict()["pagination"] == {"page": 2, "pageSize": 5, "total": 12, "totalPages": 3}
    assert result.to_dict()["hierarchyLevel"] == "bcb_segment_l1"


@pytest.mark.anyio
async def test_top_n_is_limited(memory_store) -> None:
    engine = MarketShareEngine(AggregationEngine(memory_store), top_n=1)
    predicate = CompiledPredicate()

    result = await engine.share_by_hierarchy(predicate, predicate, JANUARY, "bcb_segment_l0")

    tops = {s.segment_name: [t.name for t in s.top] for s in result.page.items}
    assert tops == {"SEG_X": ["LAB_B"], "SEG_Y": ["LAB_A"], "SEG_Z": ["LAB_C"]}


@pytest.mark.anyio
async def test_unknown_level_fails_before_io(memory_store) -> None:
    engine = MarketShareEngine(AggregationEngine(memory_store))
    with pytest.raises(ValidationError, match="hierarchy level"):
        await engine.share_by_hierarchy(CompiledPredicate(), CompiledPredicate(), JANUARY, "bcb_segment_l7")


@pytest.mark.anyio
async def test_empty_hierarchy(empty_store) -> None:
    engine = MarketShareEngine(AggregationEngine(empty_store))
    result = await engine.share_by_hierarchy(CompiledPredicate(), CompiledPredicate(), JANUARY, "bcb_family")
    assert result.page.items == []
    assert result.page.pagination()["totalPages"] == 0


def _tied_store() -> MemoryFactStore:
    """ALPHA and BETA both sell 100; inside BETA, LAB_Z and LAB_M tie at 50."""
    products = pd.DataFrame(
        [
            {"product_code": "T1", "laboratory": "LAB_Z", "bcb_segment_l0": "BETA"},
            {"product_code": "T2", "laboratory": "LAB_M", "bcb_segment_l0": "BETA"},
            {"product_code": "T3", "laboratory": "LAB_A", "bcb_segment_l0": "ALPHA"},
        ]
    )
    sales = pd.DataFrame(
        [
            ("2025-01-10", "ph1", "T1", 5, 10.0, 5.0, 0.0),
            ("2025-01-11", "ph1", "T2", 5, 10.0, 5.0, 0.0),
            ("2025-01-12", "ph1", "T3", 10, 10.0, 5.0, 0.0),
        ],
        columns=["date", "pharmacy_id", "product_code", "quantity", "unit_price_ttc", "unit_cost", "vat_rate"],
    )
    return MemoryFactStore(sales=sales, products=products)


@pytest.mark.anyio
async def test_tied_segments_are_ordered_by_name() -> None:
    engine = MarketShareEngine(AggregationEngine(_tied_store()))
    predicate = CompiledPredicate()

    result = await engine.share_by_hierarchy(predicate, predicate, JANUARY, "bcb_segment_l0")

    assert [s.segment_name for s in result.page.items] == ["ALPHA", "BETA"]


@pytest.mark.anyio
async def test_tied_laboratories_keep_input_order() -> None:
    predicate = CompiledPredicate()

    both = await MarketShareEngine(AggregationEngine(_tied_store())).share_by_hierarchy(
        predicate, predicate, JANUARY, "bcb_segment_l0"
    )
    first = await MarketShareEngine(AggregationEngine(_tied_store()), top_n=1).share_by_hierarchy(
        predicate, predicate, JANUARY, "bcb_segment_l0"
    )

    beta = both.page.items[1]
    assert [t.name for t in beta.top] == ["LAB_Z", "LAB_M"]
    assert [t.name for t in first.page.items[1].top] == ["LAB_Z"]
    assert beta.top[0].metrics == {"ca_ttc": pytest.approx(50.0), "montant_marge": pytest.approx(25.0)}


@pytest.mark.anyio
async def test_pages_cover_every_segment_once() -> None:
    engine = MarketShareEngine(AggregationEngine(segmented_store(12)))
    predicate = CompiledPredicate()

    seen = []
    for page in (1, 2, 3):
        result = await engine.share_by_hierarchy(
            predicate, predicate, JANUARY, "bcb_segment_l1", page=page, page_size=5
        )
        seen += [s.segment_name for s in result.page.items]

    assert seen == [f"S{i:02d}" for i in range(1, 13)]


@pytest.mark.anyio
@pytest.mark.parametrize("products", [["P1"], ["P1", "P3"], ["P2", "P4"], ["P9"]])
async def test_shares_stay_between_0_and_100(memory_store, products) -> None:
    predicate = _compile(include=IdentifierSets.of(products=products))
    engine = MarketShareEngine(AggregationEngine(memory_store))

    flat = await engine.share(predicate, predicate.without_selection(), JANUARY)
    by_segment = await engine.share_by_hierarchy(
        predicate, predicate.without_selection(), JANUARY, "bcb_segment_l0", join_mode=SegmentJoinMode.TOTAL
    )

    values = list(flat.share_pct.values())
    for segment in by_segment.page.items:
        values += list(segment.share_pct.values())
    assert values
    assert all(0.0 <= v <= 100.0 for v in values)
