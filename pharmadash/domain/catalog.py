from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


# -----------------------------------------------------------------------------
# 1) Fact types, fields and joins
# -----------------------------------------------------------------------------

class FactType(str, Enum):
    SALES = "sales"
    PURCHASES = "purchases"
    STOCK = "stock"


class FactField(str, Enum):
    """Every column a predicate or a grouping may reference."""

    PRODUCT_CODE = "product_code"
    PHARMACY_ID = "pharmacy_id"
    LABORATORY = "laboratory"
    TVA_RATE = "tva_rate"
    IS_REIMBURSABLE = "is_reimbursable"
    GENERIC_STATUS = "generic_status"
    GROSS_PURCHASE_PRICE = "gross_purchase_price"
    NET_PURCHASE_PRICE = "net_purchase_price"
    SELL_PRICE = "sell_price"
    DISCOUNT_PCT = "discount_pct"
    MARGIN_PCT = "margin_pct"
    SEGMENT_L0 = "bcb_segment_l0"
    SEGMENT_L1 = "bcb_segment_l1"
    SEGMENT_L2 = "bcb_segment_l2"
    SEGMENT_L3 = "bcb_segment_l3"
    SEGMENT_L4 = "bcb_segment_l4"
    SEGMENT_L5 = "bcb_segment_l5"
    FAMILY = "bcb_family"


class JoinKind(str, Enum):
    PRODUCT_ATTRIBUTES = "product_attributes"
    PRICE_ATTRIBUTES = "price_attributes"


# Fields living outside the fact row itself. Pharmacy and product code are
# always available.
FIELD_JOINS: Dict[FactField, Tuple[JoinKind, ...]] = {
    FactField.LABORATORY: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.TVA_RATE: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.IS_REIMBURSABLE: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.GENERIC_STATUS: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.GROSS_PURCHASE_PRICE: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.NET_PURCHASE_PRICE: (JoinKind.PRODUCT_ATTRIBUTES, JoinKind.PRICE_ATTRIBUTES),
    FactField.SELL_PRICE: (JoinKind.PRODUCT_ATTRIBUTES, JoinKind.PRICE_ATTRIBUTES),
    FactField.DISCOUNT_PCT: (JoinKind.PRODUCT_ATTRIBUTES, JoinKind.PRICE_ATTRIBUTES),
    FactField.MARGIN_PCT: (JoinKind.PRODUCT_ATTRIBUTES, JoinKind.PRICE_ATTRIBUTES),
    FactField.SEGMENT_L0: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.SEGMENT_L1: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.SEGMENT_L2: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.SEGMENT_L3: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.SEGMENT_L4: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.SEGMENT_L5: (JoinKind.PRODUCT_ATTRIBUTES,),
    FactField.FAMILY: (JoinKind.PRODUCT_ATTRIBUTES,),
}


def joins_for(field: FactField) -> Tuple[JoinKind, ...]:
    return FIELD_JOINS.get(field, ())


# -----------------------------------------------------------------------------
# 2) Allow-lists: range filters, hierarchy levels, sub-entities
# -----------------------------------------------------------------------------

# Insertion order is the compile order.
RANGE_FIELDS: Dict[str, FactField] = {
    "purchase_price_net": FactField.NET_PURCHASE_PRICE,
    "purchase_price_gross": FactField.GROSS_PURCHASE_PRICE,
    "sell_price": FactField.SELL_PRICE,
    "discount": FactField.DISCOUNT_PCT,
    "margin": FactField.MARGIN_PCT,
}

HIERARCHY_LEVELS: Dict[str, FactField] = {
    "bcb_segment_l0": FactField.SEGMENT_L0,
    "bcb_segment_l1": FactField.SEGMENT_L1,
    "bcb_segment_l2": FactField.SEGMENT_L2,
    "bcb_segment_l3": FactField.SEGMENT_L3,
    "bcb_segment_l4": FactField.SEGMENT_L4,
    "bcb_segment_l5": FactField.SEGMENT_L5,
    "bcb_family": FactField.FAMILY,
}

SUB_ENTITY_FIELDS: Dict[str, FactField] = {
    "laboratory": FactField.LABORATORY,
}

CATEGORY_FIELDS: Tuple[FactField, ...] = tuple(HIERARCHY_LEVELS.values())


class ReimbursementStatus(str, Enum):
    ALL = "ALL"
    REIMBURSED = "REIMBURSED"
    NOT_REIMBURSED = "NOT_REIMBURSED"


class SegmentJoinMode(str, Enum):
    INNER = "inner"  # segment must exist on both sides
    TOTAL = "total"  # every segment of the total grouping is kept


class GenericStatus(str, Enum):
    ALL = "ALL"
    GENERIC = "GENERIC"
    PRINCEPS = "PRINCEPS"
    PRINCEPS_GENERIC = "PRINCEPS_GENERIC"


# Values stored in the product master data for each generic filter choice.
GENERIC_STATUS_VALUES: Dict[GenericStatus, Tuple[str, ...]] = {
    GenericStatus.GENERIC: ("GÉNÉRIQUE",),
    GenericStatus.PRINCEPS: ("RÉFÉRENT",),
    GenericStatus.PRINCEPS_GENERIC: ("GÉNÉRIQUE", "RÉFÉRENT"),
}


# -----------------------------------------------------------------------------
# 3) Metrics
# -----------------------------------------------------------------------------

class MetricKind(str, Enum):
    SUM = "sum"      # 0 when nothing matches
    COUNT = "count"  # 0 when nothing matches
    RATIO = "ratio"  # None when the denominator is 0


# Raw aggregates a fact store must know how to compute, per fact type.
BASE_AGGREGATES: Dict[FactType, Tuple[str, ...]] = {
    FactType.SALES: (
        "quantity",
        "revenue_ttc",
        "revenue_ht",
        "margin_amount",
        "distinct_products",
        "distinct_pharmacies",
    ),
    FactType.PURCHASES: ("quantity", "amount_ht"),
    FactType.STOCK: ("quantity", "value_ht"),
}

BaseRef = Tuple[FactType, str]


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    fact_type: FactType
    kind: MetricKind
    requires: Tuple[BaseRef, ...]
    label: str
    per_product: bool = False
    scale: float = 1.0
    daily_denominator: bool = False  # denominator divided by the period length


def _metric(
    name: str,
    fact_type: FactType,
    kind: MetricKind,
    requires: Tuple[BaseRef, ...],
    label: str,
    **options,
) -> MetricDefinition:
    return MetricDefinition(name, fact_type, kind, requires, label, **options)


_S, _P, _K = FactType.SALES, FactType.PURCHASES, FactType.STOCK

METRICS: Dict[str, MetricDefinition] = {
    m.name: m
    for m in (
        _metric("quantite_vendue", _S, MetricKind.SUM, ((_S, "quantity"),), "Units sold"),
        _metric("ca_ttc", _S, MetricKind.SUM, ((_S, "revenue_ttc"),), "Revenue incl. tax"),
        _metric("ca_ht", _S, MetricKind.SUM, ((_S, "revenue_ht"),), "Revenue excl. tax"),
        _metric("montant_marge", _S, MetricKind.SUM, ((_S, "margin_amount"),), "Margin amount"),
        _metric(
            "taux_marge_pct", _S, MetricKind.RATIO,
            ((_S, "margin_amount"), (_S, "revenue_ht")), "Margin rate (%)", scale=100.0,
        ),
        _metric(
            "prix_moyen_ttc", _S, MetricKind.RATIO,
            ((_S, "revenue_ttc"), (_S, "quantity")), "Average sell price incl. tax",
        ),
        _metric(
            "nb_references_produits", _S, MetricKind.COUNT,
            ((_S, "distinct_products"),), "Distinct products sold",
        ),
        _metric(
            "nb_pharmacies", _S, MetricKind.COUNT,
            ((_S, "distinct_pharmacies"),), "Distinct selling pharmacies",
        ),
        _metric(
            "nb_references_80pct_ca", _S, MetricKind.COUNT,
            ((_S, "revenue_ttc"),), "Products making 80% of revenue", per_product=True,
        ),
        _metric("quantite_achetee", _P, MetricKind.SUM, ((_P, "quantity"),), "Units bought"),
        _metric("montant_achat_ht", _P, MetricKind.SUM, ((_P, "amount_ht"),), "Purchase amount excl. tax"),
        _metric(
            "prix_achat_moyen_ht", _P, MetricKind.RATIO,
            ((_P, "amount_ht"), (_P, "quantity")), "Average purchase price excl. tax",
        ),
        _metric("quantite_stock", _K, MetricKind.SUM, ((_K, "quantity"),), "Units on hand"),
        _metric("valeur_stock_ht", _K, MetricKind.SUM, ((_K, "value_ht"),), "Stock value excl. tax"),
        _metric(
            "jours_de_stock", _K, MetricKind.RATIO,
            ((_K, "quantity"), (_S, "quantity")), "Days of stock", daily_denominator=True,
        ),
    )
}

DASHBOARD_METRICS: Tuple[str, ...] = (
    "ca_ttc",
    "montant_achat_ht",
    "montant_marge",
    "taux_marge_pct",
    "valeur_stock_ht",
    "quantite_stock",
    "quantite_vendue",
    "quantite_achetee",
    "jours_de_stock",
    "nb_references_produits",
    "nb_pharmacies",
)

SALES_KPI_METRICS: Tuple[str, ...] = (
    "quantite_vendue",
    "ca_ttc",
    "montant_marge",
    "taux_marge_pct",
    "nb_references_produits",
    "nb_references_80pct_ca",
)

SHARE_METRICS: Tuple[str, ...] = ("ca_ttc", "montant_marge")

PARETO_THRESHOLD = 0.8


def metric_definition(name: str) -> Optional[MetricDefinition]:
    return METRICS.get(name)


def metrics_for(fact_type: FactType) -> List[str]:
    return [name for name, m in METRICS.items() if m.fact_type == fact_type]


# -----------------------------------------------------------------------------
# 4) Catalog for documentation
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalogDoc:
    metrics: Dict[str, Dict[str, str]]
    range_filters: List[str]
    hierarchy_levels: List[str]
    sub_entities: List[str]


def catalog_doc() -> CatalogDoc:
    return CatalogDoc(
        metrics={
            name: {"fact_type": m.fact_type.value, "kind": m.kind.value, "label": m.label}
            for name, m in METRICS.items()
        },
        range_filters=list(RANGE_FIELDS),
        hierarchy_levels=list(HIERARCHY_LEVELS),
        sub_entities=list(SUB_ENTITY_FIELDS),
    )
