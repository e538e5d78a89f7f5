"""
Fact store backed by the PostgreSQL dashboard database.
Translates the predicate AST into SQL text with named parameters.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from pharmadash.core.logging import db_logger
from pharmadash.domain.catalog import FactField, FactType, JoinKind
from pharmadash.domain.errors import ExecutionError, ValidationError
from pharmadash.domain.filters import Period
from pharmadash.domain.predicates import (
    CompiledPredicate,
    FlagFragment,
    MembershipFragment,
    PredicateFragment,
    RangeFragment,
)
from pharmadash.infra.db import fetch_all, health_check


# -----------------------------------------------------------------------------
# 1) Column and join mapping
# -----------------------------------------------------------------------------

COLUMNS: Dict[FactField, str] = {
    FactField.PRODUCT_CODE: "ip.code_13_ref_id",
    FactField.PHARMACY_ID: "ip.pharmacy_id::text",
    FactField.LABORATORY: "gp.bcb_lab",
    FactField.TVA_RATE: "gp.tva_percentage",
    FactField.IS_REIMBURSABLE: "gp.is_reimbursable",
    FactField.GENERIC_STATUS: "gp.bcb_generic_status",
    FactField.GROSS_PURCHASE_PRICE: "gp.prix_achat_ht_fabricant",
    FactField.NET_PURCHASE_PRICE: "lp.weighted_average_price",
    FactField.SELL_PRICE: "lp.price_with_tax",
    FactField.DISCOUNT_PCT: "lp.discount_percentage",
    FactField.MARGIN_PCT: "lp.margin_percentage",
    FactField.SEGMENT_L0: "gp.bcb_segment_l0",
    FactField.SEGMENT_L1: "gp.bcb_segment_l1",
    FactField.SEGMENT_L2: "gp.bcb_segment_l2",
    FactField.SEGMENT_L3: "gp.bcb_segment_l3",
    FactField.SEGMENT_L4: "gp.bcb_segment_l4",
    FactField.SEGMENT_L5: "gp.bcb_segment_l5",
    FactField.FAMILY: "gp.bcb_family",
}

# Render order matters: lp is joined on ip, gp on ip as well.
JOINS: Tuple[Tuple[JoinKind, str], ...] = (
    (JoinKind.PRODUCT_ATTRIBUTES, "LEFT JOIN data_globalproduct gp ON ip.code_13_ref_id = gp.code_13_ref"),
    (JoinKind.PRICE_ATTRIBUTES, "LEFT JOIN mv_latest_product_prices lp ON ip.id = lp.product_id"),
)


# -----------------------------------------------------------------------------
# 2) Per fact type: source tables, row expressions, base aggregates
# -----------------------------------------------------------------------------

_SALES_FROM = """
    FROM data_sales s
    JOIN data_inventorysnapshot ins ON s.product_id = ins.id
    JOIN data_internalproduct ip ON ins.product_id = ip.id
"""

_PURCHASES_FROM = """
    FROM data_productorder po
    JOIN data_order o ON po.order_id = o.id
    JOIN data_internalproduct ip ON po.product_id = ip.id
    LEFT JOIN mv_latest_product_prices lp ON ip.id = lp.product_id
"""

_STOCK_FROM = """
    FROM data_inventorysnapshot ins
    JOIN data_internalproduct ip ON ins.product_id = ip.id
"""

_SALES_PRICE_HT = 'ins.price_with_tax / (1 + COALESCE(ip."TVA", 0) / 100.0)'

FACT_SOURCES: Dict[FactType, Dict[str, Any]] = {
    FactType.SALES: {
        "from": _SALES_FROM,
        "date": "s.date",
        "builtin_joins": frozenset(),
        "row": {
            "quantity": "s.quantity",
            "revenue_ttc": "s.quantity * ins.price_with_tax",
            "revenue_ht": f"s.quantity * {_SALES_PRICE_HT}",
            "margin_amount": f"s.quantity * ({_SALES_PRICE_HT} - ins.weighted_average_price)",
        },
        "distinct_on": None,
    },
    FactType.PURCHASES: {
        "from": _PURCHASES_FROM,
        "date": "o.delivery_date",
        "builtin_joins": frozenset({JoinKind.PRICE_ATTRIBUTES}),
        "row": {
            "quantity": "po.qte_r",
            "amount_ht": "po.qte_r * COALESCE(lp.weighted_average_price, 0)",
        },
        "distinct_on": None,
    },
    FactType.STOCK: {
        "from": _STOCK_FROM,
        "date": "ins.date",
        "builtin_joins": frozenset(),
        "row": {
            "quantity": "ins.stock",
            "value_ht": "ins.stock * ins.weighted_average_price",
        },
        # Latest snapshot per internal product (one per pharmacy x product).
        "distinct_on": ("ins.product_id", "ins.date DESC"),
    },
}

_AGGREGATES: Dict[str, str] = {
    "quantity": "COALESCE(SUM(f.quantity), 0)",
    "revenue_ttc": "COALESCE(SUM(f.revenue_ttc), 0)",
    "revenue_ht": "COALESCE(SUM(f.revenue_ht), 0)",
    "margin_amount": "COALESCE(SUM(f.margin_amount), 0)",
    "amount_ht": "COALESCE(SUM(f.amount_ht), 0)",
    "value_ht": "COALESCE(SUM(f.value_ht), 0)",
    "distinct_products": "COUNT(DISTINCT f.product_code)",
    "distinct_pharmacies": "COUNT(DISTINCT f.pharmacy_id)",
}

_COUNT_BASES = frozenset({"distinct_products", "distinct_pharmacies"})


# -----------------------------------------------------------------------------
# 3) Predicate translation
# -----------------------------------------------------------------------------

class _Params:
    """Named bind parameters ``:p0``, ``:p1``... in fragment order."""

    def __init__(self):
        self.values: Dict[str, Any] = {}
        self._count = 0

    def add(self, value: Any) -> str:
        name = f"p{self._count}"
        self._count += 1
        self.values[name] = value
        return f":{name}"


def render_fragment(fragment: PredicateFragment, params: _Params) -> str:
    column = COLUMNS[fragment.field]
    if isinstance(fragment, MembershipFragment):
        ref = params.add(list(fragment.values))
        if fragment.negated:
            return f"{column} <> ALL({ref})"
        return f"{column} = ANY({ref})"
    if isinstance(fragment, RangeFragment):
        parts = []
        if fragment.minimum is not None:
            parts.append(f"{column} >= {params.add(fragment.minimum)}")
        if fragment.maximum is not None:
            parts.append(f"{column} <= {params.add(fragment.maximum)}")
        return " AND ".join(parts) if parts else "TRUE"
    if isinstance(fragment, FlagFragment):
        return f"{column} = {params.add(fragment.value)}"
    raise ValidationError(f"Unsupported predicate fragment: {type(fragment).__name__}")


def _to_number(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value


# -----------------------------------------------------------------------------
# 4) Repository
# -----------------------------------------------------------------------------

FetchFn = Callable[..., List[Dict[str, Any]]]


class SqlFactStore:
    """
    Fact store over PostgreSQL.

    Every query is built as ``SELECT <aggregates> FROM (<fact rows>) f`` where the
    inner query applies the period and the compiled predicate, so grouped and
    ungrouped aggregations share the same translation.
    """

    def __init__(
        self,
        fetch: Optional[FetchFn] = None,
        statement_timeout_ms: Optional[int] = None,
    ):
        self._fetch = fetch or fetch_all
        self._timeout_ms = statement_timeout_ms

    # -- SQL building -----------------------------------------------------

    @staticmethod
    def build_query(
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        bases: Sequence[str],
        group_by: Sequence[FactField] = (),
    ) -> Tuple[str, Dict[str, Any]]:
        """
        Build the SQL text and bind parameters for one aggregation.

        Args:
            predicate: Compiled filters
            period: Closed interval on the fact's event date
            fact_type: Which fact table to read
            bases: Base aggregates to compute
            group_by: Optional grouping fields

        Returns:
            ``(sql, params)`` ready for ``fetch_all``
        """
        source = FACT_SOURCES[fact_type]
        unknown = [b for b in bases if b not in _AGGREGATES or (
            b not in source["row"] and b not in _COUNT_BASES
        )]
        if unknown:
            raise ValidationError(
                f"Unsupported aggregates for {fact_type.value}: {', '.join(unknown)}"
            )

        params = _Params()
        params.values["period_start"] = period.start
        params.values["period_end"] = period.end

        joins = predicate.joins_with(*group_by) - source["builtin_joins"]
        join_sql = "\n    ".join(sql for kind, sql in JOINS if kind in joins)

        conditions = [f"{source['date']} BETWEEN :period_start AND :period_end"]
        conditions += [f"({render_fragment(f, params)})" for f in predicate.fragments]

        group_aliases = [f"g{i}" for i in range(len(group_by))]
        select_cols = [f"{expr} AS {name}" for name, expr in source["row"].items()]
        select_cols.append(f"{COLUMNS[FactField.PRODUCT_CODE]} AS product_code")
        select_cols.append(f"{COLUMNS[FactField.PHARMACY_ID]} AS pharmacy_id")
        select_cols += [f"{COLUMNS[field]} AS {alias}" for field, alias in zip(group_by, group_aliases)]

        distinct = ""
        order = ""
        if source["distinct_on"]:
            key, latest = source["distinct_on"]
            distinct = f"DISTINCT ON ({key}) "
            order = f"\n    ORDER BY {key}, {latest}"

        inner = (
            f"SELECT {distinct}{', '.join(select_cols)}"
            f"{source['from']}"
            f"    {join_sql}\n"
            f"    WHERE {' AND '.join(conditions)}"
            f"{order}"
        )

        outer_cols = [
            f"f.{alias} AS {field.value}" for field, alias in zip(group_by, group_aliases)
        ]
        outer_cols += [f"{_AGGREGATES[b]} AS {b}" for b in bases]
        sql = f"SELECT {', '.join(outer_cols)}\nFROM (\n    {inner}\n) f"
        if group_aliases:
            keys = ", ".join("f." + a for a in group_aliases)
            # Row order feeds tie-breaks downstream; keep it independent of the planner.
            sql += f"\nGROUP BY {keys}\nORDER BY {keys}"
        return sql, params.values

    # -- execution --------------------------------------------------------

    async def _run(self, sql: str, params: Dict[str, Any], fact_type: FactType) -> List[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._fetch, sql, params, self._timeout_ms)
        except SQLAlchemyError as exc:
            db_logger.error("Fact store query failed", exc=exc, fact_type=fact_type.value)
            raise ExecutionError("Fact store query failed") from exc

    async def aggregate(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        bases: Sequence[str],
    ) -> Dict[str, Any]:
        sql, params = self.build_query(predicate, period, fact_type, bases)
        rows = await self._run(sql, params, fact_type)
        row = rows[0] if rows else {}
        return {b: _to_number(row.get(b)) for b in bases}

    async def aggregate_grouped(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        bases: Sequence[str],
        group_by: Sequence[FactField],
    ) -> List[Dict[str, Any]]:
        sql, params = self.build_query(predicate, period, fact_type, bases, group_by)
        rows = await self._run(sql, params, fact_type)
        keys = [f.value for f in group_by] + list(bases)
        return [{k: _to_number(r.get(k)) for k in keys} for r in rows]

    async def ping(self) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(health_check)
        except SQLAlchemyError as exc:
            db_logger.error("Database health check failed", exc=exc)
            raise ExecutionError("Fact store unavailable") from exc
