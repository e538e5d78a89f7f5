"""
In-memory fact store over pandas DataFrames.

Used for demos (``FACT_STORE=memory`` + ``MEMORY_DATA_DIR``) and by the test
suite. It follows the same semantics as the SQL store: predicates are applied
before the latest-snapshot selection for stock, attribute joins are left joins
and a missing attribute never matches a filter.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

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


# -----------------------------------------------------------------------------
# 1) Frame layouts
# -----------------------------------------------------------------------------

SALES_COLUMNS = ["date", "pharmacy_id", "product_code", "quantity", "unit_price_ttc", "unit_cost", "vat_rate"]
PURCHASES_COLUMNS = ["date", "pharmacy_id", "product_code", "quantity"]
STOCK_COLUMNS = ["date", "pharmacy_id", "product_code", "quantity", "unit_cost"]
PRODUCTS_COLUMNS = [
    "product_code",
    FactField.LABORATORY.value,
    FactField.TVA_RATE.value,
    FactField.IS_REIMBURSABLE.value,
    FactField.GENERIC_STATUS.value,
    FactField.GROSS_PURCHASE_PRICE.value,
    FactField.SEGMENT_L0.value,
    FactField.SEGMENT_L1.value,
    FactField.SEGMENT_L2.value,
    FactField.SEGMENT_L3.value,
    FactField.SEGMENT_L4.value,
    FactField.SEGMENT_L5.value,
    FactField.FAMILY.value,
]
PRICES_COLUMNS = [
    "pharmacy_id",
    "product_code",
    FactField.NET_PURCHASE_PRICE.value,
    FactField.SELL_PRICE.value,
    FactField.DISCOUNT_PCT.value,
    FactField.MARGIN_PCT.value,
]

_FILES = {
    "sales": ("sales.csv", SALES_COLUMNS),
    "purchases": ("purchases.csv", PURCHASES_COLUMNS),
    "stock": ("stock.csv", STOCK_COLUMNS),
    "products": ("products.csv", PRODUCTS_COLUMNS),
    "prices": ("prices.csv", PRICES_COLUMNS),
}

_BUILTIN_JOINS = {
    FactType.SALES: frozenset(),
    FactType.PURCHASES: frozenset({JoinKind.PRICE_ATTRIBUTES}),
    FactType.STOCK: frozenset(),
}

_TRUE = {"true", "1", "t", "yes", "y"}


def _frame(df: Optional[pd.DataFrame], columns: List[str]) -> pd.DataFrame:
    if df is None:
        df = pd.DataFrame(columns=columns)
    df = df.copy()
    for col in columns:
        if col not in df.columns:
            df[col] = None
    for col in ("pharmacy_id", "product_code"):
        if col in df.columns:
            df[col] = df[col].astype(str)
    if "date" in df.columns:
        df["date"] = pd.to_datetime(df["date"])
    flag = FactField.IS_REIMBURSABLE.value
    if flag in df.columns and df[flag].dtype == object:
        df[flag] = df[flag].map(
            lambda v: None if v is None or (isinstance(v, float) and np.isnan(v)) else str(v).strip().lower() in _TRUE
        )
    return df


def _py(value: Any) -> Any:
    """numpy scalars and NaN -> plain Python values."""
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


# -----------------------------------------------------------------------------
# 2) Repository
# -----------------------------------------------------------------------------

class MemoryFactStore:
    """Fact store holding sales, purchases and stock snapshots as DataFrames."""

    def __init__(
        self,
        sales: Optional[pd.DataFrame] = None,
        purchases: Optional[pd.DataFrame] = None,
        stock: Optional[pd.DataFrame] = None,
        products: Optional[pd.DataFrame] = None,
        prices: Optional[pd.DataFrame] = None,
    ):
        self._facts = {
            FactType.SALES: _frame(sales, SALES_COLUMNS),
            FactType.PURCHASES: _frame(purchases, PURCHASES_COLUMNS),
            FactType.STOCK: _frame(stock, STOCK_COLUMNS),
        }
        self._products = _frame(products, PRODUCTS_COLUMNS)
        self._prices = _frame(prices, PRICES_COLUMNS)

    @classmethod
    def from_directory(cls, path: str) -> "MemoryFactStore":
        """
        Load ``sales.csv``, ``purchases.csv``, ``stock.csv``, ``products.csv``
        and ``prices.csv`` from ``path``. Missing files mean empty tables.
        """
        root = Path(path)
        if not root.is_dir():
            raise RuntimeError(f"MEMORY_DATA_DIR does not exist: {path}")
        frames: Dict[str, Optional[pd.DataFrame]] = {}
        for key, (filename, _) in _FILES.items():
            file = root / filename
            frames[key] = (
                pd.read_csv(file, dtype={"pharmacy_id": str, "product_code": str})
                if file.exists()
                else None
            )
        db_logger.info(
            "Memory fact store loaded",
            data_dir=str(root),
            **{f"{k}_rows": 0 if v is None else len(v) for k, v in frames.items()},
        )
        return cls(**frames)

    # -- row preparation --------------------------------------------------

    def _rows(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        group_by: Sequence[FactField] = (),
    ) -> pd.DataFrame:
        df = self._facts[fact_type]
        df = df[(df["date"] >= pd.Timestamp(period.start)) & (df["date"] <= pd.Timestamp(period.end))]

        joins = predicate.joins_with(*group_by) | _BUILTIN_JOINS[fact_type]
        if JoinKind.PRODUCT_ATTRIBUTES in joins:
            df = df.merge(self._products, on="product_code", how="left")
        if JoinKind.PRICE_ATTRIBUTES in joins:
            df = df.merge(self._prices, on=["pharmacy_id", "product_code"], how="left")

        df = self._derive(df, fact_type)

        if predicate.fragments:
            mask = pd.Series(True, index=df.index)
            for fragment in predicate.fragments:
                mask &= self._mask(df, fragment)
            df = df[mask]

        if fact_type is FactType.STOCK:
            df = df.sort_values("date", kind="mergesort").groupby(
                ["pharmacy_id", "product_code"], sort=False
            ).tail(1)
        return df

    @staticmethod
    def _derive(df: pd.DataFrame, fact_type: FactType) -> pd.DataFrame:
        df = df.copy()
        if fact_type is FactType.SALES:
            vat = df["vat_rate"].astype(float).fillna(0.0)
            price_ht = df["unit_price_ttc"].astype(float) / (1 + vat / 100.0)
            df["revenue_ttc"] = df["quantity"] * df["unit_price_ttc"].astype(float)
            df["revenue_ht"] = df["quantity"] * price_ht
            df["margin_amount"] = df["quantity"] * (price_ht - df["unit_cost"].astype(float))
        elif fact_type is FactType.PURCHASES:
            cost = df[FactField.NET_PURCHASE_PRICE.value].astype(float).fillna(0.0)
            df["amount_ht"] = df["quantity"] * cost
        else:
            df["value_ht"] = df["quantity"] * df["unit_cost"].astype(float)
        return df

    @staticmethod
    def _mask(df: pd.DataFrame, fragment: PredicateFragment) -> pd.Series:
        column = df[fragment.field.value]
        if isinstance(fragment, MembershipFragment):
            hit = column.isin(list(fragment.values))
            if fragment.negated:
                return column.notna() & ~hit
            return hit
        if isinstance(fragment, RangeFragment):
            values = pd.to_numeric(column, errors="coerce")
            mask = values.notna()
            if fragment.minimum is not None:
                mask &= values >= fragment.minimum
            if fragment.maximum is not None:
                mask &= values <= fragment.maximum
            return mask
        if isinstance(fragment, FlagFragment):
            return column.notna() & (column == fragment.value)
        raise ValidationError(f"Unsupported predicate fragment: {type(fragment).__name__}")

    # -- aggregation ------------------------------------------------------

    @staticmethod
    def _base(df: pd.DataFrame, base: str) -> Any:
        if base == "distinct_products":
            return int(df["product_code"].nunique())
        if base == "distinct_pharmacies":
            return int(df["pharmacy_id"].nunique())
        if base not in df.columns:
            raise ValidationError(f"Unsupported aggregate: {base}")
        return _py(df[base].sum()) if len(df) else 0

    def _compute(self, predicate, period, fact_type, bases, group_by=()):
        try:
            df = self._rows(predicate, period, fact_type, group_by)
            if not group_by:
                return {b: self._base(df, b) for b in bases}
            keys = [f.value for f in group_by]
            out = []
            for group_key, group in df.groupby(keys, dropna=False, sort=False):
                if not isinstance(group_key, tuple):
                    group_key = (group_key,)
                row = {k: _py(v) for k, v in zip(keys, group_key)}
                row.update({b: self._base(group, b) for b in bases})
                out.append(row)
            return out
        except KeyError as exc:
            db_logger.error("Memory fact store is missing a column", exc=exc, fact_type=fact_type.value)
            raise ExecutionError("Fact store query failed") from exc

    async def aggregate(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        bases: Sequence[str],
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(self._compute, predicate, period, fact_type, bases)

    async def aggregate_grouped(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        bases: Sequence[str],
        group_by: Sequence[FactField],
    ) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(
            self._compute, predicate, period, fact_type, bases, tuple(group_by)
        )

    async def ping(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "backend": "memory",
            **{f"{t.value}_rows": len(df) for t, df in self._facts.items()},
        }

    # -- catalog lookups used by the identifier resolver -------------------

    def products_matching(self, field: FactField, codes: Sequence[str]) -> List[str]:
        products = self._products
        if field.value not in products.columns or products.empty:
            return []
        hit = products[products[field.value].isin(list(codes))]
        return sorted(hit["product_code"].astype(str).unique().tolist())
