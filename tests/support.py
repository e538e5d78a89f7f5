"""Shared data, fakes and request helpers for the test suite."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd

from pharmadash.core.security import create_access_token
from pharmadash.domain.errors import ExecutionError
from pharmadash.domain.filters import Period
from pharmadash.repositories.memory_fact_store import MemoryFactStore

JANUARY = Period(date(2025, 1, 1), date(2025, 1, 31))
DECEMBER = Period(date(2024, 12, 1), date(2024, 12, 31))


# -----------------------------------------------------------------------------
# Data
# -----------------------------------------------------------------------------
#
# January 2025, vat_rate 0 so revenue_ht == revenue_ttc:
#   ph1 P1 (LAB_A, SEG_X)  10 x 10  -> revenue 100, margin 40
#   ph1 P2 (LAB_B, SEG_X)   5 x 30  -> revenue 150, margin 50
#   ph2 P3 (LAB_A, SEG_Y)  20 x 5   -> revenue 100, margin 20
#   ph2 P4 (LAB_C, SEG_Z)   2 x 50  -> revenue 100, margin 40
# December 2024: ph1 P1 8 x 10 -> revenue 80; ph2 P4 1 x 60 (20% VAT).


def products_frame() -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "product_code": "P1", "laboratory": "LAB_A", "tva_rate": 2.1,
                "is_reimbursable": True, "generic_status": "GÉNÉRIQUE",
                "gross_purchase_price": 5.0, "bcb_segment_l0": "SEG_X", "bcb_family": "F1",
            },
            {
                "product_code": "P2", "laboratory": "LAB_B", "tva_rate": 20.0,
                "is_reimbursable": False, "generic_status": "RÉFÉRENT",
                "gross_purchase_price": 18.0, "bcb_segment_l0": "SEG_X", "bcb_family": "F1",
            },
            {
                "product_code": "P3", "laboratory": "LAB_A", "tva_rate": 5.5,
                "is_reimbursable": True, "generic_status": None,
                "gross_purchase_price": 3.0, "bcb_segment_l0": "SEG_Y", "bcb_family": "F2",
            },
            {
                "product_code": "P4", "laboratory": "LAB_C", "tva_rate": 20.0,
                "is_reimbursable": False, "generic_status": "GÉNÉRIQUE",
                "gross_purchase_price": 25.0, "bcb_segment_l0": "SEG_Z", "bcb_family": "F2",
            },
        ]
    )


def sales_frame() -> pd.DataFrame:
    return pd.DataFrame(
        [
            ("2025-01-10", "ph1", "P1", 10, 10.0, 6.0, 0.0),
            ("2025-01-11", "ph1", "P2", 5, 30.0, 20.0, 0.0),
            ("2025-01-12", "ph2", "P3", 20, 5.0, 4.0, 0.0),
            ("2025-01-15", "ph2", "P4", 2, 50.0, 30.0, 0.0),
            ("2024-12-10", "ph1", "P1", 8, 10.0, 6.0, 0.0),
            ("2024-12-20", "ph2", "P4", 1, 60.0, 30.0, 20.0),
        ],
        columns=["date", "pharmacy_id", "product_code", "quantity", "unit_price_ttc", "unit_cost", "vat_rate"],
    )


def purchases_frame() -> pd.DataFrame:
    return pd.DataFrame(
        [
            ("2025-01-03", "ph1", "P1", 100),
            ("2025-01-04", "ph2", "P3", 50),
        ],
        columns=["date", "pharmacy_id", "product_code", "quantity"],
    )


def stock_frame() -> pd.DataFrame:
    return pd.DataFrame(
        [
            ("2025-01-05", "ph1", "P1", 50, 6.0),
            ("2025-01-20", "ph1", "P1", 40, 6.0),
            ("2025-01-20", "ph2", "P3", 30, 4.0),
        ],
        columns=["date", "pharmacy_id", "product_code", "quantity", "unit_cost"],
    )


def prices_frame() -> pd.DataFrame:
    return pd.DataFrame(
        [
            ("ph1", "P1", 5.5, 10.0, 10.0, 40.0),
            ("ph1", "P2", 19.0, 30.0, 0.0, 33.0),
            ("ph2", "P3", 3.5, 5.0, 5.0, 20.0),
            ("ph2", "P4", 24.0, 50.0, 2.0, 40.0),
        ],
        columns=["pharmacy_id", "product_code", "net_purchase_price", "sell_price", "discount_pct", "margin_pct"],
    )


def network_store() -> MemoryFactStore:
    return MemoryFactStore(
        sales=sales_frame(),
        purchases=purchases_frame(),
        stock=stock_frame(),
        products=products_frame(),
        prices=prices_frame(),
    )


def segmented_store(segments: int = 12) -> MemoryFactStore:
    """One product per segment ``S01..``; segment i sells ``(segments - i + 1) * 10``."""
    products = pd.DataFrame(
        [
            {"product_code": f"X{i:02d}", "laboratory": f"LAB_{i:02d}", "bcb_segment_l1": f"S{i:02d}"}
            for i in range(1, segments + 1)
        ]
    )
    sales = pd.DataFrame(
        [
            ("2025-01-10", "ph1", f"X{i:02d}", segments - i + 1, 10.0, 5.0, 0.0)
            for i in range(1, segments + 1)
        ],
        columns=["date", "pharmacy_id", "product_code", "quantity", "unit_price_ttc", "unit_cost", "vat_rate"],
    )
    return MemoryFactStore(sales=sales, products=products)


# -----------------------------------------------------------------------------
# Fakes
# -----------------------------------------------------------------------------


class FailingStore:
    """Every call fails like an unreachable database."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error or ExecutionError("Fact store query failed")

    async def aggregate(self, *args, **kwargs):
        raise self.error

    async def aggregate_grouped(self, *args, **kwargs):
        raise self.error

    async def ping(self):
        raise self.error


class SlowStore:
    """Sleeps before answering; counts cancellations."""

    def __init__(self, delay: float = 5.0):
        self.delay = delay
        self.cancelled = 0

    async def _sleep(self):
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise

    async def aggregate(self, predicate, period, fact_type, bases):
        await self._sleep()
        return {b: 0 for b in bases}

    async def aggregate_grouped(self, predicate, period, fact_type, bases, group_by):
        await self._sleep()
        return []

    async def ping(self):
        return {"ok": True, "backend": "slow"}


class RecordingStore:
    """Delegates to a real store and records every call."""

    def __init__(self, inner):
        self.inner = inner
        self.calls: List[Dict[str, Any]] = []

    async def aggregate(self, predicate, period, fact_type, bases):
        self.calls.append({"kind": "aggregate", "fact_type": fact_type, "bases": list(bases), "period": period})
        return await self.inner.aggregate(predicate, period, fact_type, bases)

    async def aggregate_grouped(self, predicate, period, fact_type, bases, group_by):
        self.calls.append(
            {"kind": "grouped", "fact_type": fact_type, "bases": list(bases), "group_by": list(group_by)}
        )
        return await self.inner.aggregate_grouped(predicate, period, fact_type, bases, group_by)

    async def ping(self):
        return await self.inner.ping()


class DictKeyValueStore:
    """In-process stand-in for Redis."""

    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.ttls: Dict[str, int] = {}
        self.reads = 0

    async def get(self, key: str) -> Optional[bytes]:
        self.reads += 1
        return self.data.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self.data[key] = value
        self.ttls[key] = ttl_seconds


class BrokenKeyValueStore:
    async def get(self, key: str) -> Optional[bytes]:
        raise ConnectionError("redis down")

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        raise ConnectionError("redis down")


# -----------------------------------------------------------------------------
# HTTP helpers
# -----------------------------------------------------------------------------


def bearer(roles=("analyst",), pharmacies=()) -> Dict[str, str]:
    token = create_access_token(user_id="u-1", roles=list(roles), pharmacies=list(pharmacies))
    return {"Authorization": f"Bearer {token}"}


def body(**overrides) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"dateRange": {"start": "2025-01-01", "end": "2025-01-31"}}
    payload.update(overrides)
    return payload
