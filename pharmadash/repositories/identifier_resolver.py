"""
Laboratory / category code resolution.

The compiler only filters on product codes and pharmacy ids; laboratories and
categories are turned into product codes here, before compilation.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from pharmadash.core.logging import db_logger
from pharmadash.domain.catalog import CATEGORY_FIELDS, FactField
from pharmadash.domain.errors import ExecutionError
from pharmadash.domain.filters import IdentifierSets
from pharmadash.infra.db import fetch_all
from pharmadash.repositories.memory_fact_store import MemoryFactStore
from pharmadash.repositories.sql_fact_store import COLUMNS


class PassthroughIdentifierResolver:
    """Codes already are product codes; they are merged as-is by the compiler."""

    async def resolve(self, identifiers: IdentifierSets) -> IdentifierSets:
        return identifiers


class _CatalogResolver:
    """Shared resolution flow; subclasses implement ``_lookup``."""

    async def _lookup(self, field: FactField, codes: Sequence[str]) -> List[str]:
        raise NotImplementedError

    async def resolve(self, identifiers: IdentifierSets) -> IdentifierSets:
        if not identifiers.laboratories and not identifiers.categories:
            return identifiers

        products = set(identifiers.products)
        if identifiers.laboratories:
            products.update(await self._lookup(FactField.LABORATORY, sorted(identifiers.laboratories)))
        if identifiers.categories:
            # A category code may belong to any hierarchy level.
            for field in CATEGORY_FIELDS:
                products.update(await self._lookup(field, sorted(identifiers.categories)))

        db_logger.debug(
            "Identifiers resolved",
            laboratories=len(identifiers.laboratories),
            categories=len(identifiers.categories),
            products=len(products),
        )
        # An include set that resolves to nothing must still match nothing.
        if not products:
            products = {"__unresolved__"}
        return IdentifierSets.of(products=products, pharmacies=identifiers.pharmacies)


class SqlIdentifierResolver(_CatalogResolver):
    """Resolves codes through ``data_globalproduct``."""

    def __init__(self, fetch: Optional[Callable] = None):
        self._fetch = fetch or fetch_all

    async def _lookup(self, field: FactField, codes: Sequence[str]) -> List[str]:
        sql = (
            "SELECT DISTINCT gp.code_13_ref AS product_code FROM data_globalproduct gp "
            f"WHERE {COLUMNS[field]} = ANY(:codes)"
        )
        try:
            rows = await asyncio.to_thread(self._fetch, sql, {"codes": list(codes)})
        except SQLAlchemyError as exc:
            db_logger.error("Identifier resolution failed", exc=exc, field=field.value)
            raise ExecutionError("Fact store query failed") from exc
        return [str(r["product_code"]) for r in rows]


class MemoryIdentifierResolver(_CatalogResolver):
    """Resolves codes through the products frame of a MemoryFactStore."""

    def __init__(self, store: MemoryFactStore):
        self._store = store

    async def _lookup(self, field: FactField, codes: Sequence[str]) -> List[str]:
        return self._store.products_matching(field, codes)
