"""Repository protocol definitions used by the analytics engines."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from pharmadash.domain.catalog import FactField, FactType
from pharmadash.domain.filters import IdentifierSets, Period
from pharmadash.domain.predicates import CompiledPredicate

BaseRow = Dict[str, Any]


class FactStoreProtocol(Protocol):
    """
    Contract for fact-store access.

    Implementations only compute base aggregates (see
    ``catalog.BASE_AGGREGATES``); metric derivation and the zero/null policy
    stay in the aggregation engine. Grouped rows carry one key per
    ``group_by`` field (``FactField.value``) plus the requested bases.
    """

    async def aggregate(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        bases: Sequence[str],
    ) -> BaseRow: ...

    async def aggregate_grouped(
        self,
        predicate: CompiledPredicate,
        period: Period,
        fact_type: FactType,
        bases: Sequence[str],
        group_by: Sequence[FactField],
    ) -> List[BaseRow]: ...

    async def ping(self) -> Dict[str, Any]: ...


class IdentifierResolverProtocol(Protocol):
    """Contract for turning laboratory/category codes into product codes."""

    async def resolve(self, identifiers: IdentifierSets) -> IdentifierSets: ...


class KeyValueStoreProtocol(Protocol):
    """Contract for the optional external result cache."""

    async def get(self, key: str) -> Optional[bytes]: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...
