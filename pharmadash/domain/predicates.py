"""
Predicate AST produced by the query compiler.

Fragments are plain immutable values; each fact store translates them into its
own query language (SQL text, pandas masks, ...).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple, Union

from pharmadash.domain.catalog import FactField, JoinKind, joins_for


class FragmentRole(str, Enum):
    SCOPE = "scope"          # pharmacy scoping, kept by every derived predicate
    SELECTION = "selection"  # narrows the product selection
    EXCLUSION = "exclusion"  # NOT IN, applied after includes


@dataclass(frozen=True)
class MembershipFragment:
    """``field IN values`` (or ``NOT IN`` when negated)."""

    source: str
    role: FragmentRole
    field: FactField
    values: Tuple[Union[str, float], ...]
    negated: bool = False


@dataclass(frozen=True)
class RangeFragment:
    """``minimum <= field <= maximum``; a ``None`` bound is open."""

    source: str
    role: FragmentRole
    field: FactField
    minimum: Optional[float] = None
    maximum: Optional[float] = None


@dataclass(frozen=True)
class FlagFragment:
    """``field = value`` for boolean attributes."""

    source: str
    role: FragmentRole
    field: FactField
    value: bool


PredicateFragment = Union[MembershipFragment, RangeFragment, FlagFragment]


def required_joins(fragments: Iterable[PredicateFragment]) -> FrozenSet[JoinKind]:
    joins = set()
    for fragment in fragments:
        joins.update(joins_for(fragment.field))
    return frozenset(joins)


@dataclass(frozen=True)
class CompiledPredicate:
    fragments: Tuple[PredicateFragment, ...] = ()
    required_joins: FrozenSet[JoinKind] = frozenset()

    @classmethod
    def of(cls, fragments: Iterable[PredicateFragment]) -> CompiledPredicate:
        fragments = tuple(fragments)
        return cls(fragments=fragments, required_joins=required_joins(fragments))

    @property
    def is_empty(self) -> bool:
        return not self.fragments

    def without_selection(self) -> CompiledPredicate:
        """Same scope and exclusions, minus the product-narrowing filters."""
        return CompiledPredicate.of(
            f for f in self.fragments if f.role is not FragmentRole.SELECTION
        )

    def joins_with(self, *fields: FactField) -> FrozenSet[JoinKind]:
        """Joins needed to evaluate this predicate and also read ``fields``."""
        joins = set(self.required_joins)
        for f in fields:
            joins.update(joins_for(f))
        return frozenset(joins)
