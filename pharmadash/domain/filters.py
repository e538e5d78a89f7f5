"""
Request filters as immutable value objects.

A ``FilterSpecification`` is built once per request and never mutated; the
query compiler turns it into predicate fragments.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from pharmadash.domain.catalog import GenericStatus, ReimbursementStatus
from pharmadash.domain.errors import ValidationError


@dataclass(frozen=True)
class Period:
    """Closed date interval on the fact's event date."""

    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValidationError(
                f"Period start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class NumericRange:
    """Either bound may be missing (unbounded on that side)."""

    minimum: Optional[float] = None
    maximum: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.minimum is None and self.maximum is None

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {"min": self.minimum, "max": self.maximum}


def _frozen(values: Optional[Iterable[Any]]) -> FrozenSet[Any]:
    if not values:
        return frozenset()
    return frozenset(v for v in values if v is not None and v != "")


@dataclass(frozen=True)
class IdentifierSets:
    """Products, laboratories, categories and pharmacies picked by the user."""

    products: FrozenSet[str] = frozenset()
    laboratories: FrozenSet[str] = frozenset()
    categories: FrozenSet[str] = frozenset()
    pharmacies: FrozenSet[str] = frozenset()

    @classmethod
    def of(
        cls,
        products: Optional[Iterable[str]] = None,
        laboratories: Optional[Iterable[str]] = None,
        categories: Optional[Iterable[str]] = None,
        pharmacies: Optional[Iterable[str]] = None,
    ) -> IdentifierSets:
        return cls(
            products=_frozen(products),
            laboratories=_frozen(laboratories),
            categories=_frozen(categories),
            pharmacies=_frozen(pharmacies),
        )

    @property
    def product_universe(self) -> FrozenSet[str]:
        """Union of product-like sets; labs and categories must already be resolved."""
        return self.products | self.laboratories | self.categories

    def to_dict(self) -> Dict[str, list]:
        return {
            "products": sorted(self.products),
            "laboratories": sorted(self.laboratories),
            "categories": sorted(self.categories),
            "pharmacies": sorted(self.pharmacies),
        }


@dataclass(frozen=True)
class FilterSpecification:
    """What subset of facts a request covers and which numeric constraints apply."""

    period: Period
    comparison_period: Optional[Period] = None
    include: IdentifierSets = field(default_factory=IdentifierSets)
    exclude: IdentifierSets = field(default_factory=IdentifierSets)
    ranges: Mapping[str, NumericRange] = field(default_factory=dict)
    tva_rates: FrozenSet[float] = frozenset()
    reimbursement: ReimbursementStatus = ReimbursementStatus.ALL
    generic_status: GenericStatus = GenericStatus.ALL
    pharmacy_scope: FrozenSet[str] = frozenset()

    def with_identifiers(self, include: IdentifierSets, exclude: IdentifierSets) -> FilterSpecification:
        return replace(self, include=include, exclude=exclude)

    def normalized(self) -> Dict[str, Any]:
        """JSON-ready, order-independent view used for cache keys."""
        return {
            "period": self.period.to_dict(),
            "comparison_period": self.comparison_period.to_dict() if self.comparison_period else None,
            "include": self.include.to_dict(),
            "exclude": self.exclude.to_dict(),
            "ranges": {
                name: rng.to_dict()
                for name, rng in sorted(self.ranges.items())
                if not rng.is_empty
            },
            "tva_rates": sorted(self.tva_rates),
            "reimbursement": self.reimbursement.value,
            "generic_status": self.generic_status.value,
            "pharmacy_scope": sorted(self.pharmacy_scope),
        }
