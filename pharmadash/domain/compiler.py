"""Compile a FilterSpecification into an ordered predicate."""

from __future__ import annotations

from typing import List

from pharmadash.domain.catalog import (
    GENERIC_STATUS_VALUES,
    HIERARCHY_LEVELS,
    RANGE_FIELDS,
    SUB_ENTITY_FIELDS,
    FactField,
    GenericStatus,
    ReimbursementStatus,
)
from pharmadash.domain.errors import ValidationError
from pharmadash.domain.filters import FilterSpecification
from pharmadash.domain.predicates import (
    CompiledPredicate,
    FlagFragment,
    FragmentRole,
    MembershipFragment,
    PredicateFragment,
    RangeFragment,
)


class QueryCompiler:
    """
    Deterministic FilterSpecification -> CompiledPredicate translation.

    Fragment order is fixed: pharmacy scope, pharmacy include, product include,
    pharmacy exclude, product exclude, ranges (allow-list order), TVA rates,
    reimbursement, generic status. Values inside a fragment are sorted, so the
    same specification always compiles to the same predicate.

    Laboratory and category sets must be resolved to product codes before
    compiling; here they only contribute to the merged product universe.
    """

    def compile(self, spec: FilterSpecification) -> CompiledPredicate:
        self.validate(spec)

        fragments: List[PredicateFragment] = []

        if spec.pharmacy_scope:
            fragments.append(
                MembershipFragment(
                    source="pharmacy_scope",
                    role=FragmentRole.SCOPE,
                    field=FactField.PHARMACY_ID,
                    values=tuple(sorted(spec.pharmacy_scope)),
                )
            )

        if spec.include.pharmacies:
            fragments.append(
                MembershipFragment(
                    source="include_pharmacies",
                    role=FragmentRole.SCOPE,
                    field=FactField.PHARMACY_ID,
                    values=tuple(sorted(spec.include.pharmacies)),
                )
            )

        included_products = spec.include.product_universe
        if included_products:
            fragments.append(
                MembershipFragment(
                    source="include_products",
                    role=FragmentRole.SELECTION,
                    field=FactField.PRODUCT_CODE,
                    values=tuple(sorted(included_products)),
                )
            )

        if spec.exclude.pharmacies:
            fragments.append(
                MembershipFragment(
                    source="exclude_pharmacies",
                    role=FragmentRole.EXCLUSION,
                    field=FactField.PHARMACY_ID,
                    values=tuple(sorted(spec.exclude.pharmacies)),
                    negated=True,
                )
            )

        excluded_products = spec.exclude.product_universe
        if excluded_products:
            fragments.append(
                MembershipFragment(
                    source="exclude_products",
                    role=FragmentRole.EXCLUSION,
                    field=FactField.PRODUCT_CODE,
                    values=tuple(sorted(excluded_products)),
                    negated=True,
                )
            )

        for name, field in RANGE_FIELDS.items():
            rng = spec.ranges.get(name)
            if rng is None or rng.is_empty:
                continue
            fragments.append(
                RangeFragment(
                    source=f"range_{name}",
                    role=FragmentRole.SELECTION,
                    field=field,
                    minimum=rng.minimum,
                    maximum=rng.maximum,
                )
            )

        if spec.tva_rates:
            fragments.append(
                MembershipFragment(
                    source="tva_rates",
                    role=FragmentRole.SELECTION,
                    field=FactField.TVA_RATE,
                    values=tuple(sorted(float(r) for r in spec.tva_rates)),
                )
            )

        if spec.reimbursement is not ReimbursementStatus.ALL:
            fragments.append(
                FlagFragment(
                    source="reimbursement",
                    role=FragmentRole.SELECTION,
                    field=FactField.IS_REIMBURSABLE,
                    value=spec.reimbursement is ReimbursementStatus.REIMBURSED,
                )
            )

        if spec.generic_status is not GenericStatus.ALL:
            fragments.append(
                MembershipFragment(
                    source="generic_status",
                    role=FragmentRole.SELECTION,
                    field=FactField.GENERIC_STATUS,
                    values=GENERIC_STATUS_VALUES[spec.generic_status],
                )
            )

        return CompiledPredicate.of(fragments)

    @staticmethod
    def validate(spec: FilterSpecification) -> None:
        """Reject unknown or inverted ranges. Pure, so it can run before any I/O."""
        for name, rng in spec.ranges.items():
            if name not in RANGE_FIELDS:
                raise ValidationError(f"Unknown range filter: {name}")
            if (
                rng.minimum is not None
                and rng.maximum is not None
                and rng.minimum > rng.maximum
            ):
                raise ValidationError(
                    f"Range filter {name}: min ({rng.minimum}) is greater than max ({rng.maximum})"
                )

    @staticmethod
    def hierarchy_field(level: str) -> FactField:
        try:
            return HIERARCHY_LEVELS[level]
        except KeyError:
            raise ValidationError(f"Unknown hierarchy level: {level}") from None

    @staticmethod
    def sub_entity_field(name: str) -> FactField:
        try:
            return SUB_ENTITY_FIELDS[name]
        except KeyError:
            raise ValidationError(f"Unknown sub-entity: {name}") from None
