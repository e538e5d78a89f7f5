"""Inbound JSON body shared by every analytics endpoint."""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pharmadash.domain.catalog import (
    FactType,
    GenericStatus,
    ReimbursementStatus,
    SegmentJoinMode,
)
from pharmadash.domain.errors import ValidationError
from pharmadash.domain.filters import (
    FilterSpecification,
    IdentifierSets,
    NumericRange,
    Period,
)


class DateRangeBody(BaseModel):
    start: date
    end: date


class RangeBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    minimum: Optional[float] = Field(default=None, alias="min")
    maximum: Optional[float] = Field(default=None, alias="max")


class AnalyticsRequest(BaseModel):
    """
    Filters, periods and options of an analytics call.

    Only the shape is checked here (pydantic, 422 on failure). Business rules
    such as ``start <= end`` or the period span cap are checked by
    ``to_specification`` and raise ``ValidationError`` (400).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date_range: DateRangeBody
    comparison_date_range: Optional[DateRangeBody] = None

    product_codes: List[str] = Field(default_factory=list)
    laboratory_codes: List[str] = Field(default_factory=list)
    category_codes: List[str] = Field(default_factory=list)
    pharmacy_ids: List[str] = Field(default_factory=list)

    excluded_product_codes: List[str] = Field(default_factory=list)
    excluded_laboratory_codes: List[str] = Field(default_factory=list)
    excluded_category_codes: List[str] = Field(default_factory=list)
    excluded_pharmacy_ids: List[str] = Field(default_factory=list)

    purchase_price_net_range: Optional[RangeBody] = None
    purchase_price_gross_range: Optional[RangeBody] = None
    sell_price_range: Optional[RangeBody] = None
    discount_range: Optional[RangeBody] = None
    margin_range: Optional[RangeBody] = None

    tva_rates: List[float] = Field(default_factory=list)
    reimbursement_status: ReimbursementStatus = ReimbursementStatus.ALL
    is_generic: GenericStatus = GenericStatus.ALL

    hierarchy_level: Optional[str] = None
    page: int = 1
    page_size: Optional[int] = None

    metrics: Optional[List[str]] = None
    fact_type: Optional[FactType] = None
    segment_join_mode: Optional[SegmentJoinMode] = None

    @field_validator(
        "product_codes",
        "laboratory_codes",
        "category_codes",
        "pharmacy_ids",
        "excluded_product_codes",
        "excluded_laboratory_codes",
        "excluded_category_codes",
        "excluded_pharmacy_ids",
        mode="before",
    )
    @classmethod
    def _identifiers_as_strings(cls, value):
        # Pharmacy ids and EAN codes often arrive as JSON numbers.
        if value is None:
            return []
        if isinstance(value, (str, int)):
            value = [value]
        return [str(v).strip() for v in value if v is not None]

    # ------------------------------------------------------------------

    def _ranges(self) -> Dict[str, NumericRange]:
        bodies = {
            "purchase_price_net": self.purchase_price_net_range,
            "purchase_price_gross": self.purchase_price_gross_range,
            "sell_price": self.sell_price_range,
            "discount": self.discount_range,
            "margin": self.margin_range,
        }
        return {
            name: NumericRange(body.minimum, body.maximum)
            for name, body in bodies.items()
            if body is not None
        }

    def to_specification(
        self,
        pharmacy_scope: Iterable[str] = (),
        max_period_days: int = 0,
    ) -> FilterSpecification:
        period = _period(self.date_range, "dateRange", max_period_days)
        comparison = (
            _period(self.comparison_date_range, "comparisonDateRange", max_period_days)
            if self.comparison_date_range is not None
            else None
        )
        return FilterSpecification(
            period=period,
            comparison_period=comparison,
            include=IdentifierSets.of(
                products=self.product_codes,
                laboratories=self.laboratory_codes,
                categories=self.category_codes,
                pharmacies=self.pharmacy_ids,
            ),
            exclude=IdentifierSets.of(
                products=self.excluded_product_codes,
                laboratories=self.excluded_laboratory_codes,
                categories=self.excluded_category_codes,
                pharmacies=self.excluded_pharmacy_ids,
            ),
            ranges=self._ranges(),
            tva_rates=frozenset(float(r) for r in self.tva_rates),
            reimbursement=self.reimbursement_status,
            generic_status=self.is_generic,
            pharmacy_scope=frozenset(str(p) for p in pharmacy_scope),
        )


def _period(body: DateRangeBody, label: str, max_days: int) -> Period:
    if body.start > body.end:
        raise ValidationError(
            f"{label}: start ({body.start.isoformat()}) must not be after end ({body.end.isoformat()})"
        )
    period = Period(body.start, body.end)
    # Distance between the bounds, so a full leap year stays under 365.
    span = (body.end - body.start).days
    if max_days and span > max_days:
        raise ValidationError(f"{label}: period spans {span} days, maximum is {max_days}")
    return period
