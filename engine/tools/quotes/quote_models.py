"""
Pydantic models for supplier quotes and quote comparisons.

LLM output is untrusted, so every model here is lenient on input:
unknown keys are ignored, ``null`` sections become empty sections, amounts
written as strings ("12 500,50 kr") become floats and empty strings become
None. What comes out is always the canonical shape.

The hierarchy is:
    ExtractedQuote
    ├── SupplierInfo
    ├── QuoteInfo
    ├── Terms
    ├── LineItem (ordered)
    │   └── ItemSpecifications
    └── Totals

    ComparisonResult
    ├── ScopeAnalysis ── ScopeDifference
    ├── PriceComparison ── RankingEntry
    ├── SpecificationCompliance ── SupplierCompliance
    ├── DetailedComparison
    ├── ProsCons
    ├── Recommendation
    └── ClarifyingQuestion
"""

from __future__ import annotations

import re
import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ITEM_TYPES = ("product", "accessory", "service", "option")

_CURRENCY_RE = re.compile(r"(kronor|sek|kr\.?|:-|€|eur|\$|usd|%)", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")
_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%d.%m.%Y", "%Y%m%d", "%d-%m-%Y")


def to_number(value: Any) -> Optional[float]:
    """
    Coerce an LLM-provided amount to float.

    Accepts numbers and strings in Swedish or international notation
    ("12 500,50", "12.500,50", "12,500.50", "1 250 kr"). Returns None for
    empty or unparseable input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        f = float(value)
        return None if math.isnan(f) or math.isinf(f) else f
    if not isinstance(value, str):
        return None

    s = _CURRENCY_RE.sub("", value)
    s = re.sub(r"[\s\u00a0\u202f']", "", s).replace("\u2212", "-")
    if not s:
        return None

    if "," in s and "." in s:
        # the right-most separator is the decimal one
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif s.count(",") > 1:
        s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", ".")
    elif s.count(".") > 1:
        s = s.replace(".", "")

    if not _NUMBER_RE.match(s):
        return None
    return float(s)


def to_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    s = str(value).strip()
    return s or None


def to_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    out = []
    for v in value:
        s = to_text(v)
        if s:
            out.append(s)
    return out


def to_iso_date(value: Any) -> Optional[str]:
    """ISO date string for known date layouts, else None."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    s = to_text(value)
    if not s:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s[:10] if fmt == "%Y-%m-%d" else s, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _section(value: Any) -> Any:
    """``null`` or a non-object in place of a nested section means empty."""
    return value if isinstance(value, (dict, BaseModel)) else {}


def _list_of_objects(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (dict, BaseModel)):
        return [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [v for v in value if isinstance(v, (dict, BaseModel))]


class _LLMModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# Quote extraction
class SupplierInfo(_LLMModel):
    name: str = ""
    org_number: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return to_text(v) or ""

    @field_validator("org_number", "contact_person", "email", "phone", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v)


class QuoteInfo(_LLMModel):
    quote_number: Optional[str] = None
    date: Optional[str] = None
    valid_until: Optional[str] = None
    reference: Optional[str] = None
    project_name: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v)


class Terms(_LLMModel):
    payment: Optional[str] = None
    delivery: Optional[str] = None
    warranty: Optional[str] = None
    other_conditions: list[str] = Field(default_factory=list)

    @field_validator("payment", "delivery", "warranty", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v)

    @field_validator("other_conditions", mode="before")
    @classmethod
    def _list(cls, v):
        return to_text_list(v)


class ItemSpecifications(BaseModel):
    """Free-form technical attributes; unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    dimensions: Optional[str] = None
    color: Optional[str] = None
    pressure_class: Optional[str] = None
    other: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", "dimensions", "color", "pressure_class", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v)

    @field_validator("other", mode="before")
    @classmethod
    def _other(cls, v):
        return v if isinstance(v, dict) else {}


class LineItem(_LLMModel):
    """
    One priced row of a quote.

    ``type`` is the coarse tag (product, accessory, service, option);
    ``category`` is the free-form product category used for scope analysis
    (e.g. "radiatorer", "expansionskärl").
    """

    position: Optional[str] = None
    article_number: Optional[str] = None
    description: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[float] = None
    discount_percent: Optional[float] = None
    total: Optional[float] = None
    type: Optional[Literal["product", "accessory", "service", "option"]] = None
    category: Optional[str] = None
    specifications: ItemSpecifications = Field(default_factory=ItemSpecifications)

    @field_validator("position", "article_number", "unit", "category", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v)

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, v):
        return to_text(v) or ""

    @field_validator("quantity", "unit_price", "discount_percent", "total", mode="before")
    @classmethod
    def _number(cls, v):
        return to_number(v)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        s = (to_text(v) or "").lower()
        return s if s in ITEM_TYPES else None

    @field_validator("specifications", mode="before")
    @classmethod
    def _specs(cls, v):
        return _section(v)

    def amount(self) -> float:
        """Line total if given, else quantity * unit_price (missing operands count as 0)."""
        if self.total:
            return self.total
        return (self.quantity or 0.0) * (self.unit_price or 0.0)


class Totals(_LLMModel):
    subtotal: Optional[float] = None
    vat: Optional[float] = None
    total: Optional[float] = None
    total_incl_vat: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def _number(cls, v):
        return to_number(v)


class ExtractedQuote(_LLMModel):
    supplier: SupplierInfo = Field(default_factory=SupplierInfo)
    quote_info: QuoteInfo = Field(default_factory=QuoteInfo)
    terms: Terms = Field(default_factory=Terms)
    items: list[LineItem] = Field(default_factory=list)
    totals: Totals = Field(default_factory=Totals)
    included: list[str] = Field(default_factory=list)
    not_included: list[str] = Field(default_factory=list)
    options: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)

    @field_validator("supplier", "quote_info", "terms", "totals", mode="before")
    @classmethod
    def _sections(cls, v):
        return _section(v)

    @field_validator("included", "not_included", "options", "notes", mode="before")
    @classmethod
    def _lists(cls, v):
        return to_text_list(v)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, v):
        items = []
        for raw in _list_of_objects(v):
            if isinstance(raw, BaseModel):
                items.append(raw)
                continue
            raw = dict(raw)
            description = to_text(raw.get("description"))
            if not description:
                # keep priced rows that only carry an article number or position
                label = to_text(raw.get("article_number")) or to_text(raw.get("position"))
                priced = any(
                    to_number(raw.get(k)) for k in ("total", "unit_price", "quantity")
                )
                if not (label or priced):
                    continue
                description = label or "Artikel utan beskrivning"
            raw["description"] = description
            items.append(raw)
        return items

    def items_total(self) -> float:
        return sum(item.amount() for item in self.items)


# Comparison
class ScopeDifference(_LLMModel):
    supplier: str = ""
    extra_categories: list[str] = Field(default_factory=list)
    extra_value: Optional[float] = 0.0
    missing_categories: list[str] = Field(default_factory=list)

    @field_validator("supplier", mode="before")
    @classmethod
    def _supplier(cls, v):
        return to_text(v) or ""

    @field_validator("extra_categories", "missing_categories", mode="before")
    @classmethod
    def _lists(cls, v):
        return to_text_list(v)

    @field_validator("extra_value", mode="before")
    @classmethod
    def _number(cls, v):
        return to_number(v)


class ScopeAnalysis(_LLMModel):
    categories_found: list[str] = Field(default_factory=list)
    common_categories: list[str] = Field(default_factory=list)
    scope_differences: list[ScopeDifference] = Field(default_factory=list)
    warning: str = ""

    @field_validator("categories_found", "common_categories", mode="before")
    @classmethod
    def _lists(cls, v):
        return to_text_list(v)

    @field_validator("scope_differences", mode="before")
    @classmethod
    def _differences(cls, v):
        return _list_of_objects(v)

    @field_validator("warning", mode="before")
    @classmethod
    def _warning(cls, v):
        return to_text(v) or ""

    def is_empty(self) -> bool:
        return not (self.categories_found or self.common_categories or self.scope_differences)


class RankingEntry(_LLMModel):
    """
    One supplier in the price ranking.

    ``total`` is the single figure stored by comparisons made before scope
    adjustment existed; newer entries carry ``raw_total`` and ``adjusted_total``.
    """

    supplier: str = ""
    total: Optional[float] = None
    raw_total: Optional[float] = None
    adjusted_total: Optional[float] = None
    adjustment_details: Optional[str] = None
    difference_from_lowest: Optional[float] = None
    percent_difference: Optional[float] = None

    @field_validator("supplier", mode="before")
    @classmethod
    def _supplier(cls, v):
        return to_text(v) or ""

    @field_validator("adjustment_details", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v)

    @field_validator(
        "total",
        "raw_total",
        "adjusted_total",
        "difference_from_lowest",
        "percent_difference",
        mode="before",
    )
    @classmethod
    def _number(cls, v):
        return to_number(v)

    def effective_total(self) -> Optional[float]:
        """adjusted_total, then raw_total, then the legacy total."""
        for value in (self.adjusted_total, self.raw_total, self.total):
            if value is not None:
                return value
        return None


class PriceComparison(_LLMModel):
    ranking: list[RankingEntry] = Field(default_factory=list)
    price_notes: str = ""
    comparison_basis: Optional[str] = None

    @field_validator("ranking", mode="before")
    @classmethod
    def _ranking(cls, v):
        return _list_of_objects(v)

    @field_validator("price_notes", mode="before")
    @classmethod
    def _notes(cls, v):
        return to_text(v) or ""

    @field_validator("comparison_basis", mode="before")
    @classmethod
    def _basis(cls, v):
        return to_text(v)


class SupplierCompliance(_LLMModel):
    supplier: str = ""
    compliance_score: Optional[float] = None
    meets_requirements: list[str] = Field(default_factory=list)
    missing_or_deviating: list[str] = Field(default_factory=list)
    extras_included: list[str] = Field(default_factory=list)

    @field_validator("supplier", mode="before")
    @classmethod
    def _supplier(cls, v):
        return to_text(v) or ""

    @field_validator("compliance_score", mode="before")
    @classmethod
    def _score(cls, v):
        score = to_number(v)
        if score is None:
            return None
        return min(100.0, max(0.0, score))

    @field_validator("meets_requirements", "missing_or_deviating", "extras_included", mode="before")
    @classmethod
    def _lists(cls, v):
        return to_text_list(v)


class SpecificationCompliance(_LLMModel):
    per_supplier: list[SupplierCompliance] = Field(default_factory=list)

    @field_validator("per_supplier", mode="before")
    @classmethod
    def _per_supplier(cls, v):
        return _list_of_objects(v)


class DetailSection(_LLMModel):
    summary: str = ""
    differences: list[str] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, v):
        return to_text(v) or ""

    @field_validator("differences", mode="before")
    @classmethod
    def _lists(cls, v):
        return to_text_list(v)


class TermComparison(_LLMModel):
    comparison: str = ""

    @model_validator(mode="before")
    @classmethod
    def _plain_string(cls, v):
        # {"payment": "30 dagar netto"} is accepted as the comparison text
        if isinstance(v, str):
            return {"comparison": v}
        return _section(v)

    @field_validator("comparison", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v) or ""


class TermsComparison(_LLMModel):
    payment: TermComparison = Field(default_factory=TermComparison)
    delivery: TermComparison = Field(default_factory=TermComparison)
    warranty: TermComparison = Field(default_factory=TermComparison)


class DetailedComparison(_LLMModel):
    products: DetailSection = Field(default_factory=DetailSection)
    accessories: DetailSection = Field(default_factory=DetailSection)
    terms: TermsComparison = Field(default_factory=TermsComparison)

    @field_validator("products", "accessories", "terms", mode="before")
    @classmethod
    def _sections(cls, v):
        return _section(v)


class ProsCons(_LLMModel):
    supplier: str = ""
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)

    @field_validator("supplier", mode="before")
    @classmethod
    def _supplier(cls, v):
        return to_text(v) or ""

    @field_validator("pros", "cons", mode="before")
    @classmethod
    def _lists(cls, v):
        return to_text_list(v)


class Recommendation(_LLMModel):
    recommended_supplier: str = ""
    reasoning: str = ""
    caveats: list[str] = Field(default_factory=list)
    negotiation_points: list[str] = Field(default_factory=list)

    @field_validator("recommended_supplier", "reasoning", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v) or ""

    @field_validator("caveats", "negotiation_points", mode="before")
    @classmethod
    def _lists(cls, v):
        return to_text_list(v)


class ClarifyingQuestion(_LLMModel):
    supplier: str = ""
    question: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _text(cls, v):
        return to_text(v) or ""


class ComparisonResult(_LLMModel):
    summary: str = ""
    scope_analysis: Optional[ScopeAnalysis] = None
    price_comparison: PriceComparison = Field(default_factory=PriceComparison)
    specification_compliance: SpecificationCompliance = Field(
        default_factory=SpecificationCompliance
    )
    detailed_comparison: Optional[DetailedComparison] = None
    pros_cons: list[ProsCons] = Field(default_factory=list)
    recommendation: Recommendation = Field(default_factory=Recommendation)
    questions_to_clarify: list[ClarifyingQuestion] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, v):
        return to_text(v) or ""

    @field_validator("scope_analysis", "detailed_comparison", mode="before")
    @classmethod
    def _optional_sections(cls, v):
        return v if isinstance(v, (dict, BaseModel)) else None

    @field_validator("price_comparison", "specification_compliance", "recommendation", mode="before")
    @classmethod
    def _sections(cls, v):
        return _section(v)

    @field_validator("pros_cons", "questions_to_clarify", mode="before")
    @classmethod
    def _lists(cls, v):
        return _list_of_objects(v)


# Batch
class BatchResult(BaseModel):
    success: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def message(self) -> str:
        return f"{self.success} analyzed, {self.failed} failed"

    def to_payload(self) -> dict:
        return {**self.model_dump(), "message": self.message}
