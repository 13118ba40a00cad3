"""
Scope-aware quote comparison.

Before the LLM sees the quotes, analyze_scope groups every quote's line
items by product category and works out which categories all quotes share.
A quote's adjusted total is its raw total minus the value of the categories
the others lack. That pre-analysis goes into the prompt, and it fills the
scope report and ranking if the LLM leaves them out.

The ranking is always re-derived in code: entries are ordered by effective
total (adjusted, then raw, then the legacy single total) and the differences
to the lowest entry are recomputed.

Usage:
    result = compare_quotes("Kv. Eken", "Radiatorer", quotes, spec_text, provider=provider)
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from utils.core.log import get_logger
from utils.core.errors import ComparisonFailed, describe_error
from utils.core.jsonval import parse_llm_json, JSONRepairError
from utils.llm.LLM import BaseLLMProvider
from utils.db.quote_store import get_quote_items
from tools.quotes.quote_models import (
    ComparisonResult,
    PriceComparison,
    RankingEntry,
    ScopeAnalysis,
    ScopeDifference,
    to_number,
)
from tools.quotes.prompts_quotes import get_comparison_prompt


UNCATEGORIZED = "övrigt"


def _analysis_of(quote: Dict[str, Any]) -> Dict[str, Any]:
    data = quote.get("ai_analysis") or quote.get("extracted_data") or {}
    return data if isinstance(data, dict) else {}


def _item_category(item: Dict[str, Any]) -> str:
    value = item.get("category")
    if isinstance(value, str) and value.strip():
        return value.strip().casefold()
    return UNCATEGORIZED


def _has_scope(categories: Dict[str, float]) -> bool:
    return any(c != UNCATEGORIZED for c in categories)


def _item_amount(item: Dict[str, Any]) -> float:
    total = to_number(item.get("total"))
    if total:
        return total
    return (to_number(item.get("quantity")) or 0.0) * (to_number(item.get("unit_price")) or 0.0)


def _raw_total(analysis: Dict[str, Any], items: List[Dict[str, Any]]) -> Optional[float]:
    totals = analysis.get("totals") if isinstance(analysis.get("totals"), dict) else {}
    total = to_number(totals.get("total"))
    if total is None:
        total = to_number(analysis.get("total"))
    if not total and items:
        total = sum(_item_amount(i) for i in items)
    return total


def analyze_scope(quotes: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deterministic scope analysis over the quotes' line item categories.

    A line's category is its product ``category``, else "övrigt". Quotes
    without line items, or whose items are all uncategorized, say nothing
    about their scope, so they neither shrink the common set nor get adjusted.

    Returns a JSON-ready dict:
        categories_found, common_categories, scopes_differ,
        per_supplier: [{supplier, raw_total, category_values,
                        extra_categories, missing_categories,
                        extra_value, adjusted_total}]
    """
    per_supplier = []
    for quote in quotes:
        analysis = _analysis_of(quote)
        items = [i for i in analysis.get("items") or [] if isinstance(i, dict)]
        values: Dict[str, float] = {}
        for item in items:
            category = _item_category(item)
            values[category] = values.get(category, 0.0) + _item_amount(item)
        per_supplier.append(
            {
                "supplier": quote.get("supplier_name") or "",
                "raw_total": _raw_total(analysis, items),
                "category_values": {k: round(v, 2) for k, v in values.items()},
            }
        )

    scoped = [set(s["category_values"]) for s in per_supplier if _has_scope(s["category_values"])]
    found = sorted(set().union(*scoped)) if scoped else []
    common = sorted(set.intersection(*scoped)) if scoped else []

    for entry in per_supplier:
        categories = entry["category_values"]
        if _has_scope(categories):
            extra = sorted(set(categories) - set(common))
            missing = sorted(set(found) - set(categories))
        else:
            extra, missing = [], []
        extra_value = round(sum(categories[c] for c in extra), 2)
        raw = entry["raw_total"]
        entry.update(
            extra_categories=extra,
            missing_categories=missing,
            extra_value=extra_value,
            adjusted_total=round(raw - extra_value, 2) if raw is not None else None,
        )

    return {
        "categories_found": found,
        "common_categories": common,
        "scopes_differ": any(
            e["extra_categories"] or e["missing_categories"] for e in per_supplier
        ),
        "per_supplier": per_supplier,
    }


def _scope_warning(scope: Dict[str, Any]) -> str:
    parts = []
    for entry in scope["per_supplier"]:
        if entry["extra_categories"]:
            parts.append(
                f"{entry['supplier']} innehåller även {', '.join(entry['extra_categories'])} "
                f"({entry['extra_value']:.0f} kr)"
            )
        if entry["missing_categories"]:
            parts.append(f"{entry['supplier']} saknar {', '.join(entry['missing_categories'])}")
    return (
        "Offerterna har olika omfattning och är inte direkt jämförbara: "
        + "; ".join(parts)
        + ". Jämför justerat pris."
    )


def scope_analysis_from(scope: Dict[str, Any]) -> ScopeAnalysis:
    return ScopeAnalysis(
        categories_found=scope["categories_found"],
        common_categories=scope["common_categories"],
        scope_differences=[
            ScopeDifference(
                supplier=e["supplier"],
                extra_categories=e["extra_categories"],
                extra_value=e["extra_value"],
                missing_categories=e["missing_categories"],
            )
            for e in scope["per_supplier"]
            if e["extra_categories"] or e["missing_categories"]
        ],
        warning=_scope_warning(scope) if scope["scopes_differ"] else "",
    )


def ranking_from(scope: Dict[str, Any]) -> List[RankingEntry]:
    ranking = []
    for e in scope["per_supplier"]:
        if e["extra_categories"]:
            details = f"Avdraget för {', '.join(e['extra_categories'])}: {e['extra_value']:.2f} kr"
        else:
            details = "Ingen justering"
        ranking.append(
            RankingEntry(
                supplier=e["supplier"],
                raw_total=e["raw_total"],
                adjusted_total=e["adjusted_total"],
                adjustment_details=details,
            )
        )
    return ranking


def enforce_ranking(
    result: ComparisonResult, raw_totals: Optional[Dict[str, Optional[float]]] = None
) -> ComparisonResult:
    """
    Order the price ranking by effective total and recompute the differences.

    Missing ``raw_total`` values are filled from *raw_totals* (supplier name,
    case-insensitive). Entries without any total go last with no differences.
    Works in place and returns *result*.
    """
    lookup = {(k or "").strip().casefold(): v for k, v in (raw_totals or {}).items()}
    ranking = result.price_comparison.ranking

    for entry in ranking:
        if entry.raw_total is None:
            known = lookup.get(entry.supplier.strip().casefold())
            if known is not None:
                entry.raw_total = known

    ranking.sort(key=lambda e: (e.effective_total() is None, e.effective_total() or 0.0))

    lowest = ranking[0].effective_total() if ranking else None
    for entry in ranking:
        value = entry.effective_total()
        if value is None or lowest is None:
            entry.difference_from_lowest = None
            entry.percent_difference = None
            continue
        diff = value - lowest
        entry.difference_from_lowest = round(diff, 2)
        entry.percent_difference = round(diff / lowest * 100, 1) if lowest else 0.0
    return result


def build_comparison_input(quote_rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Comparison payload for stored quotes: the stored analysis, or for quotes
    analysed before it was kept, the total, line items and terms columns.
    """
    quotes = []
    for row in quote_rows:
        analysis = row.get("ai_analysis")
        if not isinstance(analysis, dict) or not analysis:
            analysis = {
                "total": to_number(row.get("total_amount")),
                "items": [
                    {
                        "description": item.get("description"),
                        "quantity": to_number(item.get("quantity")),
                        "unit": item.get("unit"),
                        "unit_price": to_number(item.get("unit_price")),
                        "total": to_number(item.get("total")),
                        "type": item.get("item_type"),
                        "category": item.get("category"),
                    }
                    for item in get_quote_items(row["id"])
                ],
                "terms": {
                    "payment": row.get("payment_terms"),
                    "delivery": row.get("delivery_terms"),
                    "warranty": row.get("warranty_period"),
                },
            }
        quotes.append({"supplier_name": row.get("supplier_name") or "", "ai_analysis": analysis})
    return quotes


def compare_quotes(
    project_name: str,
    category_name: str,
    quotes: List[Dict[str, Any]],
    specification_text: Optional[str] = None,
    *,
    provider: BaseLLMProvider,
) -> ComparisonResult:
    """
    Compare two or more normalized quotes.

    Args:
        quotes: [{"supplier_name": str, "ai_analysis": ExtractedQuote-shaped dict}]
        specification_text: optional technical specification to score against

    Raises:
        ComparisonFailed: fewer than two quotes (http_status 400), LLM failure,
        or output that survives no stage of the repair ladder
    """
    logger = get_logger()
    if len(quotes) < 2:
        raise ComparisonFailed("At least two quotes are required for comparison", http_status=400)

    scope = analyze_scope(quotes)
    logger.debug(
        f"Scope pre-analysis: common={scope['common_categories']} differ={scope['scopes_differ']}"
    )

    prompt = get_comparison_prompt(
        project_name,
        category_name,
        quotes,
        {k: v for k, v in scope.items() if k != "scopes_differ"},
        specification_text or None,
    )
    try:
        response = provider.complete(prompt, caller="compare_quotes")
    except Exception as e:
        logger.error(f"Comparison LLM call failed: {e}")
        raise ComparisonFailed(f"AI comparison failed: {describe_error(e)}") from e

    try:
        data = parse_llm_json(response, label="quote_compare")
    except JSONRepairError as e:
        raise ComparisonFailed(
            "Could not parse the AI comparison as JSON", raw_excerpt=e.excerpt
        ) from e

    try:
        result = ComparisonResult.model_validate(data)
    except ValidationError as e:
        logger.error(f"Comparison JSON failed validation: {e}")
        raise ComparisonFailed(
            f"AI comparison does not match the expected format ({e.error_count()} error(s))",
            raw_excerpt=str(response)[:500],
        ) from e

    if result.scope_analysis is None or result.scope_analysis.is_empty():
        logger.warning("Comparison came back without a scope analysis; using the computed one")
        result.scope_analysis = scope_analysis_from(scope)
    elif scope["scopes_differ"] and not result.scope_analysis.warning:
        result.scope_analysis.warning = _scope_warning(scope)

    if not result.price_comparison.ranking:
        logger.warning("Comparison came back without a ranking; using computed adjusted totals")
        result.price_comparison = PriceComparison(
            ranking=ranking_from(scope),
            price_notes=result.price_comparison.price_notes,
            comparison_basis=result.price_comparison.comparison_basis
            or f"Gemensamma kategorier: {', '.join(scope['common_categories']) or '-'}",
        )

    enforce_ranking(result, {e["supplier"]: e["raw_total"] for e in scope["per_supplier"]})

    if not specification_text:
        result.specification_compliance.per_supplier = []

    logger.info(
        f"Compared {len(quotes)} quotes for '{category_name}'; "
        f"lowest: {result.price_comparison.ranking[0].supplier if result.price_comparison.ranking else '-'}"
    )
    return result
