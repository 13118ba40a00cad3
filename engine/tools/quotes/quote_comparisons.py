"""
Comparison persistence: one stored comparison per category.

Saving replaces whatever the category had (specification, quote ids and
result). Reading re-applies the ranking rules so comparisons stored before
scope adjustment existed still come back ordered.
"""

from typing import Any, Dict, List, Optional, Union

from utils.core.log import get_logger
from utils.db.quote_store import (
    delete_comparison as _delete_comparison_row,
    get_comparison as _get_comparison_row,
    upsert_comparison,
)
from tools.quotes.quote_models import ComparisonResult
from tools.quotes.quote_compare import enforce_ranking


def _result_dict(result: Union[ComparisonResult, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(result, ComparisonResult):
        return result.model_dump(mode="json")
    return dict(result)


def save_comparison(
    category_id: str,
    specification_id: Optional[str],
    quote_ids: List[str],
    result: Union[ComparisonResult, Dict[str, Any]],
) -> Dict[str, Any]:
    """Upsert the category's comparison; the previous one is replaced."""
    if not category_id:
        raise ValueError("category_id is required")
    if not quote_ids:
        raise ValueError("quote_ids is required")

    row = upsert_comparison(
        str(category_id),
        specification_id or None,
        [str(q) for q in quote_ids],
        _result_dict(result),
    )
    get_logger().info(
        f"Saved comparison for category {category_id} ({len(quote_ids)} quotes)"
    )
    return row


def get_comparison(category_id: str) -> Optional[Dict[str, Any]]:
    """The category's stored comparison with its ranking normalized, or None."""
    row = _get_comparison_row(str(category_id))
    if row is None:
        return None

    stored = row.get("result")
    if isinstance(stored, dict) and stored:
        result = ComparisonResult.model_validate(stored)
        enforce_ranking(result)
        row["result"] = result.model_dump(mode="json")
    return row


def delete_comparison(category_id: str) -> bool:
    """Delete the category's comparison. Deleting a missing one is fine."""
    removed = _delete_comparison_row(str(category_id))
    if removed:
        get_logger().info(f"Deleted comparison for category {category_id}")
    else:
        get_logger().debug(f"No comparison to delete for category {category_id}")
    return removed
