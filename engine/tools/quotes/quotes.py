"""
Entry points of the quote tools, called by the API layer.

Each *_main binds a request-scoped logger, builds the LLM provider for the
request and returns a plain dict ({"status": ..., **payload}). QuoteToolError
subclasses propagate; the API turns them into error envelopes.
"""

from typing import Any, Dict, List, Optional

from utils.core.log import get_logger, scope_tool_logger, set_logger
from utils.core.errors import ComparisonFailed, NotFound
from utils.llm.LLM import get_provider
from utils.storage.bucket import download_bytes
from utils.document.doc import extract_document_text
from utils.db.quote_store import get_category, get_quotes
from tools.quotes.quote_extract import normalize_quote_text
from tools.quotes.quote_batch import analyze_batch
from tools.quotes.quote_compare import build_comparison_input, compare_quotes
from tools.quotes.quote_comparisons import (
    delete_comparison,
    get_comparison,
    save_comparison,
)

UNKNOWN_PROJECT = "Okänt projekt"


def _bind_logger(scope_id, tool_name, remote_ip=None, request_method=None, user_name=None):
    set_logger(
        scope_tool_logger(scope_id or "quotes", tool_name),
        tool_name=f"{tool_name}_main",
        scope_id=scope_id or "quotes",
        ip_address=remote_ip or "no_ip",
        request_type=request_method or "N/A",
        user_name=user_name or "",
    )
    return get_logger()


def normalize_one_main(
    *,
    text: str,
    scope_id: str | None = None,
    remote_ip: str | None = None,
    request_method: str | None = None,
    user_name: str | None = None,
) -> Dict[str, Any]:
    """Normalize a single quote text without touching the store."""
    logger = _bind_logger(scope_id, "quote_analyze", remote_ip, request_method, user_name)
    logger.info(f"Analyzing quote text ({len(text or '')} chars)")

    quote = normalize_quote_text(text, provider=get_provider())
    return {"status": "done", "analysis": quote.model_dump(mode="json")}


def analyze_batch_main(
    *,
    quote_ids: List[str],
    reanalyze: bool = False,
    scope_id: str | None = None,
    remote_ip: str | None = None,
    request_method: str | None = None,
    user_name: str | None = None,
) -> Dict[str, Any]:
    logger = _bind_logger(scope_id or "batch", "quote_batch", remote_ip, request_method, user_name)
    logger.info(f"Batch analysis requested for {len(quote_ids)} quote(s)")

    result = analyze_batch(quote_ids, reanalyze=reanalyze, provider=get_provider())
    return {"status": "done", **result.to_payload()}


def compare_main(
    *,
    category_id: str,
    quote_ids: List[str],
    specification_text: str | None = None,
    specification_id: str | None = None,
    remote_ip: str | None = None,
    request_method: str | None = None,
    user_name: str | None = None,
) -> Dict[str, Any]:
    """
    Compare the given quotes of a category and store the result.

    A failed save is logged only; the computed comparison is still returned
    (``id`` is None then).
    """
    logger = _bind_logger(category_id, "quote_compare", remote_ip, request_method, user_name)

    if not quote_ids or len(set(quote_ids)) < 2:
        raise ComparisonFailed("At least two quotes are required for comparison", http_status=400)

    category = get_category(category_id)
    if category is None:
        raise NotFound(f"Category not found: {category_id}")

    rows = get_quotes(quote_ids)
    if len(rows) < len(set(quote_ids)):
        logger.warning(f"{len(set(quote_ids)) - len(rows)} requested quote(s) not found")

    result = compare_quotes(
        category.get("project_name") or UNKNOWN_PROJECT,
        category.get("name") or "",
        build_comparison_input(rows),
        specification_text,
        provider=get_provider(),
    )

    saved: Optional[Dict[str, Any]] = None
    try:
        saved = save_comparison(
            category_id, specification_id, [str(r["id"]) for r in rows], result
        )
    except Exception as e:
        logger.error(f"Error saving comparison for category {category_id}: {e}")

    return {
        "status": "done",
        "id": saved.get("id") if saved else None,
        **result.model_dump(mode="json"),
    }


def comparisons_main(
    *,
    category_id: str,
    request_method: str | None = None,
    specification_id: str | None = None,
    quote_ids: List[str] | None = None,
    result: Dict[str, Any] | None = None,
    remote_ip: str | None = None,
    user_name: str | None = None,
) -> Dict[str, Any]:
    """GET returns, POST replaces and DELETE removes the category's comparison."""
    _bind_logger(category_id, "comparisons", remote_ip, request_method, user_name)

    if request_method == "GET":
        return {"status": "done", "comparison": get_comparison(category_id)}

    if request_method == "POST":
        row = save_comparison(category_id, specification_id, quote_ids or [], result or {})
        return {"status": "done", "comparison": row}

    if request_method == "DELETE":
        deleted = delete_comparison(category_id)
        return {"status": "done", "success": True, "deleted": deleted}

    return {"status": "error", "error": f"Unsupported request method: {request_method}"}


def process_file_main(
    *,
    file_path: str,
    file_name: str,
    remote_ip: str | None = None,
    request_method: str | None = None,
    user_name: str | None = None,
) -> Dict[str, Any]:
    """Download a stored document and return its extracted text."""
    logger = _bind_logger("files", "file_process", remote_ip, request_method, user_name)

    try:
        provider = get_provider()
    except EnvironmentError as e:
        logger.warning(f"No LLM provider configured, OCR fallback disabled: {e}")
        provider = None

    data = download_bytes(file_path)
    text = extract_document_text(data, file_name, provider=provider)
    logger.info(f"Extracted {len(text)} chars from {file_name}")
    return {
        "status": "done",
        "fileName": file_name,
        "filePath": file_path,
        "extractedText": text,
    }
