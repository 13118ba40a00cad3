"""
Batch quote analysis.

Runs the normalizer over a list of stored quotes, one at a time. A failing
quote is recorded in the result and the batch moves on; nothing raised by a
single quote escapes analyze_batch.

Per quote:
    1. recover extracted_text from the stored file when it is missing
    2. normalize the text with the LLM
    3. write the analysed fields and status=analyzed onto the quote
    4. replace all line items (delete then insert, original order kept)
    5. reconcile the supplier registry (best-effort)
"""

from typing import Any, Dict, List, Optional

from utils.core.log import get_logger
from utils.core.errors import describe_error
from utils.llm.LLM import BaseLLMProvider
from utils.storage.bucket import download_bytes
from utils.document.doc import extract_document_text
from utils.db.quote_store import (
    get_quotes,
    replace_quote_items,
    update_quote,
    update_quote_text,
)
from tools.quotes.quote_models import BatchResult, ExtractedQuote, to_iso_date
from tools.quotes.quote_extract import normalize_quote_text
from tools.quotes.quote_suppliers import reconcile_supplier


def _supplier_label(row: Dict[str, Any]) -> str:
    return row.get("supplier_name") or row.get("file_name") or str(row.get("id"))


def quote_record_fields(quote: ExtractedQuote, row: Dict[str, Any]) -> Dict[str, Any]:
    """Columns written onto the quote row after a successful analysis."""
    name = quote.supplier.name or row.get("supplier_name") or None
    return {
        "supplier_name": name,
        "quote_number": quote.quote_info.quote_number,
        "quote_date": to_iso_date(quote.quote_info.date),
        "valid_until": to_iso_date(quote.quote_info.valid_until),
        "contact_person": quote.supplier.contact_person,
        "contact_email": quote.supplier.email,
        "contact_phone": quote.supplier.phone,
        "total_amount": quote.totals.total,
        "payment_terms": quote.terms.payment,
        "delivery_terms": quote.terms.delivery,
        "warranty_period": quote.terms.warranty,
        "ai_summary": f"{name or 'Okänd leverantör'} - {len(quote.items)} artiklar",
        "ai_analysis": quote.model_dump(mode="json"),
        "vat_included": False,
        "status": "analyzed",
    }


def quote_item_rows(quote: ExtractedQuote) -> List[Dict[str, Any]]:
    return [
        {
            "position": item.position,
            "article_number": item.article_number,
            "description": item.description,
            "quantity": item.quantity,
            "unit": item.unit,
            "unit_price": item.unit_price,
            "discount_percent": item.discount_percent,
            "total": item.amount(),
            "item_type": item.type,
            "category": item.category,
            "specifications": item.specifications.model_dump(mode="json", exclude_none=True),
            "sort_order": idx,
        }
        for idx, item in enumerate(quote.items)
    ]


def recover_quote_text(row: Dict[str, Any], *, provider: BaseLLMProvider) -> Optional[str]:
    """
    Re-extract and persist the text of a quote uploaded without it.

    Returns the text, or None when the file could not be fetched or parsed.
    """
    logger = get_logger()
    path = row.get("file_path")
    try:
        data = download_bytes(path)
        text = extract_document_text(data, row.get("file_name") or path, provider=provider)
    except Exception as e:
        logger.warning(f"Text recovery failed for quote {row.get('id')} ({path}): {describe_error(e)}")
        return None
    if not text or not text.strip():
        return None
    update_quote_text(row["id"], text)
    logger.info(f"Recovered {len(text)} chars of text for quote {row.get('id')}")
    return text


def analyze_quote_row(row: Dict[str, Any], text: str, *, provider: BaseLLMProvider) -> ExtractedQuote:
    """Normalize one quote and persist the result. Raises on failure."""
    logger = get_logger()
    quote_id = row["id"]

    quote = normalize_quote_text(text, provider=provider)
    update_quote(quote_id, quote_record_fields(quote, row))
    replace_quote_items(quote_id, quote_item_rows(quote))

    supplier = reconcile_supplier(quote)
    if supplier and supplier.get("id") and supplier.get("id") != row.get("supplier_id"):
        try:
            update_quote(quote_id, {"supplier_id": supplier["id"]})
        except Exception as e:
            logger.warning(f"Could not link quote {quote_id} to supplier: {describe_error(e)}")

    logger.info(
        f"Analyzed quote {quote_id}: {len(quote.items)} item(s), total={quote.totals.total}"
    )
    return quote


def analyze_batch(
    quote_ids: List[str],
    *,
    reanalyze: bool = False,
    provider: BaseLLMProvider,
) -> BatchResult:
    """
    Analyze every eligible quote in *quote_ids* sequentially.

    Without *reanalyze* only quotes in ``pending`` status are eligible; other
    ids are skipped without an error. With it every existing requested id is
    processed again.
    """
    logger = get_logger()
    result = BatchResult()

    rows = get_quotes(quote_ids, status=None if reanalyze else "pending")
    requested = len(set(str(q) for q in quote_ids if q))
    logger.info(
        f"Batch analysis: {len(rows)} eligible of {requested} requested (reanalyze={reanalyze})"
    )

    for row in rows:
        label = _supplier_label(row)
        text = row.get("extracted_text") or ""

        if not text.strip() and row.get("file_path"):
            text = recover_quote_text(row, provider=provider) or ""
            if not text.strip():
                result.failed += 1
                result.errors.append(f"{label}: could not extract text")
                continue

        if not text.strip():
            result.failed += 1
            result.errors.append(f"{label}: no extracted text available")
            continue

        try:
            analyze_quote_row(row, text, provider=provider)
            result.success += 1
        except Exception as e:
            reason = describe_error(e)
            logger.error(f"Analysis failed for quote {row.get('id')} ({label}): {reason}")
            result.failed += 1
            result.errors.append(f"{label}: {reason}")

    logger.info(f"Batch analysis done: {result.message}")
    return result
