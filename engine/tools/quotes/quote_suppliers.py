"""
Supplier registry reconciliation.

After a quote is analyzed its supplier is matched against the registry by
case-insensitive name. A known supplier only gets missing contact fields
filled; an unknown one is created. Failures here never fail the analysis.
"""

from typing import Any, Dict, Optional

from utils.core.log import get_logger
from utils.db.quote_store import create_supplier, find_supplier_by_name, update_supplier
from tools.quotes.quote_models import ExtractedQuote


# supplier column -> ExtractedQuote.supplier attribute
CONTACT_FIELDS = {
    "contact_email": "email",
    "contact_phone": "phone",
    "contact_person": "contact_person",
}


def reconcile_supplier(extracted: ExtractedQuote) -> Optional[Dict[str, Any]]:
    """
    Create or enrich the registry entry for the quote's supplier.

    Existing non-empty contact fields are never overwritten. Returns the
    supplier row, or None when there is no name or the registry failed.
    """
    logger = get_logger()
    info = extracted.supplier
    name = (info.name or "").strip()
    if not name:
        logger.debug("No supplier name extracted; skipping registry update")
        return None

    try:
        existing = find_supplier_by_name(name)
        if existing:
            updates = {
                column: getattr(info, attr)
                for column, attr in CONTACT_FIELDS.items()
                if not existing.get(column) and getattr(info, attr)
            }
            if not updates:
                return existing
            logger.info(f"Filling {sorted(updates)} for supplier '{existing.get('name')}'")
            return update_supplier(existing["id"], updates) or existing

        fields = {
            "name": name,
            "org_number": info.org_number,
            "category_tags": [],
        }
        fields.update(
            {column: getattr(info, attr) for column, attr in CONTACT_FIELDS.items()}
        )
        created = create_supplier(fields)
        logger.info(f"Registered supplier '{name}'")
        return created
    except Exception as e:
        logger.error(f"Supplier reconciliation failed for '{name}': {e}")
        return None
