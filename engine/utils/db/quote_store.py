"""
Quote store for the quote engine.

Relational primitives used by the quote tools. Works with both PostgreSQL and
the mock in-memory backend.
schema
- quotes: one uploaded supplier quote (status, extracted text, analysed fields)
- quote_items: line items of a quote, fully replaced on every analysis
- suppliers: deduplicated by case-insensitive name
- comparisons: at most one row per category (upsert keyed on category_id)
- quote_categories / projects: read-only here, for comparison labels

Every function is a single statement or a single transaction. Nothing here
spans tables; callers tolerate a quote updated before its items are replaced.
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from psycopg2.extras import Json

from utils.db.connection import get_db_connection, DB_TYPE, _mock_db
from utils.core.log import get_logger

QUOTE_UPDATE_COLUMNS = (
    "supplier_id",
    "supplier_name",
    "extracted_text",
    "status",
    "quote_number",
    "quote_date",
    "valid_until",
    "contact_person",
    "contact_email",
    "contact_phone",
    "total_amount",
    "currency",
    "vat_included",
    "payment_terms",
    "delivery_terms",
    "warranty_period",
    "ai_summary",
    "ai_analysis",
)

ITEM_COLUMNS = (
    "position",
    "article_number",
    "description",
    "quantity",
    "unit",
    "unit_price",
    "discount_percent",
    "total",
    "item_type",
    "category",
    "specifications",
    "sort_order",
)

SUPPLIER_COLUMNS = (
    "name",
    "org_number",
    "category_tags",
    "contact_email",
    "contact_phone",
    "contact_person",
    "address",
    "city",
    "notes",
    "rating",
)

_JSON_COLUMNS = {"ai_analysis", "specifications", "result"}


def _generate_id() -> str:
    """Generate a UUID."""
    return str(uuid.uuid4())


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _adapt(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS and value is not None:
        return Json(value)
    return value


def _pick(fields: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    allowed = set(allowed)
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown column(s): {sorted(unknown)}")
    return dict(fields)


def _pg(query: str, params: tuple = (), *, fetch: Optional[str] = None):
    """
    Run one statement in its own transaction.

    fetch: None (rowcount), "one" (dict or None) or "all" (list of dicts).
    """
    log = get_logger()
    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            cur.execute(query, params)
            if fetch == "one":
                row = cur.fetchone()
                result = dict(row) if row else None
            elif fetch == "all":
                result = [dict(r) for r in cur.fetchall()]
            else:
                result = cur.rowcount
        conn.commit()
        return result
    except Exception as e:
        conn.rollback()
        log.error(f"Query failed: {e}")
        raise
    finally:
        conn.close()


# Quotes
def create_quote(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a quote row. Used by upload flows and fixtures."""
    allowed = QUOTE_UPDATE_COLUMNS + ("id", "category_id", "file_path", "file_name")
    fields = _pick(fields, allowed)
    fields.setdefault("status", "pending")
    now = _utcnow_naive()

    if DB_TYPE == "postgres":
        cols = list(fields)
        query = (
            f"INSERT INTO quotes ({', '.join(cols)}) "
            f"VALUES ({', '.join(['%s'] * len(cols))}) RETURNING *"
        )
        return _pg(query, tuple(_adapt(c, fields[c]) for c in cols), fetch="one")

    row = {c: None for c in allowed}
    row.update(currency="SEK", vat_included=False)
    row.update(fields)
    row["id"] = str(fields.get("id") or _generate_id())
    row["created_at"] = now
    row["updated_at"] = now
    _mock_db["quotes"][row["id"]] = row
    return copy.deepcopy(row)


def get_quote(quote_id: str) -> Optional[Dict[str, Any]]:
    if DB_TYPE == "postgres":
        return _pg("SELECT * FROM quotes WHERE id::text = %s", (str(quote_id),), fetch="one")
    row = _mock_db["quotes"].get(str(quote_id))
    return copy.deepcopy(row) if row else None


def get_quotes(quote_ids: List[str], status: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Fetch quotes by id, optionally restricted to one status.

    Unknown ids (and ids not matching *status*) are silently absent. The
    result follows the order of *quote_ids*, each id at most once.
    """
    ids = list(dict.fromkeys(str(q) for q in quote_ids if q))
    if not ids:
        return []

    if DB_TYPE == "postgres":
        query = "SELECT * FROM quotes WHERE id::text = ANY(%s)"
        params: tuple = (ids,)
        if status:
            query += " AND status = %s"
            params = (ids, status)
        rows = _pg(query, params, fetch="all")
        by_id = {str(r["id"]): r for r in rows}
    else:
        by_id = {
            qid: copy.deepcopy(row)
            for qid, row in _mock_db["quotes"].items()
            if qid in ids and (status is None or row.get("status") == status)
        }
    return [by_id[i] for i in ids if i in by_id]


def update_quote(quote_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Set the given columns on a quote and refresh ``updated_at``."""
    fields = _pick(fields, QUOTE_UPDATE_COLUMNS)
    now = _utcnow_naive()

    if DB_TYPE == "postgres":
        cols = list(fields)
        assignments = ", ".join(f"{c} = %s" for c in cols)
        query = (
            f"UPDATE quotes SET {assignments}{', ' if cols else ''}updated_at = %s "
            "WHERE id::text = %s RETURNING *"
        )
        params = tuple(_adapt(c, fields[c]) for c in cols) + (now, str(quote_id))
        return _pg(query, params, fetch="one")

    row = _mock_db["quotes"].get(str(quote_id))
    if row is None:
        return None
    row.update(copy.deepcopy(fields))
    row["updated_at"] = now
    return copy.deepcopy(row)


def update_quote_text(quote_id: str, text: str) -> None:
    update_quote(quote_id, {"extracted_text": text})


def replace_quote_items(quote_id: str, items: List[Dict[str, Any]]) -> int:
    """
    Delete every line item of the quote, then insert *items*.

    Runs as one transaction on PostgreSQL. Each item gets ``sort_order`` from
    its position in *items* unless it already carries one.
    """
    log = get_logger()
    rows = []
    for idx, item in enumerate(items):
        row = _pick(item, ITEM_COLUMNS)
        row.setdefault("sort_order", idx)
        rows.append(row)

    if DB_TYPE == "postgres":
        conn = get_db_connection()
        try:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM quote_items WHERE quote_id::text = %s", (str(quote_id),))
                removed = cur.rowcount
                if rows:
                    cur.executemany(
                        f"""
                        INSERT INTO quote_items (id, quote_id, {', '.join(ITEM_COLUMNS)})
                        VALUES (%s, %s, {', '.join(['%s'] * len(ITEM_COLUMNS))})
                        """,
                        [
                            (_generate_id(), str(quote_id))
                            + tuple(_adapt(c, r.get(c)) for c in ITEM_COLUMNS)
                            for r in rows
                        ],
                    )
            conn.commit()
            log.debug(f"Replaced items for quote {quote_id}: -{removed} +{len(rows)}")
            return len(rows)
        except Exception as e:
            conn.rollback()
            log.error(f"Failed to replace items for quote {quote_id}: {e}")
            raise
        finally:
            conn.close()

    table = _mock_db["quote_items"]
    for item_id in [k for k, v in table.items() if v["quote_id"] == str(quote_id)]:
        del table[item_id]
    now = _utcnow_naive()
    for r in rows:
        item_id = _generate_id()
        stored = {c: None for c in ITEM_COLUMNS}
        stored.update(copy.deepcopy(r))
        stored.update(id=item_id, quote_id=str(quote_id), created_at=now)
        table[item_id] = stored
    return len(rows)


def get_quote_items(quote_id: str) -> List[Dict[str, Any]]:
    if DB_TYPE == "postgres":
        return _pg(
            "SELECT * FROM quote_items WHERE quote_id::text = %s ORDER BY sort_order",
            (str(quote_id),),
            fetch="all",
        )
    rows = [
        copy.deepcopy(r)
        for r in _mock_db["quote_items"].values()
        if r["quote_id"] == str(quote_id)
    ]
    return sorted(rows, key=lambda r: r.get("sort_order") or 0)


# Suppliers
def find_supplier_by_name(name: str) -> Optional[Dict[str, Any]]:
    """Case-insensitive exact match on the supplier name."""
    name = (name or "").strip()
    if not name:
        return None

    if DB_TYPE == "postgres":
        return _pg(
            "SELECT * FROM suppliers WHERE lower(name) = lower(%s) ORDER BY created_at LIMIT 1",
            (name,),
            fetch="one",
        )
    key = name.casefold()
    for row in _mock_db["suppliers"].values():
        if (row.get("name") or "").strip().casefold() == key:
            return copy.deepcopy(row)
    return None


def create_supplier(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert a supplier; if one with the same name (any case) exists, return it.
    """
    fields = _pick(fields, SUPPLIER_COLUMNS)
    fields["name"] = (fields.get("name") or "").strip()
    if not fields["name"]:
        raise ValueError("Supplier name is required")
    fields.setdefault("category_tags", [])

    if DB_TYPE == "postgres":
        cols = list(fields)
        query = (
            f"INSERT INTO suppliers ({', '.join(cols)}) "
            f"VALUES ({', '.join(['%s'] * len(cols))}) "
            "ON CONFLICT ((lower(name))) DO NOTHING RETURNING *"
        )
        created = _pg(query, tuple(fields[c] for c in cols), fetch="one")
        return created or find_supplier_by_name(fields["name"])

    existing = find_supplier_by_name(fields["name"])
    if existing:
        return existing
    now = _utcnow_naive()
    row = {c: None for c in SUPPLIER_COLUMNS}
    row.update(copy.deepcopy(fields))
    row.update(id=_generate_id(), created_at=now, updated_at=now)
    _mock_db["suppliers"][row["id"]] = row
    return copy.deepcopy(row)


def update_supplier(supplier_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    fields = _pick(fields, SUPPLIER_COLUMNS)
    if not fields:
        return None
    now = _utcnow_naive()

    if DB_TYPE == "postgres":
        cols = list(fields)
        assignments = ", ".join(f"{c} = %s" for c in cols)
        query = f"UPDATE suppliers SET {assignments}, updated_at = %s WHERE id::text = %s RETURNING *"
        return _pg(query, tuple(fields[c] for c in cols) + (now, str(supplier_id)), fetch="one")

    row = _mock_db["suppliers"].get(str(supplier_id))
    if row is None:
        return None
    row.update(copy.deepcopy(fields))
    row["updated_at"] = now
    return copy.deepcopy(row)


# Categories
def get_category(category_id: str) -> Optional[Dict[str, Any]]:
    """Category row plus ``project_name`` (None when the project is gone)."""
    if DB_TYPE == "postgres":
        return _pg(
            """
            SELECT c.*, p.name AS project_name
            FROM quote_categories c
            LEFT JOIN projects p ON p.id = c.project_id
            WHERE c.id::text = %s
            """,
            (str(category_id),),
            fetch="one",
        )
    row = _mock_db["quote_categories"].get(str(category_id))
    if row is None:
        return None
    row = copy.deepcopy(row)
    project = _mock_db["projects"].get(str(row.get("project_id")))
    row["project_name"] = project.get("name") if project else None
    return row


# Comparisons
def upsert_comparison(
    category_id: str,
    specification_id: Optional[str],
    quote_ids: List[str],
    result: Dict[str, Any],
) -> Dict[str, Any]:
    """Insert or replace the single comparison of a category. Last writer wins."""
    now = _utcnow_naive()
    quote_ids = [str(q) for q in quote_ids]

    if DB_TYPE == "postgres":
        return _pg(
            """
            INSERT INTO comparisons (id, category_id, specification_id, quote_ids, result, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (category_id) DO UPDATE SET
                specification_id = EXCLUDED.specification_id,
                quote_ids = EXCLUDED.quote_ids,
                result = EXCLUDED.result,
                updated_at = EXCLUDED.updated_at
            RETURNING *
            """,
            (
                _generate_id(),
                str(category_id),
                specification_id,
                quote_ids,
                Json(result),
                now,
                now,
            ),
            fetch="one",
        )

    table = _mock_db["comparisons"]
    existing = table.get(str(category_id))
    row = {
        "id": existing["id"] if existing else _generate_id(),
        "category_id": str(category_id),
        "specification_id": specification_id,
        "quote_ids": quote_ids,
        "result": copy.deepcopy(result),
        "created_at": existing["created_at"] if existing else now,
        "updated_at": now,
    }
    # keyed on category: at most one row per category by construction
    table[str(category_id)] = row
    return copy.deepcopy(row)


def get_comparison(category_id: str) -> Optional[Dict[str, Any]]:
    if DB_TYPE == "postgres":
        return _pg(
            "SELECT * FROM comparisons WHERE category_id::text = %s",
            (str(category_id),),
            fetch="one",
        )
    row = _mock_db["comparisons"].get(str(category_id))
    return copy.deepcopy(row) if row else None


def delete_comparison(category_id: str) -> bool:
    """Remove the category's comparison. Returns False when there was none."""
    if DB_TYPE == "postgres":
        removed = _pg(
            "DELETE FROM comparisons WHERE category_id::text = %s",
            (str(category_id),),
        )
        return bool(removed)
    return _mock_db["comparisons"].pop(str(category_id), None) is not None
