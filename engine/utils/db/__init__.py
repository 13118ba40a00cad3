"""
Database utilities for the quote engine.

This module provides the database connection and the quote store primitives.
Supports both real PostgreSQL and a mock in-memory implementation
for development/testing (`db_type=mock`).
"""

from utils.db.connection import get_db_connection, init_db
from utils.db.quote_store import (
    create_quote,
    get_quote,
    get_quotes,
    update_quote,
    update_quote_text,
    replace_quote_items,
    get_quote_items,
    find_supplier_by_name,
    create_supplier,
    update_supplier,
    get_category,
    upsert_comparison,
    get_comparison,
    delete_comparison,
)

__all__ = [
    "get_db_connection",
    "init_db",
    "create_quote",
    "get_quote",
    "get_quotes",
    "update_quote",
    "update_quote_text",
    "replace_quote_items",
    "get_quote_items",
    "find_supplier_by_name",
    "create_supplier",
    "update_supplier",
    "get_category",
    "upsert_comparison",
    "get_comparison",
    "delete_comparison",
]
