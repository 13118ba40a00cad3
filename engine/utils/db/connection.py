"""
Database connection management for the quote engine.

Supports both PostgreSQL (via psycopg2) and a mock in-memory implementation.
Config from Vault (`db_type`, `postgres_url`).
"""

from typing import Any, Dict
from urllib.parse import urlparse, unquote

import psycopg2
from psycopg2.extras import RealDictCursor

from utils.vault import secrets
from utils.core.log import scope_tool_logger, set_logger, get_logger

# Database configuration (Vault)
DB_TYPE = (secrets.get("db_type", default="postgres") or "postgres").strip().lower()
DATABASE_URL = secrets.get("postgres_url", default="") or ""

MOCK_TABLES = (
    "projects",
    "quote_categories",
    "quotes",
    "quote_items",
    "suppliers",
    "comparisons",
)

# Mock database storage (in-memory), one dict of rows keyed by id per table
_mock_db: Dict[str, Dict[str, Any]] = {name: {} for name in MOCK_TABLES}


def reset_mock_db() -> None:
    for name in MOCK_TABLES:
        _mock_db[name] = {}


def _parse_postgres_url(url: str) -> Dict[str, Any]:
    """
    Parse postgresql:// or postgres:// URL into connection kwargs.
    Uses component-based parsing so the password (with %, &, etc.) is not
    interpreted as part of the DSN and does not need to be percent-encoded in Vault.
    """
    parsed = urlparse(url)
    netloc = parsed.netloc or ""
    path = (parsed.path or "").strip("/") or "postgres"

    # userinfo is "user:password" before the last @ in netloc
    at = netloc.rfind("@")
    if at >= 0:
        userinfo = netloc[:at]
        hostport = netloc[at + 1 :]
    else:
        userinfo = ""
        hostport = netloc

    user = ""
    password = ""
    if userinfo:
        colon = userinfo.find(":")
        if colon >= 0:
            user = unquote(userinfo[:colon])
            password = unquote(userinfo[colon + 1 :])
        else:
            user = unquote(userinfo)

    host = "localhost"
    port = 5432
    if hostport:
        if ":" in hostport:
            host, port_str = hostport.rsplit(":", 1)
            try:
                port = int(port_str)
            except ValueError:
                port = 5432
        else:
            host = hostport

    return {
        "host": host or "localhost",
        "port": port,
        "user": user,
        "password": password,
        "dbname": path,
    }


def get_db_connection():
    """
    Open a PostgreSQL connection with dict rows.

    Only valid when DB_TYPE == "postgres"; mock mode never opens connections.
    """
    log = get_logger()
    if DB_TYPE != "postgres":
        raise RuntimeError(f"No connection available in '{DB_TYPE}' mode")
    if not DATABASE_URL:
        raise ValueError("postgres_url is required when db_type=postgres")

    try:
        kwargs = _parse_postgres_url(DATABASE_URL)
        conn = psycopg2.connect(cursor_factory=RealDictCursor, **kwargs)
        log.debug("Connected to PostgreSQL database")
        return conn
    except Exception as e:
        log.error(f"Failed to connect to PostgreSQL: {e}")
        raise


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS projects (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_categories (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        project_id UUID REFERENCES projects(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        selected_quote_id UUID,
        sort_order INTEGER DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS suppliers (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        org_number TEXT,
        category_tags TEXT[] NOT NULL DEFAULT '{}',
        contact_email TEXT,
        contact_phone TEXT,
        contact_person TEXT,
        address TEXT,
        city TEXT,
        notes TEXT,
        rating INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_suppliers_name_ci
    ON suppliers ((lower(name)));
    """,
    """
    CREATE TABLE IF NOT EXISTS quotes (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        category_id UUID REFERENCES quote_categories(id) ON DELETE CASCADE,
        supplier_id UUID REFERENCES suppliers(id) ON DELETE SET NULL,
        supplier_name TEXT,
        file_path TEXT,
        file_name TEXT,
        extracted_text TEXT,
        status VARCHAR(20) NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'analyzed', 'received', 'reviewing', 'selected', 'rejected')),
        quote_number TEXT,
        quote_date DATE,
        valid_until DATE,
        contact_person TEXT,
        contact_email TEXT,
        contact_phone TEXT,
        total_amount NUMERIC(14, 2),
        currency VARCHAR(3) DEFAULT 'SEK',
        vat_included BOOLEAN DEFAULT FALSE,
        payment_terms TEXT,
        delivery_terms TEXT,
        warranty_period TEXT,
        ai_summary TEXT,
        ai_analysis JSONB,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_quotes_category ON quotes(category_id);
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_quotes_status ON quotes(status);
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_items (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        quote_id UUID NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
        position TEXT,
        article_number TEXT,
        description TEXT NOT NULL,
        quantity NUMERIC,
        unit TEXT,
        unit_price NUMERIC,
        discount_percent NUMERIC,
        total NUMERIC,
        item_type TEXT,
        category TEXT,
        specifications JSONB DEFAULT '{}',
        sort_order INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_quote_items_quote ON quote_items(quote_id, sort_order);
    """,
    """
    CREATE TABLE IF NOT EXISTS comparisons (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        category_id UUID NOT NULL UNIQUE REFERENCES quote_categories(id) ON DELETE CASCADE,
        specification_id UUID,
        quote_ids TEXT[] NOT NULL DEFAULT '{}',
        result JSONB NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
)


def init_db():
    """
    Initialize database tables.
    For PostgreSQL: creates tables if they don't exist.
    For mock: resets in-memory structures.
    """
    set_logger(scope_tool_logger("SYSTEM", "db_init"))
    log = get_logger()

    if DB_TYPE == "postgres":
        conn = get_db_connection()
        try:
            with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    cur.execute(statement)
            conn.commit()
            log.info("Database tables initialized successfully")
        except Exception as e:
            conn.rollback()
            log.error(f"Failed to initialize database: {e}")
            raise
        finally:
            conn.close()
    else:
        log.debug("Mock database mode - resetting in-memory tables")
        reset_mock_db()


def main() -> bool:
    init_db()
    if DB_TYPE == "postgres":
        conn = get_db_connection()
        conn.close()
    print(f"Database connection successful (type: {DB_TYPE})")
    return True


if __name__ == "__main__":
    main()
