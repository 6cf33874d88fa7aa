"""
autoquote/core/db.py - Persistent SQLite Database Layer

Single-file store for the directory (customers), the catalog (products),
monitored mailboxes, and the audit trail of every processed message.

TABLES:
  customers         - whitelist of senders allowed to receive auto-quotes
  products          - catalog matched against extracted product names
  email_accounts    - IMAP mailboxes polled by the sweep, with their filters
  processed_emails  - one row per inbound message that passed the whitelist
  rfq_requests      - a quoting request (auto-generated or manual submission)
  rfq_items         - requested lines of a manual submission
  quotes            - rendered, priced quotations
"""

import json
import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

from autoquote.core import paths
from autoquote.core.errors import InvalidStatusTransition
from autoquote.core.models import (
    Customer, EmailAccount, Product,
    STATUS_PENDING, STATUS_AUTO_SENT, STATUS_FLAGGED, STATUS_ERROR,
    TERMINAL_STATUSES, REVIEW_STATUSES,
)

log = logging.getLogger("autoquote.db")

DB_PATH = paths.DB_PATH

_db_lock = threading.Lock()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Connection factory ────────────────────────────────────────────────────────
@contextmanager
def get_db(db_path=None):
    """Thread-safe SQLite connection with WAL mode."""
    path = db_path or DB_PATH
    with _db_lock:
        paths.ensure_dir(os.path.dirname(os.path.abspath(path)))
        conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


# ── Schema ────────────────────────────────────────────────────────────────────
SCHEMA = """
CREATE TABLE IF NOT EXISTS customers (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT,
    email            TEXT UNIQUE NOT NULL,   -- always stored lowercase
    name             TEXT NOT NULL,
    company          TEXT,
    phone            TEXT,
    billing_address  TEXT,
    shipping_address TEXT,
    gst_number       TEXT,
    is_active        INTEGER DEFAULT 1
);

CREATE TABLE IF NOT EXISTS products (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT,
    name         TEXT NOT NULL,
    description  TEXT,
    category     TEXT,
    base_price   REAL NOT NULL DEFAULT 0,
    min_price    REAL,
    max_price    REAL,
    unit         TEXT DEFAULT 'pcs',
    hsn_code     TEXT,
    is_active    INTEGER DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_products_name ON products(name);

CREATE TABLE IF NOT EXISTS email_accounts (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at         TEXT NOT NULL,
    email              TEXT UNIQUE NOT NULL,
    provider           TEXT DEFAULT 'imap',
    imap_host          TEXT NOT NULL,
    imap_port          INTEGER DEFAULT 993,
    username           TEXT NOT NULL,
    password_encrypted TEXT NOT NULL,  -- base64, never plain text
    is_active          INTEGER DEFAULT 1,
    skip_read_emails   INTEGER DEFAULT 1,
    process_from_date  TEXT,
    process_to_date    TEXT,
    blacklisted_emails TEXT DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS rfq_requests (
    id             TEXT PRIMARY KEY,
    created_at     TEXT NOT NULL,
    customer_name  TEXT,
    customer_email TEXT,
    customer_phone TEXT,
    company_name   TEXT,
    notes          TEXT,
    status         TEXT DEFAULT 'pending',
    email_id       INTEGER,
    auto_generated INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS rfq_items (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id         TEXT NOT NULL REFERENCES rfq_requests(id) ON DELETE CASCADE,
    product_name       TEXT NOT NULL,
    quantity           INTEGER DEFAULT 1,
    specifications     TEXT,
    matched_product_id INTEGER,
    quoted_price       REAL,
    is_matched         INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS quotes (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    quote_number TEXT NOT NULL,
    request_id   TEXT REFERENCES rfq_requests(id),
    created_at   TEXT NOT NULL,
    pdf_path     TEXT,
    subtotal     REAL DEFAULT 0,
    tax          REAL DEFAULT 0,
    total        REAL DEFAULT 0,
    items_detail TEXT,            -- JSON array of priced lines
    status       TEXT DEFAULT 'generated',
    sent_at      TEXT
);

CREATE TABLE IF NOT EXISTS processed_emails (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT,
    email_account_id INTEGER,
    message_id       TEXT,
    thread_id        TEXT,
    from_email       TEXT,
    from_name        TEXT,
    subject          TEXT,
    body_text        TEXT,
    body_html        TEXT,
    has_attachments  INTEGER DEFAULT 0,
    attachment_info  TEXT,         -- JSON [{filename, type, size}]
    received_at      TEXT,
    status           TEXT NOT NULL DEFAULT 'pending',
    confidence_score REAL DEFAULT 0,
    ai_extraction    TEXT,         -- raw extraction payload, kept for audit
    folder_moved_to  TEXT,         -- flag reason / outcome label
    quote_id         INTEGER REFERENCES quotes(id),
    error_message    TEXT
);
CREATE INDEX IF NOT EXISTS idx_processed_status ON processed_emails(status);
CREATE INDEX IF NOT EXISTS idx_processed_message ON processed_emails(message_id);
"""


def init_db(db_path=None):
    with get_db(db_path) as conn:
        conn.executescript(SCHEMA)


def startup(db_path=None) -> dict:
    """Create tables and report row counts. Called once from create_app()."""
    init_db(db_path)
    stats = {}
    with get_db(db_path) as conn:
        for table in ("customers", "products", "email_accounts",
                      "processed_emails", "quotes"):
            stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    return {"db_path": db_path or DB_PATH, "stats": stats}


# ═══════════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════════

class SQLiteStore:
    """Directory, catalog and audit-trail operations consumed by the pipeline."""

    def __init__(self, db_path=None):
        self.db_path = db_path
        init_db(db_path)

    def _db(self):
        return get_db(self.db_path)

    # ── Customers ────────────────────────────────────────────────────────────
    def upsert_customer(self, email, name, company=None, phone=None,
                        billing_address=None, shipping_address=None,
                        gst_number=None, is_active=True) -> int:
        email = (email or "").strip().lower()
        now = _now()
        with self._db() as conn:
            row = conn.execute("SELECT id FROM customers WHERE email = ?", (email,)).fetchone()
            if row:
                conn.execute("""
                    UPDATE customers SET name=?, company=?, phone=?, billing_address=?,
                        shipping_address=?, gst_number=?, is_active=?, updated_at=?
                    WHERE id=?
                """, (name, company, phone, billing_address, shipping_address,
                      gst_number, int(bool(is_active)), now, row["id"]))
                return row["id"]
            cur = conn.execute("""
                INSERT INTO customers (created_at, updated_at, email, name, company, phone,
                    billing_address, shipping_address, gst_number, is_active)
                VALUES (?,?,?,?,?,?,?,?,?,?)
            """, (now, now, email, name, company, phone, billing_address,
                  shipping_address, gst_number, int(bool(is_active))))
            return cur.lastrowid

    def get_customer_by_email(self, email):
        """Active customer for this address (case-insensitive), or None."""
        email = (email or "").strip().lower()
        if not email:
            return None
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM customers WHERE email = ? AND is_active = 1", (email,)
            ).fetchone()
        return Customer.from_row(row) if row else None

    def list_active_customers(self) -> list:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM customers WHERE is_active = 1 ORDER BY name").fetchall()
        return [Customer.from_row(r) for r in rows]

    def deactivate_customer(self, email) -> bool:
        with self._db() as conn:
            cur = conn.execute(
                "UPDATE customers SET is_active = 0, updated_at = ? WHERE email = ?",
                (_now(), (email or "").strip().lower()))
            return cur.rowcount > 0

    # ── Products ─────────────────────────────────────────────────────────────
    def upsert_product(self, name, base_price, min_price=None, max_price=None,
                       unit="pcs", hsn_code=None, description=None,
                       category=None, is_active=True, product_id=None) -> int:
        now = _now()
        with self._db() as conn:
            if product_id is not None:
                conn.execute("""
                    UPDATE products SET name=?, base_price=?, min_price=?, max_price=?,
                        unit=?, hsn_code=?, description=?, category=?, is_active=?,
                        updated_at=?
                    WHERE id=?
                """, (name, base_price, min_price, max_price, unit, hsn_code,
                      description, category, int(bool(is_active)), now, product_id))
                return product_id
            cur = conn.execute("""
                INSERT INTO products (created_at, updated_at, name, description, category,
                    base_price, min_price, max_price, unit, hsn_code, is_active)
                VALUES (?,?,?,?,?,?,?,?,?,?,?)
            """, (now, now, name, description, category, base_price, min_price,
                  max_price, unit, hsn_code, int(bool(is_active))))
            return cur.lastrowid

    def list_active_products(self) -> list:
        """Catalog snapshot, in insertion order (the matcher's tie-break order)."""
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM products WHERE is_active = 1 ORDER BY id").fetchall()
        return [Product.from_row(r) for r in rows]

    # ── Email accounts ───────────────────────────────────────────────────────
    def add_email_account(self, email, imap_host, username, password_encrypted,
                          imap_port=993, skip_read_emails=True,
                          process_from_date=None, process_to_date=None,
                          blacklisted_emails=None, is_active=True) -> int:
        with self._db() as conn:
            cur = conn.execute("""
                INSERT INTO email_accounts (created_at, email, imap_host, imap_port,
                    username, password_encrypted, is_active, skip_read_emails,
                    process_from_date, process_to_date, blacklisted_emails)
                VALUES (?,?,?,?,?,?,?,?,?,?,?)
            """, (_now(), email, imap_host, imap_port, username, password_encrypted,
                  int(bool(is_active)), int(bool(skip_read_emails)),
                  process_from_date, process_to_date,
                  json.dumps(blacklisted_emails or [])))
            return cur.lastrowid

    def list_active_accounts(self) -> list:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM email_accounts WHERE is_active = 1 ORDER BY id").fetchall()
        return [EmailAccount.from_row(r) for r in rows]

    # ── Processed emails ─────────────────────────────────────────────────────
    def create_processed_email(self, message, account_id, extraction_payload,
                               confidence) -> int:
        """Insert the audit row for a whitelisted message with status pending."""
        received = message.received_at.isoformat() if message.received_at else None
        with self._db() as conn:
            cur = conn.execute("""
                INSERT INTO processed_emails (created_at, email_account_id, message_id,
                    thread_id, from_email, from_name, subject, body_text, body_html,
                    has_attachments, attachment_info, received_at, status,
                    confidence_score, ai_extraction)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
            """, (_now(), account_id, message.message_id, message.thread_id,
                  message.from_address, message.from_name, message.subject,
                  message.body_text, message.body_html,
                  int(message.has_attachments),
                  json.dumps([a.to_meta() for a in message.attachments]),
                  received, STATUS_PENDING, confidence,
                  json.dumps(extraction_payload, default=str)))
            return cur.lastrowid

    def update_email_status(self, email_id, status, reason=None, quote_id=None,
                            error_message=None):
        """Move a record from pending to a terminal status. Never backwards."""
        if status not in TERMINAL_STATUSES:
            raise InvalidStatusTransition(f"cannot move email {email_id} to {status!r}")
        with self._db() as conn:
            row = conn.execute(
                "SELECT status FROM processed_emails WHERE id = ?", (email_id,)).fetchone()
            if row is None:
                raise KeyError(f"processed email {email_id} not found")
            if row["status"] != STATUS_PENDING:
                raise InvalidStatusTransition(
                    f"email {email_id} is already {row['status']}, cannot become {status}")
            conn.execute("""
                UPDATE processed_emails
                SET status=?, folder_moved_to=?, quote_id=?, error_message=?, updated_at=?
                WHERE id=?
            """, (status, reason, quote_id, error_message, _now(), email_id))

    def get_processed_email(self, email_id):
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM processed_emails WHERE id = ?", (email_id,)).fetchone()
        return _email_row(row) if row else None

    def find_processed_by_message_id(self, message_id):
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM processed_emails WHERE message_id = ? ORDER BY id DESC LIMIT 1",
                (message_id,)).fetchone()
        return _email_row(row) if row else None

    def list_review_queue(self, limit=50) -> list:
        """Flagged and errored messages, newest first, with the raw extraction."""
        with self._db() as conn:
            rows = conn.execute("""
                SELECT p.*, a.email AS account_email
                FROM processed_emails p
                LEFT JOIN email_accounts a ON a.id = p.email_account_id
                WHERE p.status IN (?, ?)
                ORDER BY COALESCE(p.received_at, p.created_at) DESC, p.id DESC
                LIMIT ?
            """, (*REVIEW_STATUSES, limit)).fetchall()
        return [_email_row(r) for r in rows]

    def clear_review_queue(self) -> int:
        """Bulk delete flagged and errored rows. Returns rows removed."""
        with self._db() as conn:
            cur = conn.execute(
                "DELETE FROM processed_emails WHERE status IN (?, ?)", REVIEW_STATUSES)
            removed = cur.rowcount
        log.info("Cleared %d flagged/error emails", removed)
        return removed

    # ── RFQ requests ─────────────────────────────────────────────────────────
    def create_rfq_request(self, customer_name, customer_email, notes="",
                           status="pending", email_id=None, auto_generated=False,
                           customer_phone=None, company_name=None) -> str:
        request_id = uuid.uuid4().hex
        with self._db() as conn:
            conn.execute("""
                INSERT INTO rfq_requests (id, created_at, customer_name, customer_email,
                    customer_phone, company_name, notes, status, email_id, auto_generated)
                VALUES (?,?,?,?,?,?,?,?,?,?)
            """, (request_id, _now(), customer_name, customer_email, customer_phone,
                  company_name, notes, status, email_id, int(bool(auto_generated))))
        return request_id

    def add_rfq_item(self, request_id, product_name, quantity, specifications=None,
                     matched_product_id=None, quoted_price=None) -> int:
        with self._db() as conn:
            cur = conn.execute("""
                INSERT INTO rfq_items (request_id, product_name, quantity, specifications,
                    matched_product_id, quoted_price, is_matched)
                VALUES (?,?,?,?,?,?,?)
            """, (request_id, product_name, quantity, specifications,
                  matched_product_id, quoted_price, int(matched_product_id is not None)))
            return cur.lastrowid

    def update_rfq_request_status(self, request_id, status):
        with self._db() as conn:
            conn.execute("UPDATE rfq_requests SET status = ? WHERE id = ?",
                         (status, request_id))

    def get_rfq_request(self, request_id):
        with self._db() as conn:
            row = conn.execute(
                "SELECT * FROM rfq_requests WHERE id = ?", (request_id,)).fetchone()
            if not row:
                return None
            result = dict(row)
            items = conn.execute(
                "SELECT * FROM rfq_items WHERE request_id = ? ORDER BY id",
                (request_id,)).fetchall()
            result["items"] = [dict(i) for i in items]
        return result

    # ── Quotes ───────────────────────────────────────────────────────────────
    def insert_quote(self, quote, request_id, pdf_path, status="sent", sent_at=None) -> int:
        """Persist a rendered quote. `quote` is an assembled QuoteDocument."""
        with self._db() as conn:
            cur = conn.execute("""
                INSERT INTO quotes (quote_number, request_id, created_at, pdf_path,
                    subtotal, tax, total, items_detail, status, sent_at)
                VALUES (?,?,?,?,?,?,?,?,?,?)
            """, (quote.quote_id, request_id, _now(), pdf_path,
                  quote.subtotal, quote.tax_total, quote.total,
                  json.dumps([i.to_dict() for i in quote.matched_items]),
                  status, sent_at or _now()))
            return cur.lastrowid

    def get_quote(self, quote_row_id):
        with self._db() as conn:
            row = conn.execute("SELECT * FROM quotes WHERE id = ?", (quote_row_id,)).fetchone()
        if not row:
            return None
        result = dict(row)
        result["items_detail"] = json.loads(result.get("items_detail") or "[]")
        return result

    # ── Stats ────────────────────────────────────────────────────────────────
    def count_by_status(self) -> dict:
        counts = {s: 0 for s in (STATUS_PENDING, STATUS_AUTO_SENT, STATUS_FLAGGED, STATUS_ERROR)}
        with self._db() as conn:
            for row in conn.execute(
                    "SELECT status, COUNT(*) AS n FROM processed_emails GROUP BY status"):
                counts[row["status"]] = row["n"]
        return counts

    def get_stats(self) -> dict:
        counts = self.count_by_status()
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        with self._db() as conn:
            total = conn.execute("SELECT COUNT(*) FROM processed_emails").fetchone()[0]
            today_processed = conn.execute(
                "SELECT COUNT(*) FROM processed_emails WHERE created_at >= ?",
                (today,)).fetchone()[0]
        return {
            "total_emails": total,
            "auto_sent": counts[STATUS_AUTO_SENT],
            "flagged": counts[STATUS_FLAGGED] + counts[STATUS_ERROR],
            "today_processed": today_processed,
        }


def _email_row(row) -> dict:
    d = dict(row)
    for key, default in (("attachment_info", "[]"), ("ai_extraction", "{}")):
        try:
            d[key] = json.loads(d.get(key) or default)
        except (TypeError, json.JSONDecodeError):
            d[key] = json.loads(default)
    return d
