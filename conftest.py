"""
Shared pytest fixtures for the AutoQuote test suite.

Every test gets its own data directory and SQLite database under tmp_path.
Collaborators at the edge of the pipeline (AI extractor, PDF renderer, SMTP
sender, IMAP mailbox) have in-memory fakes here.
"""
import base64
import os
from datetime import datetime, timezone

import pytest

from autoquote.auto.extraction import ExtractionFailure, ExtractionSuccess
from autoquote.core.config import load_config
from autoquote.core.errors import DispatchError, MailboxError
from autoquote.core.models import Attachment, EmailAccount, ExtractedLineItem, InboundMessage


# ── Temp data directory (per-test isolation) ──────────────────────────────────

@pytest.fixture(autouse=True)
def temp_data_dir(tmp_path, monkeypatch):
    """Redirect data, output, quotes dir and the SQLite DB into tmp_path."""
    from autoquote.core import db, paths

    data = str(tmp_path / "data")
    os.makedirs(data, exist_ok=True)
    monkeypatch.setattr(paths, "DATA_DIR", data)
    monkeypatch.setattr(paths, "OUTPUT_DIR", os.path.join(data, "output"))
    monkeypatch.setattr(paths, "QUOTES_DIR", os.path.join(data, "output", "quotes"))
    monkeypatch.setattr(paths, "LOG_DIR", os.path.join(data, "logs"))
    monkeypatch.setattr(paths, "CONFIG_PATH", os.path.join(data, "autoquote_config.json"))
    monkeypatch.setattr(db, "DB_PATH", os.path.join(data, "autoquote.db"))
    for var in ("QUOTE_VALIDITY_DAYS", "ADMIN_EMAIL", "CRON_SECRET", "AUTOQUOTE_MODEL",
                "SWEEP_BUDGET_SECONDS", "COMPANY_NAME", "COMPANY_ADDRESS",
                "COMPANY_EMAIL", "COMPANY_PHONE", "COMPANY_GSTIN"):
        monkeypatch.delenv(var, raising=False)
    return data


@pytest.fixture
def config():
    cfg = load_config()
    cfg["company"].update({"name": "Tulsi Traders", "email": "sales@tulsi.example",
                           "phone": "+91 98000 00000", "gstin": "27ABCDE1234F1Z5"})
    cfg["admin_email"] = "admin@tulsi.example"
    cfg["cron_secret"] = "cron-test-secret"
    return cfg


@pytest.fixture
def store():
    from autoquote.core.db import SQLiteStore
    return SQLiteStore()


# ── Sample data ───────────────────────────────────────────────────────────────

@pytest.fixture
def seeded_store(store):
    """Store with two whitelisted customers (one inactive) and a small catalog."""
    store.upsert_customer("buyer@acme.example", "Ravi Kumar", company="Acme Industries",
                          billing_address="12 MG Road, Pune 411001",
                          gst_number="27AAACA1234A1Z1")
    store.upsert_customer("former@acme.example", "Old Buyer", is_active=False)
    store.upsert_product("Steel Bolt M8", 10.0, hsn_code="7318", unit="pcs",
                         description="Zinc plated, grade 8.8")
    store.upsert_product("Copper Wire 2.5mm", 120.0, min_price=110.0, max_price=150.0,
                         hsn_code="7408", unit="m")
    store.upsert_product("Safety Gloves", 45.0, hsn_code="6116", unit="pair")
    store.upsert_product("Discontinued Valve", 500.0, is_active=False)
    return store


@pytest.fixture
def account(store):
    account_id = store.add_email_account(
        "rfq@tulsi.example", "imap.tulsi.example", "rfq@tulsi.example",
        base64.b64encode(b"app-password").decode())
    return [a for a in store.list_active_accounts() if a.id == account_id][0]


def make_message(message_id="<msg-1@acme.example>", from_address="buyer@acme.example",
                 subject="RFQ for bolts", body="Please quote 10 Steel Bolt M8",
                 attachments=None, uid="1"):
    return InboundMessage(
        message_id=message_id, thread_id=message_id, from_address=from_address,
        from_name="Ravi Kumar", subject=subject, body_text=body,
        received_at=datetime(2026, 10, 1, 9, 30, tzinfo=timezone.utc),
        attachments=attachments or [], uid=uid,
    )


@pytest.fixture
def message():
    return make_message()


# ── Fakes ─────────────────────────────────────────────────────────────────────

def success(*items, confidence=95, source="body"):
    """ExtractionSuccess from (name, qty[, specs]) tuples."""
    return ExtractionSuccess(
        items=[ExtractedLineItem(name=i[0], quantity=i[1],
                                 specifications=i[2] if len(i) > 2 else None)
               for i in items],
        confidence=confidence, source=source)


class FakeExtractor:
    """Returns canned results; records every call."""

    def __init__(self, result=None, table_result=None, error=None):
        self.result = result if result is not None else ExtractionFailure("no canned result")
        self.table_result = table_result
        self.error = error
        self.calls = []
        self.table_calls = []

    def extract(self, body, subject=None):
        self.calls.append((body, subject))
        if self.error:
            raise self.error
        return self.result

    def extract_from_table(self, rows, source="spreadsheet"):
        self.table_calls.append((rows, source))
        return self.table_result or ExtractionFailure("no table result", source=source)


class FakeRenderer:
    def __init__(self, error=None):
        self.error = error
        self.rendered = []

    def __call__(self, quote, company):
        if self.error:
            raise self.error
        self.rendered.append(quote)
        return b"%PDF-1.4 fake quote " + quote.quote_id.encode()


class FakeSender:
    def __init__(self, fail=False):
        self.fail = fail
        self.replies = []
        self.quotes = []
        self.notifications = []

    def send_quote_reply(self, message, pdf_bytes, quote_id, company_name="",
                         validity_days=30):
        if self.fail:
            raise DispatchError("SMTP down")
        self.replies.append({"to": message.from_address, "quote_id": quote_id,
                             "pdf": pdf_bytes, "subject": f"Re: {message.subject}"})
        return True

    def send_quote(self, to, customer_name, quote_id, pdf_bytes, company, validity_days=30):
        if self.fail:
            raise DispatchError("SMTP down")
        self.quotes.append({"to": to, "quote_id": quote_id})
        return True

    def send_admin_notification(self, admin_email, customer_name, customer_email,
                                quote_id, item_count):
        self.notifications.append({"to": admin_email, "quote_id": quote_id,
                                   "items": item_count})
        return True


class FakeMailbox:
    """MailboxReader stand-in serving a fixed list of messages."""

    def __init__(self, account, messages=None, fail_connect=False):
        self.account = account
        self.messages = list(messages or [])
        self.fail_connect = fail_connect
        self.seen = []
        self.connected = False
        self.disconnected = False

    def connect(self):
        if self.fail_connect:
            raise MailboxError(f"IMAP connection to {self.account.email} failed")
        self.connected = True

    def fetch_messages(self):
        return list(self.messages)

    def mark_seen(self, message):
        self.seen.append(message.message_id)

    def disconnect(self):
        self.disconnected = True


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def sender():
    return FakeSender()


# ── Flask test client ─────────────────────────────────────────────────────────

def _basic_auth_header(user="admin", pw="changeme"):
    creds = base64.b64encode(f"{user}:{pw}".encode()).decode()
    return {"Authorization": f"Basic {creds}"}


class AuthenticatedClient:
    """Wraps Flask test client to add Basic Auth headers to every request."""
    def __init__(self, client, headers):
        self._client = client
        self._headers = headers

    def get(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.get(*args, **kwargs)

    def post(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.post(*args, **kwargs)


@pytest.fixture
def app(temp_data_dir, monkeypatch, config, seeded_store, renderer, sender):
    """Flask app wired to the seeded store and in-memory collaborators."""
    monkeypatch.setenv("DASH_USER", "admin")
    monkeypatch.setenv("DASH_PASS", "changeme")
    monkeypatch.delenv("ENABLE_EMAIL_POLLING", raising=False)
    from autoquote.app import create_app
    return create_app({
        "TESTING": True,
        "AUTOQUOTE_CONFIG": config,
        "AUTOQUOTE_STORE": seeded_store,
        "AUTOQUOTE_RENDERER": renderer,
        "AUTOQUOTE_MANUAL_SENDER": sender,
    })


@pytest.fixture
def client(app):
    """Authenticated Flask test client (HTTP Basic Auth on every request)."""
    with app.test_client() as c:
        yield AuthenticatedClient(c, _basic_auth_header())


@pytest.fixture
def anon_client(app):
    """Unauthenticated test client."""
    with app.test_client() as c:
        yield c
