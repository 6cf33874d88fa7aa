"""Data models shared by the matcher, routing engine and collaborators."""
from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

# ── Processed-email status machine ───────────────────────────────────────────
STATUS_PENDING = "pending"
STATUS_AUTO_SENT = "auto_sent"
STATUS_FLAGGED = "flagged"
STATUS_ERROR = "error"

# Terminal outcomes reachable from pending. Nothing moves back to pending.
TERMINAL_STATUSES = (STATUS_AUTO_SENT, STATUS_FLAGGED, STATUS_ERROR)
REVIEW_STATUSES = (STATUS_FLAGGED, STATUS_ERROR)

# Not persisted: sender was not whitelisted
OUTCOME_IGNORED = "ignored"

REASON_NOT_UNDERSTOOD = "Not Understood"
REASON_LOW_CONFIDENCE = "Low Confidence"
REASON_NO_MATCHES = "No Matches"
REASON_PROCESSED = "Processed"


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def _optional_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class Customer:
    """A whitelisted sender allowed to receive automatic quotes."""

    email: str
    name: str
    id: Optional[int] = None
    is_active: bool = True
    company: Optional[str] = None
    phone: Optional[str] = None
    billing_address: Optional[str] = None
    shipping_address: Optional[str] = None
    gst_number: Optional[str] = None

    def __post_init__(self):
        self.email = (self.email or "").strip().lower()

    @classmethod
    def from_row(cls, row) -> "Customer":
        d = dict(row)
        return cls(
            id=d.get("id"), email=d["email"], name=d.get("name") or "",
            is_active=_truthy(d.get("is_active", True)),
            company=d.get("company"), phone=d.get("phone"),
            billing_address=d.get("billing_address"),
            shipping_address=d.get("shipping_address"),
            gst_number=d.get("gst_number"),
        )


@dataclass
class Product:
    """A catalog entry matched against free-text product names."""

    name: str
    base_price: float
    id: Optional[int] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    unit: str = "pcs"
    hsn_code: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_row(cls, row) -> "Product":
        d = dict(row)
        return cls(
            id=d.get("id"), name=d["name"], base_price=float(d.get("base_price") or 0),
            min_price=_optional_float(d.get("min_price")),
            max_price=_optional_float(d.get("max_price")),
            unit=d.get("unit") or "pcs", hsn_code=d.get("hsn_code"),
            description=d.get("description"), category=d.get("category"),
            is_active=_truthy(d.get("is_active", True)),
        )


@dataclass
class EmailAccount:
    """A monitored mailbox plus the filters applied before messages reach the core."""

    email: str
    imap_host: str
    username: str
    password_encrypted: str
    id: Optional[int] = None
    imap_port: int = 993
    is_active: bool = True
    skip_read_emails: bool = True
    process_from_date: Optional[str] = None
    process_to_date: Optional[str] = None
    blacklisted_emails: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return str(self.id) if self.id is not None else self.email.lower()

    @classmethod
    def from_row(cls, row) -> "EmailAccount":
        d = dict(row)
        blacklist = d.get("blacklisted_emails") or "[]"
        if isinstance(blacklist, str):
            try:
                blacklist = json.loads(blacklist)
            except json.JSONDecodeError:
                blacklist = [b.strip() for b in blacklist.split(",") if b.strip()]
        return cls(
            id=d.get("id"), email=d["email"], imap_host=d["imap_host"],
            imap_port=int(d.get("imap_port") or 993), username=d["username"],
            password_encrypted=d.get("password_encrypted") or "",
            is_active=_truthy(d.get("is_active", True)),
            skip_read_emails=_truthy(d.get("skip_read_emails", True)),
            process_from_date=d.get("process_from_date"),
            process_to_date=d.get("process_to_date"),
            blacklisted_emails=list(blacklist),
        )


@dataclass
class Attachment:
    filename: str
    content_type: str
    size: int
    content: bytes = b""

    def to_meta(self) -> Dict[str, Any]:
        return {"filename": self.filename, "type": self.content_type, "size": self.size}


@dataclass
class InboundMessage:
    """One raw message record handed to the core by the mailbox reader."""

    message_id: str
    from_address: str
    subject: str = ""
    body_text: str = ""
    thread_id: str = ""
    from_name: str = ""
    body_html: str = ""
    received_at: Optional[datetime] = None
    attachments: List[Attachment] = field(default_factory=list)
    uid: Optional[str] = None

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


@dataclass
class ExtractedLineItem:
    """A product line the extractor found in the message (ephemeral)."""

    name: str
    quantity: int = 1
    specifications: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MatchResult:
    """Best catalog candidate for one requested name, with its similarity."""

    product: Product
    similarity: float


@dataclass
class QuoteLineItem:
    """A priced line captured at generation time, decoupled from later catalog edits."""

    product_name: str
    quantity: int
    unit_price: float
    specifications: Optional[str] = None
    hsn_code: str = ""
    unit: str = "pcs"
    product_id: Optional[int] = None
    similarity: float = 1.0

    @property
    def total(self) -> float:
        return round(self.unit_price * self.quantity, 2)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["total"] = self.total
        return d
