"""
quote_assembly.py - Priced quote aggregate ready for rendering and persistence

Turns matched line items into a QuoteDocument: subtotal, the split central /
state tax (CGST + SGST, 9% each by default), grand total and the total spelled
out in words (Indian numbering) for the printed document.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from autoquote.core.models import Customer, ExtractedLineItem, MatchResult, QuoteLineItem
from autoquote.knowledge.pricing import quoted_price, to_money

log = logging.getLogger("autoquote.quote")

DEFAULT_CGST_RATE = 0.09
DEFAULT_SGST_RATE = 0.09

_ONES = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine"]
_TEENS = ["Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
          "Seventeen", "Eighteen", "Nineteen"]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]


def _below_hundred(n: int) -> str:
    if n >= 20:
        return (_TENS[n // 10] + " " + _ONES[n % 10]).strip()
    if n >= 10:
        return _TEENS[n - 10]
    return _ONES[n]


def _indian_words(n: int) -> str:
    parts = []
    crore, n = divmod(n, 10_000_000)
    lakh, n = divmod(n, 100_000)
    thousand, n = divmod(n, 1000)
    hundred, n = divmod(n, 100)
    if crore:
        parts.append(_indian_words(crore) + " Crore")
    if lakh:
        parts.append(_below_hundred(lakh) + " Lakh")
    if thousand:
        parts.append(_below_hundred(thousand) + " Thousand")
    if hundred:
        parts.append(_ONES[hundred] + " Hundred")
    if n:
        parts.append(_below_hundred(n))
    return " ".join(parts)


def number_to_words(amount) -> str:
    """Whole-rupee amount in words, e.g. 125000 → 'One Lakh Twenty Five Thousand Rupees Only'."""
    n = int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if n <= 0:
        return "Zero Rupees Only"
    return _indian_words(n) + " Rupees Only"


@dataclass
class QuoteDocument:
    quote_id: str
    customer_name: str
    customer_email: str
    matched_items: List[QuoteLineItem]
    unmatched_items: List[ExtractedLineItem] = field(default_factory=list)
    company_name: str = ""
    customer_gstin: str = ""
    billing_address: str = ""
    shipping_address: str = ""
    subtotal: float = 0.0
    cgst: float = 0.0
    sgst: float = 0.0
    total: float = 0.0
    amount_in_words: str = ""
    date: Optional[date] = None
    valid_until: Optional[date] = None

    @property
    def tax_total(self) -> float:
        return float(to_money(Decimal(str(self.cgst)) + Decimal(str(self.sgst))))

    def to_dict(self) -> dict:
        return {
            "quote_id": self.quote_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "company_name": self.company_name,
            "customer_gstin": self.customer_gstin,
            "billing_address": self.billing_address,
            "shipping_address": self.shipping_address,
            "matched_items": [i.to_dict() for i in self.matched_items],
            "unmatched_items": [i.to_dict() for i in self.unmatched_items],
            "subtotal": self.subtotal,
            "cgst": self.cgst,
            "sgst": self.sgst,
            "total": self.total,
            "amount_in_words": self.amount_in_words,
            "date": self.date.isoformat() if self.date else None,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
        }


def quote_id_from_request(request_id: str) -> str:
    """Short human-readable quote number: first 8 chars of the request id, upper-cased."""
    return str(request_id).replace("-", "")[:8].upper()


def price_line(item: ExtractedLineItem, match: MatchResult) -> QuoteLineItem:
    """Price one accepted match. Specs fall back to the catalog description."""
    product = match.product
    return QuoteLineItem(
        product_name=product.name,
        quantity=item.quantity,
        unit_price=quoted_price(product.base_price, item.quantity,
                                product.min_price, product.max_price),
        specifications=item.specifications or product.description,
        hsn_code=product.hsn_code or "",
        unit=product.unit or "pcs",
        product_id=product.id,
        similarity=match.similarity,
    )


def assemble_quote(quote_id: str, matched_items: List[QuoteLineItem],
                   unmatched_items: Optional[List[ExtractedLineItem]] = None,
                   customer: Optional[Customer] = None,
                   customer_name: str = "", customer_email: str = "",
                   cgst_rate: float = DEFAULT_CGST_RATE,
                   sgst_rate: float = DEFAULT_SGST_RATE,
                   validity_days: int = 30, today: Optional[date] = None) -> QuoteDocument:
    """Compute totals for the matched lines. Unmatched lines never reach the subtotal."""
    subtotal = to_money(sum((Decimal(str(i.unit_price)) * i.quantity for i in matched_items),
                            Decimal("0")))
    cgst = to_money(subtotal * Decimal(str(cgst_rate)))
    sgst = to_money(subtotal * Decimal(str(sgst_rate)))
    total = subtotal + cgst + sgst

    today = today or date.today()
    billing = (customer.billing_address if customer else "") or ""
    shipping = (customer.shipping_address if customer else "") or billing

    doc = QuoteDocument(
        quote_id=quote_id,
        customer_name=(customer.name if customer and customer.name else "")
        or customer_name or customer_email,
        customer_email=customer_email or (customer.email if customer else ""),
        company_name=(customer.company if customer else "") or "",
        customer_gstin=(customer.gst_number if customer else "") or "",
        billing_address=billing,
        shipping_address=shipping,
        matched_items=list(matched_items),
        unmatched_items=list(unmatched_items or []),
        subtotal=float(subtotal),
        cgst=float(cgst),
        sgst=float(sgst),
        total=float(total),
        amount_in_words=number_to_words(total),
        date=today,
        valid_until=today + timedelta(days=validity_days),
    )
    log.debug("Assembled quote %s: %d lines, total %.2f", quote_id,
              len(doc.matched_items), doc.total,
              extra={"quote_id": quote_id, "total": doc.total})
    return doc
