"""
routing.py - Confidence-gated routing of one RFQ message

Decides what happens to a whitelisted message once extraction has run:

    extraction failed / no items            → flagged  "Not Understood"
    aggregate ≥ threshold and ≥ 1 matched   → auto_sent (quote goes out)
    aggregate < threshold                   → flagged  "Low Confidence"
    otherwise                               → flagged  "No Matches"

A line is auto-priceable only when its best match (admitted at the looser
admission threshold) also clears the auto-price threshold. Lines that match
between the two thresholds are treated exactly like lines with no match.

The aggregate is Σ(similarity × 100) over priced lines divided by the number
of ALL extracted lines, so every unpriced line pulls the average down.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Tuple

from autoquote.core.models import (
    Customer, ExtractedLineItem, MatchResult, Product,
    REASON_LOW_CONFIDENCE, REASON_NO_MATCHES, REASON_NOT_UNDERSTOOD,
    STATUS_AUTO_SENT, STATUS_FLAGGED,
)
from autoquote.knowledge.matcher import (
    ADMISSION_THRESHOLD, AUTO_PRICE_THRESHOLD, find_best_match,
)

log = logging.getLogger("autoquote.routing")

CONFIDENCE_THRESHOLD = 95


@dataclass
class RoutingDecision:
    status: str
    reason: Optional[str] = None
    confidence: float = 0.0
    matched: List[Tuple[ExtractedLineItem, MatchResult]] = field(default_factory=list)
    unmatched: List[ExtractedLineItem] = field(default_factory=list)

    @property
    def auto_send(self) -> bool:
        return self.status == STATUS_AUTO_SENT


def check_whitelist(lookup: Callable[[str], Optional[Customer]],
                    address: str) -> Optional[Customer]:
    """Active customer for `address` (case-insensitive), or None."""
    address = (address or "").strip().lower()
    if not address:
        return None
    customer = lookup(address)
    if customer is None or not customer.is_active:
        return None
    return customer


def classify_line_items(items: Iterable[ExtractedLineItem], catalog: List[Product],
                        admission_threshold: float = ADMISSION_THRESHOLD,
                        auto_price_threshold: float = AUTO_PRICE_THRESHOLD):
    """Split lines into (auto-priceable (item, match) pairs, unmatched items)."""
    matched, unmatched = [], []
    for item in items:
        match = find_best_match(item.name, catalog, admission_threshold)
        if match is not None and match.similarity >= auto_price_threshold:
            matched.append((item, match))
        else:
            unmatched.append(item)
    return matched, unmatched


def aggregate_confidence(matched, total_lines: int) -> float:
    """Mean per-line confidence in percent; the divisor counts every extracted line."""
    if total_lines <= 0:
        return 0.0
    return sum(m.similarity * 100 for _, m in matched) / total_lines


def decide_route(extraction, catalog: List[Product],
                 admission_threshold: float = ADMISSION_THRESHOLD,
                 auto_price_threshold: float = AUTO_PRICE_THRESHOLD,
                 confidence_threshold: float = CONFIDENCE_THRESHOLD) -> RoutingDecision:
    """Route a whitelisted message given its (merged) extraction result."""
    items = list(extraction.items) if extraction.success else []
    if not items:
        return RoutingDecision(status=STATUS_FLAGGED, reason=REASON_NOT_UNDERSTOOD)

    matched, unmatched = classify_line_items(items, catalog, admission_threshold,
                                             auto_price_threshold)
    confidence = aggregate_confidence(matched, len(items))

    if confidence >= confidence_threshold and matched:
        status, reason = STATUS_AUTO_SENT, None
    elif confidence < confidence_threshold:
        status, reason = STATUS_FLAGGED, REASON_LOW_CONFIDENCE
    else:
        status, reason = STATUS_FLAGGED, REASON_NO_MATCHES

    log.info("Route %s: %d/%d lines priced, confidence %.1f%%",
             reason or status, len(matched), len(items), confidence,
             extra={"route": status, "reason": reason, "confidence": round(confidence, 2)})
    return RoutingDecision(status=status, reason=reason, confidence=confidence,
                           matched=matched, unmatched=unmatched)
