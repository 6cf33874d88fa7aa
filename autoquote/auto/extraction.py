"""
extraction.py - Typed extraction results and multi-source merging

The AI extractor is treated as unreliable. Each call produces either an
ExtractionSuccess (zero or more line items plus a 0–100 confidence) or an
ExtractionFailure (a reason). A message may yield several results (body text
plus spreadsheet attachments); merge_extractions() folds them into one.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from autoquote.core.models import ExtractedLineItem

log = logging.getLogger("autoquote.extraction")


@dataclass
class ExtractionSuccess:
    items: List[ExtractedLineItem] = field(default_factory=list)
    confidence: float = 0.0
    source: str = "body"
    raw_response: Optional[str] = None

    @property
    def success(self) -> bool:
        return bool(self.items)

    def to_payload(self) -> dict:
        return {
            "success": self.success,
            "source": self.source,
            "products": [i.to_dict() for i in self.items],
            "confidence": self.confidence,
            "raw_response": self.raw_response,
        }


@dataclass
class ExtractionFailure:
    reason: str
    source: str = "body"

    @property
    def success(self) -> bool:
        return False

    @property
    def items(self) -> list:
        return []

    @property
    def confidence(self) -> float:
        return 0.0

    def to_payload(self) -> dict:
        return {
            "success": False,
            "source": self.source,
            "products": [],
            "confidence": 0,
            "error": self.reason,
        }


ExtractionResult = Union[ExtractionSuccess, ExtractionFailure]


def parse_quantity(value) -> int:
    """Integer quantity ≥ 1. Missing, non-numeric or non-positive values become 1."""
    if isinstance(value, bool):
        return 1
    if isinstance(value, (int, float)):
        qty = int(value)
    else:
        text = str(value or "").strip()
        digits = ""
        for ch in text:
            if ch.isdigit():
                digits += ch
            elif digits:
                break
        qty = int(digits) if digits else 0
    return qty if qty >= 1 else 1


def parse_confidence(value) -> float:
    """Confidence in [0, 100]. Accepts numbers and strings like "95" or "95%"; anything else is 0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if score != score:  # NaN
        return 0.0
    return min(max(score, 0.0), 100.0)


def normalize_products(raw_products) -> List[ExtractedLineItem]:
    """Turn the extractor's loose product dicts into ExtractedLineItems.

    Accepts either "product" or "name" as the name key. Entries without a
    usable name are dropped.
    """
    if not isinstance(raw_products, (list, tuple)):
        return []
    items = []
    for entry in raw_products:
        if isinstance(entry, str):
            entry = {"product": entry}
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("product") or entry.get("name") or "").strip()
        if not name:
            continue
        specs = entry.get("specifications") or entry.get("specs") or None
        items.append(ExtractedLineItem(
            name=name,
            quantity=parse_quantity(entry.get("quantity")),
            specifications=str(specs).strip() if specs else None,
        ))
    return items


def merge_extractions(results: Iterable[ExtractionResult]) -> ExtractionResult:
    """
    Fold per-source results into one.

    Items from every successful source are concatenated in source order and
    the combined confidence is the highest successful confidence. If no source
    produced items, the first failure is returned (or an empty success when
    every source succeeded with nothing).
    """
    results = list(results)
    if not results:
        return ExtractionFailure(reason="No extraction sources")

    items: List[ExtractedLineItem] = []
    confidence = 0.0
    sources = []
    raw = []
    for result in results:
        if isinstance(result, ExtractionSuccess) and result.items:
            items.extend(result.items)
            confidence = max(confidence, float(result.confidence or 0))
            sources.append(result.source)
            if result.raw_response:
                raw.append(result.raw_response)

    if items:
        if len(results) > 1:
            log.debug("merged %d items from %s", len(items), ", ".join(sources))
        return ExtractionSuccess(items=items, confidence=confidence,
                                 source="+".join(sources),
                                 raw_response="\n".join(raw) or None)

    failures = [r for r in results if isinstance(r, ExtractionFailure)]
    if failures:
        return failures[0]
    return ExtractionSuccess(items=[], confidence=max(float(r.confidence or 0) for r in results),
                             source=results[0].source)


def extraction_payload(result: ExtractionResult, sources=None) -> dict:
    """Audit payload stored with the processed-email record."""
    payload = result.to_payload()
    if sources:
        payload["sources"] = [s.to_payload() for s in sources]
    return payload
