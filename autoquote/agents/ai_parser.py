"""
ai_parser.py - AI product extraction for RFQ emails and spreadsheets

Uses Claude (Haiku by default) to pull product lines out of free-text email
bodies, and to identify the product / quantity / specs columns of a tabular
attachment from a small sample. Results are returned as ExtractionSuccess or
ExtractionFailure; only a timeout escapes as an exception (ExtractionTimeout),
so the caller can route it to the error outcome instead of review.
"""

import json
import logging
import os
import re
from typing import Optional

import anthropic

from autoquote.auto.extraction import (
    ExtractionFailure, ExtractionSuccess, normalize_products, parse_confidence,
    parse_quantity,
)
from autoquote.core.errors import ExtractionTimeout

log = logging.getLogger("ai_parser")

ANTHROPIC_API_KEY = os.environ.get("ANTHROPIC_API_KEY", "")
DEFAULT_MODEL = "claude-haiku-4-5-20251001"

EMAIL_SYSTEM = """You are an expert at extracting product information from RFQ (Request for Quotation) emails.

Your task:
1. Read the email carefully
2. Extract ALL products mentioned with their quantities and specifications
3. Return ONLY valid JSON in this exact format:
{
  "products": [
    {"product": "Product Name", "quantity": 1, "specifications": "optional specs"}
  ],
  "confidence": 95
}

Rules:
- If no quantity is mentioned, use 1
- Extract product names exactly as written
- Include color, model, size in specifications
- Confidence score 0-100 based on how clear the request is
- If you can't find any products, return empty array with low confidence"""

TABLE_SYSTEM = """You are analyzing spreadsheet data to identify which columns contain product names, quantities, and specifications.

Return ONLY valid JSON in this format:
{
  "productColumn": "column name",
  "quantityColumn": "column name",
  "specsColumn": "column name (optional)",
  "confidence": 95
}"""

TABLE_SAMPLE_ROWS = 3


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r'^```\w*\n?', '', text)
        text = re.sub(r'\n?```\s*$', '', text)
    return text.strip()


def _resolve_column(row: dict, column):
    """Column given by header name, or by 0-based position."""
    if isinstance(column, bool) or not isinstance(column, (str, int)) or column == "":
        return None
    if column in row:
        return column
    if isinstance(column, int) or (isinstance(column, str) and column.isdigit()):
        keys = list(row.keys())
        idx = int(column)
        if 0 <= idx < len(keys):
            return keys[idx]
    # Case-insensitive header match
    for key in row:
        if str(key).strip().lower() == str(column).strip().lower():
            return key
    return None


class AIExtractor:
    """Product extraction backed by the Anthropic Messages API."""

    def __init__(self, client=None, model=None, timeout=30, max_tokens=1000,
                 api_key=None):
        self.model = model or DEFAULT_MODEL
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._client = client
        self._api_key = api_key or ANTHROPIC_API_KEY

    @classmethod
    def from_config(cls, config: dict, client=None) -> "AIExtractor":
        return cls(
            client=client,
            model=config.get("extraction_model"),
            timeout=config.get("extraction_timeout_seconds", 30),
            max_tokens=config.get("extraction_max_tokens", 1000),
        )

    @property
    def client(self):
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self._api_key,
                                               timeout=self.timeout)
        return self._client

    def _call(self, system: str, prompt: str, max_tokens: int) -> str:
        """One completion. Raises ExtractionTimeout; other API errors propagate."""
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=0.1,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise ExtractionTimeout(f"AI extraction timed out after {self.timeout}s") from e
        if not response.content:
            return ""
        return response.content[0].text or ""

    def extract(self, body: str, subject: Optional[str] = None):
        """Extract product lines from an email body."""
        prompt = (f"Subject: {subject or 'RFQ Request'}\n\n"
                  f"Email Body:\n{body or ''}\n\n"
                  f"Extract products as JSON:")
        try:
            text = self._call(EMAIL_SYSTEM, prompt, self.max_tokens)
        except anthropic.APIError as e:
            log.warning("AI extraction failed: %s", e)
            return ExtractionFailure(reason=str(e), source="body")

        if not text:
            return ExtractionFailure(reason="No response from AI", source="body")
        try:
            parsed = json.loads(_strip_fences(text))
        except json.JSONDecodeError as e:
            log.warning("AI returned non-JSON: %s", text[:120])
            return ExtractionFailure(reason=f"Unparseable AI response: {e}", source="body")
        if not isinstance(parsed, dict):
            return ExtractionFailure(reason="Unexpected AI response shape", source="body")

        raw_products = parsed.get("products")
        if raw_products is not None and not isinstance(raw_products, list):
            log.warning("AI returned products as %s, expected a list",
                        type(raw_products).__name__)
        items = normalize_products(raw_products)
        confidence = parse_confidence(parsed.get("confidence"))
        log.info("AI extracted %d products (confidence %.0f)", len(items), confidence,
                 extra={"items": len(items), "confidence": confidence})
        return ExtractionSuccess(items=items, confidence=confidence,
                                 source="body", raw_response=text)

    def extract_from_table(self, rows: list, source: str = "spreadsheet"):
        """
        Extract product lines from spreadsheet rows (list of header→value dicts).

        The model only sees the first few rows and names the columns; every row
        is then read locally using that mapping.
        """
        if not rows:
            return ExtractionFailure(reason="Empty spreadsheet", source=source)

        sample = rows[:TABLE_SAMPLE_ROWS]
        prompt = "Identify columns:\n" + json.dumps(sample, indent=2, default=str)
        try:
            text = self._call(TABLE_SYSTEM, prompt, 500)
        except anthropic.APIError as e:
            log.warning("Spreadsheet column mapping failed: %s", e)
            return ExtractionFailure(reason=str(e), source=source)
        if not text:
            return ExtractionFailure(reason="Failed to identify spreadsheet columns",
                                     source=source)
        try:
            mapping = json.loads(_strip_fences(text))
        except json.JSONDecodeError as e:
            return ExtractionFailure(reason=f"Unparseable column mapping: {e}", source=source)
        if not isinstance(mapping, dict):
            return ExtractionFailure(reason="Unexpected column mapping shape", source=source)

        items = []
        for row in rows:
            product_col = _resolve_column(row, mapping.get("productColumn"))
            qty_col = _resolve_column(row, mapping.get("quantityColumn"))
            specs_col = _resolve_column(row, mapping.get("specsColumn"))
            name = str(row.get(product_col) or "").strip() if product_col else ""
            if not name:
                continue
            specs = row.get(specs_col) if specs_col else None
            items.append({
                "product": name,
                "quantity": parse_quantity(row.get(qty_col)) if qty_col else 1,
                "specifications": str(specs).strip() if specs else None,
            })

        confidence = parse_confidence(mapping.get("confidence"))
        extracted = normalize_products(items)
        log.info("Spreadsheet %s: %d products via columns %s/%s", source, len(extracted),
                 mapping.get("productColumn"), mapping.get("quantityColumn"))
        return ExtractionSuccess(items=extracted, confidence=confidence,
                                 source=source, raw_response=text)
