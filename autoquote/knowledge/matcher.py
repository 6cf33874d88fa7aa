"""
matcher.py - Fuzzy product matching against the catalog

Scores free-text product names (as written by the customer, or as the AI
extractor read them) against catalog names:

  1. identical after lowercase/trim      → 1.0
  2. one contained in the other          → 0.85 (fixed, length-independent)
  3. otherwise                           → 1 − levenshtein / longer length

Two thresholds are used by callers, never inside this module:
  ADMISSION_THRESHOLD   (0.70) - plausibly the same product
  AUTO_PRICE_THRESHOLD  (0.95) - confident enough to bill without review
"""

import logging
from typing import Iterable, Optional

from autoquote.core.models import MatchResult, Product

log = logging.getLogger("autoquote.matcher")

ADMISSION_THRESHOLD = 0.70
AUTO_PRICE_THRESHOLD = 0.95
CONTAINMENT_SCORE = 0.85


def normalize_name(text: str) -> str:
    return (text or "").strip().lower()


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert / delete / substitute, all cost 1)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    # Single-row DP over the shorter string
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1,          # deletion
                               current[j - 1] + 1,       # insertion
                               previous[j - 1] + cost))  # substitution
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalized closeness of two product names, in [0, 1]."""
    s1 = normalize_name(a)
    s2 = normalize_name(b)

    if s1 == s2:
        return 1.0

    if s1 and s2 and (s1 in s2 or s2 in s1):
        return CONTAINMENT_SCORE

    longest = max(len(s1), len(s2))
    if longest == 0:
        return 0.0
    return 1 - levenshtein_distance(s1, s2) / longest


def find_best_match(requested_name: str, catalog: Iterable[Product],
                    threshold: float = ADMISSION_THRESHOLD) -> Optional[MatchResult]:
    """
    Best active catalog product whose similarity clears `threshold`.

    Ties keep the first product seen (strictly-greater update), so the
    result depends on catalog order and is reproducible for a given snapshot.
    """
    best = None
    for product in catalog:
        if not product.is_active:
            continue
        score = similarity(requested_name, product.name)
        if score < threshold:
            continue
        if best is None or score > best.similarity:
            best = MatchResult(product=product, similarity=score)

    if best:
        log.debug("match %r → %r (%.3f)", requested_name, best.product.name, best.similarity)
    else:
        log.debug("no match for %r at %.2f", requested_name, threshold)
    return best
