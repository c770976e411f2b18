"""Hashing and string-matching helpers.

Cache keys for upstream requests, name normalization for entity
resolution, and Levenshtein-based similarity.
"""

import hashlib
import json
import re
from typing import Any, Dict, Optional

# Trailing legal-entity suffixes, applied in order
COMPANY_SUFFIXES = [
    re.compile(r"\s+(inc\.?|incorporated)$", re.IGNORECASE),
    re.compile(r"\s+(llc|l\.l\.c\.)$", re.IGNORECASE),
    re.compile(r"\s+(ltd\.?|limited)$", re.IGNORECASE),
    re.compile(r"\s+(corp\.?|corporation)$", re.IGNORECASE),
    re.compile(r"\s+(co\.?|company)$", re.IGNORECASE),
    re.compile(r"\s+(plc)$", re.IGNORECASE),
    re.compile(r"\s+(gmbh)$", re.IGNORECASE),
    re.compile(r"\s+(ag)$", re.IGNORECASE),
]

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[.,'\"]")


def clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop None-valued params; they never reach the query string."""
    if not params:
        return {}
    return {k: v for k, v in params.items() if v is not None}


def generate_cache_key(path: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Build a canonical cache key for a GET request.

    The key is `"{path}:{digest}"` where the digest is the first 12 hex
    characters of a SHA-256 over the path and the sorted params, so the
    same logical request always maps to the same key regardless of param
    order.

    Args:
        path: Request path, e.g. "/time_entries".
        params: Query parameters.

    Returns:
        Cache key string.
    """
    items = sorted(clean_params(params).items())
    payload = path + json.dumps(items, separators=(",", ":"), default=str)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]
    return f"{path}:{digest}"


def normalize_name(text: str) -> str:
    """Normalize an entity name for comparison.

    Lowercases and trims, strips trailing company suffixes (Inc, LLC, Ltd,
    Corp, Co, PLC, GmbH, AG and their long forms), collapses whitespace and
    removes `. , ' "`.

    >>> normalize_name("Acme Inc.")
    'acme'
    """
    normalized = text.lower().strip()
    for suffix in COMPANY_SUFFIXES:
        normalized = suffix.sub("", normalized)
    normalized = _WHITESPACE.sub(" ", normalized).strip()
    return _PUNCTUATION.sub("", normalized)


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit cost insert, delete and substitute."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def calculate_similarity(query: str, target: str) -> tuple[float, str]:
    """Score how well `query` matches `target`.

    Returns:
        (score, match_type) where match_type is one of "exact",
        "normalized", "partial" or "fuzzy".
    """
    if query.lower() == target.lower():
        return 1.0, "exact"

    norm_query = normalize_name(query)
    norm_target = normalize_name(target)

    if norm_query == norm_target:
        return 0.95, "normalized"

    if norm_query in norm_target or norm_target in norm_query:
        ratio = min(len(norm_query), len(norm_target)) / max(
            len(norm_query), len(norm_target)
        )
        return 0.7 + ratio * 0.2, "partial"

    max_len = max(len(norm_query), len(norm_target))
    if max_len == 0:
        return 0.0, "fuzzy"
    distance = levenshtein_distance(norm_query, norm_target)
    return max(0.0, 1 - distance / max_len), "fuzzy"
