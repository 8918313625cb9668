"""Deterministic text similarity used by the in-memory provider.

Scores are in ``[0, 1]``: the larger of token Jaccard overlap and
normalized Levenshtein similarity, computed on normalized text.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from collections.abc import Mapping
from typing import Any

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def normalize_text(text: str) -> str:
    """NFC-normalize, lowercase, drop punctuation, collapse whitespace."""
    normalized = unicodedata.normalize("NFC", text).casefold()
    normalized = _PUNCTUATION_RE.sub(" ", normalized)
    return " ".join(normalized.split())


def token_jaccard(a: str, b: str) -> float:
    """Jaccard similarity on whitespace tokens."""
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    if not tokens_a and not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def _levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        return _levenshtein(b, a)
    if len(b) == 0:
        return len(a)

    prev_row = list(range(len(b) + 1))
    for i, ca in enumerate(a):
        curr_row = [i + 1]
        for j, cb in enumerate(b):
            cost = 0 if ca == cb else 1
            curr_row.append(
                min(
                    prev_row[j + 1] + 1,
                    curr_row[j] + 1,
                    prev_row[j] + cost,
                )
            )
        prev_row = curr_row
    return prev_row[-1]


def normalized_edit_distance(a: str, b: str) -> float:
    """0.0 = identical, 1.0 = completely different."""
    if not a and not b:
        return 0.0
    return _levenshtein(a, b) / max(len(a), len(b))


def text_similarity(a: str, b: str) -> float:
    """Similarity of two raw strings after normalization."""
    left = normalize_text(a)
    right = normalize_text(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return max(token_jaccard(left, right), 1.0 - normalized_edit_distance(left, right))


def searchable_values(
    record: Mapping[str, Any],
    fields: Iterable[str] | None = None,
) -> list[str]:
    """String values of *record*, skipping ``$`` metadata keys."""
    keys = list(fields) if fields is not None else list(record)
    return [
        value
        for key in keys
        if not key.startswith("$")
        for value in [record.get(key)]
        if isinstance(value, str) and value
    ]


def record_similarity(
    query: str,
    record: Mapping[str, Any],
    fields: Iterable[str] | None = None,
) -> float:
    """Best similarity between *query* and any searchable value."""
    return max(
        (text_similarity(query, value) for value in searchable_values(record, fields)),
        default=0.0,
    )


def substring_score(
    query: str,
    record: Mapping[str, Any],
    fields: Iterable[str] | None = None,
) -> float:
    """Share of query tokens found as substrings of the record's text."""
    tokens = normalize_text(query).split()
    if not tokens:
        return 0.0
    haystack = " ".join(normalize_text(v) for v in searchable_values(record, fields))
    hits = sum(1 for token in tokens if token in haystack)
    return hits / len(tokens)
