"""Detection of step output that copies the case documents verbatim.

A text field echoes the source when more than ``ECHO_THRESHOLD_PERCENT`` of
its word trigrams also occur in the document text. Fields whose names mark
them as quotations are exempt, as are fields too short to judge. Findings
become payload warnings; they never fail a step.
"""

from __future__ import annotations

import re
from typing import Any

ECHO_THRESHOLD_PERCENT = 30.0
MIN_FIELD_WORDS = 6
NGRAM_SIZE = 3

EXEMPT_KEY_PARTS = ("quote", "citation", "excerpt", "anchor", "context")

_WORD_RE = re.compile(r"\w+")


def _words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def _ngrams(words: list[str]) -> set[tuple[str, ...]]:
    return {tuple(words[i : i + NGRAM_SIZE]) for i in range(len(words) - NGRAM_SIZE + 1)}


def overlap_percent(field_text: str, source_ngrams: set[tuple[str, ...]]) -> float:
    """Share of the field's word trigrams found in the source, 0-100."""
    words = _words(field_text)
    if len(words) < MIN_FIELD_WORDS:
        return 0.0
    grams = _ngrams(words)
    if not grams:
        return 0.0
    return 100.0 * len(grams & source_ngrams) / len(grams)


def _is_exempt(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in EXEMPT_KEY_PARTS)


def find_echoed_fields(
    data: dict[str, Any],
    source_text: str,
    threshold: float = ECHO_THRESHOLD_PERCENT,
) -> list[str]:
    """Dotted paths of string fields in ``data`` that echo ``source_text``.

    Nested objects and lists are walked; list items are addressed as
    ``field[i]``. A list of strings under an exempt key is skipped whole.
    """
    source = _ngrams(_words(source_text))
    if not source:
        return []

    found: list[str] = []

    def walk(value: Any, path: str, key: str) -> None:
        if isinstance(value, dict):
            for child_key, child in value.items():
                child_path = f"{path}.{child_key}" if path else str(child_key)
                walk(child, child_path, str(child_key))
        elif isinstance(value, list):
            for index, item in enumerate(value):
                walk(item, f"{path}[{index}]", key)
        elif isinstance(value, str) and value and not _is_exempt(key):
            if overlap_percent(value, source) > threshold:
                found.append(path)

    walk(data, "", "")
    return found


def echo_warning(paths: list[str]) -> str:
    return (
        f"Fields copy the source documents: {', '.join(paths)}. "
        f"More than {ECHO_THRESHOLD_PERCENT:g}% of their wording matches the input."
    )
