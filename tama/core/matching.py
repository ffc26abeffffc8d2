"""Tolerant description matching for tasks, lists and list items.

Users say "the lili thing" or "check off milk"; stored content may carry
scheduling tags the bot appended ("@tuesday 3:00 PM", "(overdue)"). Both
sides are normalized, then matched by substring containment either way.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, TypeVar

_T = TypeVar("_T")

# "@tuesday", "@tomorrow 3:00 PM", "@today 15:30"
_DAY_TAG_RE = re.compile(
    r"@\w+(?:\s+\d{1,2}(?::\d{2})?\s*(?:[ap]\.?m\.?)?)?",
    re.IGNORECASE,
)
# "(overdue)", "(important)", "(due 3pm)"
_PAREN_RE = re.compile(r"\([^)]*\)")
_APOSTROPHES = str.maketrans({"‘": "'", "’": "'", "ʼ": "'", "`": "'"})
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_description(text: str | None) -> str:
    """Strip scheduling metadata, fold case, apostrophes and whitespace."""
    if not text:
        return ""
    cleaned = _DAY_TAG_RE.sub(" ", text)
    cleaned = _PAREN_RE.sub(" ", cleaned)
    cleaned = cleaned.translate(_APOSTROPHES).lower()
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def descriptions_match(query: str | None, candidate: str | None) -> bool:
    """True if either normalized string contains the other."""
    q = normalize_description(query)
    c = normalize_description(candidate)
    if not q or not c:
        return False
    return q in c or c in q


def find_first_match(
    query: str | None, candidates: Iterable[_T], key: Callable[[_T], str],
) -> _T | None:
    """Return the first candidate whose key matches *query*, or None."""
    for candidate in candidates:
        if descriptions_match(query, key(candidate)):
            return candidate
    return None
