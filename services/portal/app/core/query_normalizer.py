"""
Free-text search normalization for the catalog list endpoint.

A raw query becomes a set of lower-cased substring patterns plus an optional
academic term constraint. Course references are expanded so that "CS1113",
"cs-1113" and "cs1113" all find rows stored as course code "CS" and course
number "1113".
"""
import re
from dataclasses import dataclass
from typing import FrozenSet, Optional

_COURSE_CODE = re.compile(r"^([a-z]+)(\d+)$", re.IGNORECASE)
_NON_ALNUM = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_TERM_TOKEN = re.compile(r"^(spring|summer|fall|winter)-?$", re.IGNORECASE)
_TERM_WITH_YEAR = re.compile(r"^(spring|summer|fall|winter)-?(\d{4})$", re.IGNORECASE)
_YEAR = re.compile(r"^\d{4}$")


@dataclass(frozen=True)
class NormalizedQuery:
    patterns: FrozenSet[str]
    term: Optional[str] = None

    @property
    def course_code_patterns(self) -> FrozenSet[str]:
        return frozenset(p for p in self.patterns if is_course_code_pattern(p))

    def __bool__(self) -> bool:
        return bool(self.patterns) or self.term is not None


def is_course_code_pattern(pattern: str) -> bool:
    """True for concatenated course references such as "cs1113"."""
    return bool(_COURSE_CODE.match(pattern))


def _extract_term(tokens):
    """
    Find the first term/year reference and return (term, index of term token).

    Both "fall 2024" (two tokens) and "fall-2024" (one token) are recognised.
    """
    for i, token in enumerate(tokens):
        joined = _TERM_WITH_YEAR.match(token)
        if joined:
            return f"{joined.group(1)} {joined.group(2)}".lower(), i
        if _TERM_TOKEN.match(token) and i + 1 < len(tokens) and _YEAR.match(tokens[i + 1]):
            return f"{token.rstrip('-')} {tokens[i + 1]}".lower(), i
    return None, None


def normalize_query(raw: Optional[str]) -> NormalizedQuery:
    """
    Normalize a free-text search string.

    Only the term token of a term/year pair is consumed; the year token stays
    in the pattern set and may match other fields on its own.
    """
    if not raw:
        return NormalizedQuery(patterns=frozenset())

    safe = raw.lower().replace("%", "")
    tokens = safe.split()

    term, term_index = _extract_term(tokens)
    if term_index is not None:
        tokens = tokens[:term_index] + tokens[term_index + 1:]

    patterns = set()
    for token in tokens:
        stripped = _NON_ALNUM.sub("", token)
        match = _COURSE_CODE.match(stripped)
        if match:
            code, number = match.groups()
            patterns.add(stripped)
            patterns.add(f"{code} {number}")
        else:
            patterns.add(token)

    patterns.discard("")
    return NormalizedQuery(patterns=frozenset(patterns), term=term)
