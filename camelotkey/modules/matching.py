"""Fuzzy text matching for picking the right search result."""
import re
from typing import Optional, Set

_NON_MATCH_CHARS = re.compile(r"[^\w#\s]+|_+")


def normalize_whitespace(value: Optional[str]) -> str:
    return " ".join(str(value or "").split())


def normalize_for_match(value: Optional[str]) -> str:
    """Lower-case and reduce to letters, digits, ``#`` and single spaces."""
    text = normalize_whitespace(value).lower()
    text = text.replace("’", "'").replace("‘", "'")
    text = _NON_MATCH_CHARS.sub(" ", text)
    return normalize_whitespace(text)


def _token_set(value: Optional[str]) -> Set[str]:
    return set(normalize_for_match(value).split())


def token_overlap_score(a: Optional[str], b: Optional[str]) -> float:
    """Shared tokens divided by the size of the larger token set.

    Tolerates word reordering and extra qualifiers such as "Remastered".
    Returns 0.0 if either side has no tokens.
    """
    tokens_a = _token_set(a)
    tokens_b = _token_set(b)
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


def escape_search_phrase(value: Optional[str]) -> str:
    """Escape backslashes and double quotes for a Lucene phrase query."""
    return normalize_whitespace(value).replace("\\", "\\\\").replace('"', '\\"')
