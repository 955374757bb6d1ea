"""
common/text_normalization.py - Free-text identifier normalization

One normalization is used everywhere a free-text identifier is compared
(corpus indexing, entity resolution, keyword overlap), so "PD-L1", "PDL1"
and "pd l1" style spellings collapse before any comparison.

Rules, applied in order:
1. Unicode NFKD, combining marks dropped ("Sjögren" -> "sjogren")
2. Lower-case
3. Hyphens, apostrophes and periods removed ("PD-L1" -> "pdl1", "Crohn's" -> "crohns")
4. Every other non-alphanumeric run becomes one space ("BRCA1/2" -> "brca1 2")
5. Whitespace collapsed and trimmed

Author: Wake Robin Capital Management
Version: 1.0.0
"""

import re
import unicodedata
from typing import Iterable, List, Optional, Tuple

__version__ = "1.0.0"

# Characters that join the surrounding word rather than split it
_JOINERS = re.compile(r"[\-‐-―'‘’.]")
_SEPARATORS = re.compile(r"[^a-z0-9]+")


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize a free-text identifier for comparison.

    Examples:
        >>> normalize_text("PD-L1 (TPS & CPS)")
        'pdl1 tps cps'
        >>> normalize_text("  Crohn's   Disease ")
        'crohns disease'
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    joined = _JOINERS.sub("", stripped.lower())
    return _SEPARATORS.sub(" ", joined).strip()


def tokenize(text: Optional[str]) -> Tuple[str, ...]:
    """Normalized whitespace tokens of text."""
    normalized = normalize_text(text)
    return tuple(normalized.split()) if normalized else ()


def contains_phrase(haystack_tokens: Tuple[str, ...], needle_tokens: Tuple[str, ...]) -> bool:
    """True if needle_tokens appear contiguously inside haystack_tokens."""
    if not needle_tokens or len(needle_tokens) > len(haystack_tokens):
        return False
    width = len(needle_tokens)
    return any(
        haystack_tokens[i:i + width] == needle_tokens
        for i in range(len(haystack_tokens) - width + 1)
    )


def keyword_set(phrases: Iterable[str], min_length: int = 3) -> List[str]:
    """
    Distinct normalized tokens from a list of phrases, dropping short
    filler tokens. Order follows first appearance.
    """
    seen: List[str] = []
    for phrase in phrases:
        for token in tokenize(phrase):
            if len(token) >= min_length and token not in seen:
                seen.append(token)
    return seen


def readable_label(identifier: str) -> str:
    """'checkpoint_inhibitor_pd1' -> 'Checkpoint Inhibitor Pd1'."""
    return " ".join(part.capitalize() for part in re.split(r"[_\s]+", identifier) if part)


__all__ = [
    "normalize_text",
    "tokenize",
    "contains_phrase",
    "keyword_set",
    "readable_label",
]
