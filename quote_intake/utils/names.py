"""
Company / person name normalization and similarity scoring.

normalize("Carhanco B.V.")  -> "carhanco"
similarity("Carhanco BV", "CARHANCO") -> 100.0

Scores are on a 0..100 scale and symmetric in their arguments.
"""
from __future__ import annotations

import re
import unicodedata

from rapidfuzz import fuzz

# Legal-entity suffixes removed as whole tokens (after dots are collapsed).
LEGAL_SUFFIXES = frozenset({
    "bv", "bvba", "bvb", "sprl", "srl", "sa", "sas", "sarl", "nv", "cv", "vof",
    "gmbh", "ag", "kg", "ug", "ohg", "ek",
    "ltd", "limited", "llc", "llp", "lp", "plc", "inc", "incorporated",
    "co", "corp", "corporation", "company",
    "spa", "sl", "slu", "oy", "ab", "as", "aps", "sro", "pty",
})

_DOTTED_ABBREV_RE = re.compile(r"\b(?:[a-z]\.){2,}")
_NON_WORD_RE = re.compile(r"[^\w]+", re.UNICODE)


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _tokens(name: str) -> list[str]:
    s = strip_accents(name or "").lower()
    # "b.v." -> "bv", "s.a." -> "sa"
    s = _DOTTED_ABBREV_RE.sub(lambda m: m.group(0).replace(".", ""), s)
    s = _NON_WORD_RE.sub(" ", s).replace("_", " ")
    return s.split()


def normalize(name: str | None) -> str:
    """Lowercase, strip diacritics and legal suffixes, collapse separators.

    A name made only of suffix tokens ("BV") keeps them, so it does not
    collapse to the empty string.
    """
    tokens = _tokens(name or "")
    kept = [t for t in tokens if t not in LEGAL_SUFFIXES]
    return " ".join(kept or tokens)


def _jaccard(a: str, b: str) -> float:
    ta, tb = set(a.split()), set(b.split())
    if not ta and not tb:
        return 100.0
    return 100.0 * len(ta & tb) / len(ta | tb)


def similarity(a: str | None, b: str | None) -> float:
    na, nb = normalize(a), normalize(b)
    if na == nb:
        return 100.0
    if not na or not nb:
        return 0.0
    char_score = fuzz.token_sort_ratio(na, nb)
    score = 0.6 * char_score + 0.4 * _jaccard(na, nb)
    return round(min(score, 100.0), 2)
