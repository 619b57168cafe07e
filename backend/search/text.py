"""
In-process text primitives used by the in-memory catalogue.

Mirrors the two storage functions the search subsystem relies on:
- ``similarity(a, b)``: pg_trgm trigram similarity in [0, 1].
- ``text_match`` / ``text_rank``: ``plainto_tsquery('english', q)`` matching
  against a weighted document, with the rank squashed into [0, 1].
"""
from __future__ import annotations

import re
from functools import lru_cache

from nltk.stem.snowball import SnowballStemmer
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS

_WORD_RE = re.compile(r"[^\W_]+")
_stemmer = SnowballStemmer("english")

# Postgres default ts_rank weights for A, B, C, D labels
FIELD_WEIGHTS: dict[str, float] = {"A": 1.0, "B": 0.4, "C": 0.2, "D": 0.1}


def _words(text: str | None) -> list[str]:
    if not text:
        return []
    return _WORD_RE.findall(str(text).lower())


@lru_cache(maxsize=4096)
def trigrams(text: str) -> frozenset[str]:
    """Return the pg_trgm trigram set for *text*.

    Every word is lower-cased and padded with two leading blanks and one
    trailing blank before the three-character windows are taken.
    """
    grams: set[str] = set()
    for word in _words(text):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def similarity(a: str | None, b: str | None) -> float:
    """Trigram similarity: shared trigrams over the union of both sets."""
    if not isinstance(a, str) or not isinstance(b, str) or not a or not b:
        return 0.0
    ta = trigrams(a)
    tb = trigrams(b)
    if not ta or not tb:
        return 0.0
    common = len(ta & tb)
    return common / (len(ta) + len(tb) - common)


@lru_cache(maxsize=4096)
def lexemes(text: str) -> tuple[str, ...]:
    """Stemmed, stop-word free lexemes in order of appearance."""
    out: list[str] = []
    for word in _words(text):
        if word in ENGLISH_STOP_WORDS:
            continue
        out.append(_stemmer.stem(word))
    return tuple(out)


def query_lexemes(query: str | None) -> tuple[str, ...]:
    """Distinct lexemes of a plain-text query, as ``plainto_tsquery`` parses it."""
    if not query:
        return ()
    return tuple(dict.fromkeys(lexemes(query)))


def build_document(weighted_fields: dict[str, str | None]) -> dict[str, str]:
    """Map each lexeme of a document to the best weight label it carries.

    *weighted_fields* maps a weight label (``"A"``..``"D"``) to field text.
    """
    doc: dict[str, str] = {}
    for label in sorted(weighted_fields):
        value = weighted_fields[label]
        if not isinstance(value, str):
            continue
        for lex in lexemes(value):
            doc.setdefault(lex, label)
    return doc


def text_match(document: dict[str, str], query: str | None) -> bool:
    """True when every query lexeme occurs in the document."""
    terms = query_lexemes(query)
    if not terms:
        return False
    return all(t in document for t in terms)


def text_rank(document: dict[str, str], query: str | None) -> float:
    """Weighted lexeme coverage of *query* in *document*, in [0, 1]."""
    terms = query_lexemes(query)
    if not terms:
        return 0.0
    total = sum(FIELD_WEIGHTS[document[t]] for t in terms if t in document)
    return total / len(terms)


def contains(haystack: str | None, needle: str | None) -> bool:
    """Case-insensitive substring test, the in-memory ``ILIKE '%needle%'``."""
    if not isinstance(haystack, str) or not needle:
        return False
    return needle.lower() in haystack.lower()
