"""
Description Normalizer

Bank descriptions carry a lot of noise: transfer prefixes (PIX, TED),
reference numbers, Portuguese function words and accents. Patterns are
keyed on the normalized text so that "PIX 1234 Aluguel Março" and
"pix aluguel marco" land on the same row.

normalize() is pure and total: None or empty input gives "".
"""

import re
import unicodedata
from typing import Optional

# Standalone 1-4 digit tokens (reference numbers, installments, dates)
_SHORT_NUMBERS = re.compile(r"\b\d{1,4}\b", re.ASCII)

_BANK_STOPWORDS = (
    "pix", "ted", "doc", "tev", "transf", "deb", "cred", "pag", "rec", "ref",
    "nr", "num", "nf", "cp", "dp",
    "de", "para", "em", "do", "da", "dos", "das", "o", "a", "os", "as", "e",
    "ou", "que", "com", "por", "no", "na", "nos", "nas", "um", "uma", "uns",
    "umas",
)
_STOPWORDS = re.compile(
    r"\b(" + "|".join(_BANK_STOPWORDS) + r")\b",
    re.ASCII | re.IGNORECASE,
)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def _strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def fold(text: str) -> str:
    """Case- and accent-insensitive form of a literal, for direct comparison."""
    return _strip_accents(text.strip().casefold())


def _normalize_once(text: str) -> str:
    result = _strip_accents(text.lower())
    result = _SHORT_NUMBERS.sub("", result)
    result = _STOPWORDS.sub("", result)
    result = _NON_ALPHANUMERIC.sub("", result)
    result = _WHITESPACE.sub(" ", result)
    return result.strip()


def normalize(text: Optional[str]) -> str:
    """
    Canonical form of a transaction description.

    Steps: lower-case, drop accents, drop short numbers, drop bank
    stopwords, drop punctuation, collapse whitespace.

    Dropping punctuation can glue fragments into a new stopword
    ("d.e" -> "de"), so the steps are repeated until the text is stable.
    That keeps normalize(normalize(x)) == normalize(x).
    """
    if not text:
        return ""

    result = _normalize_once(text)
    while True:
        again = _normalize_once(result)
        if again == result:
            return result
        result = again


def word_similarity(first: str, second: str) -> float:
    """
    Shared-word ratio between two normalized descriptions.

    Common words divided by the larger word count. Used for diagnostics
    only; matching itself is exact on the normalized key.
    """
    words1 = first.split() if first else []
    words2 = second.split() if second else []
    if not words1 or not words2:
        return 0.0

    vocabulary = set(words2)
    common = sum(1 for word in words1 if word in vocabulary)
    return common / max(len(words1), len(words2))
