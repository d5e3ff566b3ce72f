"""Text normalization shared by the scorers and the deduplicator."""

import re
from typing import List

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")

STOPWORDS = frozenset(
    """
    a an and are as at be been but by can do does for from has have how i if in into is it its
    of on or our over such than that the their them then there these they this to was we were
    what when where which while who why will with within without about among between across via
    using use used based study studies paper papers research
    """.split()
)


def tokenize(text: str, keep_stopwords: bool = False) -> List[str]:
    """Lowercase alphanumeric tokens, dropping stopwords and 1-char tokens."""
    if not text:
        return []
    tokens = _TOKEN_RE.findall(text.lower())
    if keep_stopwords:
        return tokens
    return [t for t in tokens if len(t) > 1 and t not in STOPWORDS]


def normalize_title(title: str) -> str:
    """Lowercased, punctuation stripped, whitespace collapsed."""
    if not title:
        return ""
    text = _PUNCT_RE.sub(" ", title.lower()).replace("_", " ")
    return _SPACE_RE.sub(" ", text).strip()


def normalize_identifier(identifier: str) -> str:
    """Comparable form of a DOI or other external identifier."""
    if not identifier:
        return ""
    value = _SPACE_RE.sub("", identifier).lower()
    for prefix in ("https://doi.org/", "http://doi.org/", "https://dx.doi.org/", "http://dx.doi.org/", "doi:"):
        if value.startswith(prefix):
            value = value[len(prefix):]
            break
    return value


def normalize_venue(venue: str) -> str:
    return normalize_title(venue)
