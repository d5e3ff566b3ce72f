"""
Lexical relevance: Okapi BM25 over field-weighted candidate text.

Each candidate becomes one token stream in which title tokens are repeated
TITLE_WEIGHT times and keyword tokens KEYWORD_WEIGHT times, so title matches
contribute more than abstract matches. Corpus statistics (avgdl, document
frequencies) are fit once per search over the whole comparison population.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence

import numpy as np
from rank_bm25 import BM25Okapi

from literature_funnel.models import Candidate
from literature_funnel.text import tokenize

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 3
KEYWORD_WEIGHT = 2
ABSTRACT_WEIGHT = 1

K1 = 1.5
B = 0.75


class NonNegativeBM25(BM25Okapi):
    """
    Okapi BM25 with the Lucene IDF: log(1 + (N - n + 0.5) / (n + 0.5)).

    IDF stays positive even for a term present in every document, so a
    candidate containing a query term always scores above 0.
    """

    def _calc_idf(self, nd):
        for word, freq in nd.items():
            self.idf[word] = math.log(1.0 + (self.corpus_size - freq + 0.5) / (freq + 0.5))


def document_tokens(
    candidate: Candidate,
    title_weight: int = TITLE_WEIGHT,
    keyword_weight: int = KEYWORD_WEIGHT,
    abstract_weight: int = ABSTRACT_WEIGHT,
) -> List[str]:
    """The weighted token stream BM25 sees for one candidate."""
    title = tokenize(candidate.title)
    keywords = tokenize(" ".join(sorted(candidate.keywords)))
    abstract = tokenize(candidate.abstract or "")
    return title * title_weight + keywords * keyword_weight + abstract * abstract_weight


class LexicalIndex:
    """BM25 statistics fit over one search's candidate set. Read-only once built."""

    def __init__(self, candidates: Sequence[Candidate], corpus: List[List[str]], k1: float = K1, b: float = B):
        self.candidates = list(candidates)
        self._positions: Dict[int, int] = {id(c): i for i, c in enumerate(self.candidates)}
        self._bm25: Optional[NonNegativeBM25] = None
        # BM25 divides by the corpus size and by avgdl
        if corpus and any(corpus):
            self._bm25 = NonNegativeBM25(corpus, k1=k1, b=b)
        self._cache: Dict[tuple, np.ndarray] = {}

    def __len__(self) -> int:
        return len(self.candidates)

    def score_all(self, query_terms: Sequence[str]) -> np.ndarray:
        """One clamped, non-negative score per fitted candidate, in fit order."""
        key = tuple(query_terms)
        if key not in self._cache:
            if self._bm25 is None or not key:
                scores = np.zeros(len(self.candidates), dtype=float)
            else:
                scores = np.maximum(np.asarray(self._bm25.get_scores(list(key)), dtype=float), 0.0)
            self._cache[key] = scores
        return self._cache[key]

    def score(self, query_terms: Sequence[str], candidate: Candidate) -> float:
        """Score one fitted candidate; candidates outside the corpus score 0."""
        position = self._positions.get(id(candidate))
        if position is None:
            return 0.0
        return float(self.score_all(query_terms)[position])


class BM25Scorer:
    """Builds a LexicalIndex per search."""

    def __init__(
        self,
        title_weight: int = TITLE_WEIGHT,
        keyword_weight: int = KEYWORD_WEIGHT,
        abstract_weight: int = ABSTRACT_WEIGHT,
        k1: float = K1,
        b: float = B,
    ):
        self.title_weight = title_weight
        self.keyword_weight = keyword_weight
        self.abstract_weight = abstract_weight
        self.k1 = k1
        self.b = b

    def fit(self, candidates: Sequence[Candidate]) -> LexicalIndex:
        corpus = [
            document_tokens(c, self.title_weight, self.keyword_weight, self.abstract_weight) for c in candidates
        ]
        logger.debug(f"Fitting BM25 over {len(corpus)} documents")
        return LexicalIndex(candidates, corpus, k1=self.k1, b=self.b)


def score_bm25(query_terms: Sequence[str], candidate: Candidate, index: LexicalIndex) -> float:
    """BM25 score (>= 0) of one candidate against corpus statistics in `index`."""
    return index.score(query_terms, candidate)
