import zlib
from typing import Dict, Optional, Sequence

import numpy as np
import pytest

from literature_funnel.domain import DomainAspectMatch, DomainAspectMatcher
from literature_funnel.models import Candidate
from literature_funnel.text import tokenize


def make_candidate(title: str = "Mindfulness training reduces anxiety", source: str = "semantic_scholar", **kwargs) -> Candidate:
    kwargs.setdefault("abstract", "A randomized trial of mindfulness for anxiety and depression in adults.")
    return Candidate(title=title, source=source, **kwargs)


class FakeEmbedder:
    """Deterministic bag-of-words hashing embedder."""

    def __init__(self, dim: int = 64):
        self.dim = dim
        self.calls = []

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        self.calls.append(len(texts))
        out = np.zeros((len(texts), self.dim), dtype=float)
        for row, text in enumerate(texts):
            for token in tokenize(text):
                out[row, zlib.crc32(token.encode("utf-8")) % self.dim] += 1.0
        return out


class FailingEmbedder:
    def embed(self, texts):
        raise RuntimeError("model unavailable")


class FlakyEmbedder(FakeEmbedder):
    """Fails its first `failures` calls, then embeds normally."""

    def __init__(self, failures: int = 1, dim: int = 64):
        super().__init__(dim)
        self.failures = failures

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("model warming up")
        return super().embed(texts)


class StubQualityScorer:
    """Quality looked up by external_id; unknown ids get `default`."""

    def __init__(self, scores: Dict[str, Optional[float]], default: Optional[float] = 50.0):
        self.scores = scores
        self.default = default

    def score(self, candidate: Candidate) -> Optional[float]:
        return self.scores.get(candidate.external_id, self.default)


class _StubIndex:
    def __init__(self, candidates, scores, default):
        self.candidates = list(candidates)
        self.scores = scores
        self.default = default

    def score_all(self, query_terms):
        return np.array([self.scores.get(c.external_id, self.default) for c in self.candidates], dtype=float)


class StubLexicalScorer:
    """BM25 stand-in: scores looked up by external_id."""

    def __init__(self, scores: Dict[str, float], default: float = 5.0):
        self.scores = scores
        self.default = default

    def fit(self, candidates):
        return _StubIndex(candidates, self.scores, self.default)


class AcceptAllMatcher(DomainAspectMatcher):
    def match(self, profile, candidate):
        return DomainAspectMatch(domain_match=True, aspect_match=True, domain=None, aspects=frozenset())


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def candidate_factory():
    return make_candidate
