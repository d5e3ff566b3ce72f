"""
Neural relevance: cosine similarity between dense embeddings of the query and
each candidate's title + abstract.

This is the costliest stage, so it only ever sees the bounded Top-K subset and
embeds candidates in batches. The embedding model is loaded lazily once per
process and shared read-only across searches.
"""

import logging
import threading
from typing import Dict, List, Optional, Protocol, Sequence

import numpy as np

from literature_funnel.models import Candidate

logger = logging.getLogger(__name__)

DEFAULT_EMBED_MODEL = "BAAI/bge-small-en-v1.5"

_MODEL_CACHE: Dict[str, object] = {}
_MODEL_LOCK = threading.Lock()


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Return one embedding row per text."""
        ...


def _load_model(model_name: str):
    with _MODEL_LOCK:
        model = _MODEL_CACHE.get(model_name)
        if model is None:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model {model_name}")
            model = SentenceTransformer(model_name)
            _MODEL_CACHE[model_name] = model
        return model


class SentenceTransformerEmbedder:
    """Embedder backed by a sentence-transformers model."""

    def __init__(self, model_name: str = DEFAULT_EMBED_MODEL):
        self.model_name = model_name

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        model = _load_model(self.model_name)
        vectors = model.encode(list(texts), normalize_embeddings=True, show_progress_bar=False)
        return np.asarray(vectors, dtype=np.float32)


def candidate_text(candidate: Candidate) -> str:
    if candidate.abstract:
        return f"{candidate.title}. {candidate.abstract}"
    return candidate.title


def cosine_similarity(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine of each row of `matrix` against `query_vector`, in [-1, 1]."""
    query_vector = np.asarray(query_vector, dtype=float).ravel()
    matrix = np.atleast_2d(np.asarray(matrix, dtype=float))
    q_norm = np.linalg.norm(query_vector)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    sims = np.zeros(matrix.shape[0], dtype=float)
    nonzero = denom > 0
    sims[nonzero] = (matrix[nonzero] @ query_vector) / denom[nonzero]
    return np.clip(sims, -1.0, 1.0)


class NeuralScorer:
    """Batch cosine scorer over an Embedder."""

    def __init__(self, embedder: Optional[Embedder] = None, batch_size: int = 32):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.embedder = embedder or SentenceTransformerEmbedder()
        self.batch_size = batch_size

    def score_many(self, query: str, candidates: Sequence[Candidate]) -> List[float]:
        """
        Embed the query once and the candidates in batches.
        Returns one cosine per candidate, in input order.
        """
        if not candidates:
            return []
        query_vector = np.asarray(self.embedder.embed([query]))[0]
        scores: List[float] = []
        for start in range(0, len(candidates), self.batch_size):
            batch = candidates[start:start + self.batch_size]
            matrix = self.embedder.embed([candidate_text(c) for c in batch])
            scores.extend(float(s) for s in cosine_similarity(query_vector, matrix))
        logger.debug(f"Neural scored {len(scores)} candidates in batches of {self.batch_size}")
        return scores

    def score(self, query: str, candidate: Candidate) -> float:
        return self.score_many(query, [candidate])[0]


def score_neural(query: str, candidate: Candidate, scorer: Optional[NeuralScorer] = None) -> float:
    """Cosine similarity in [-1, 1] between query and candidate embeddings."""
    return (scorer or NeuralScorer()).score(query, candidate)


def normalize_cosine(cosine: float) -> float:
    """Map cosine from [-1, 1] to [0, 1]."""
    return (cosine + 1.0) / 2.0
