"""
Run diagnostics for the funnel: wall-clock seconds per stage and bucketed
score distributions.
"""

import logging
import time
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, Sequence

import numpy as np

from literature_funnel.cancellation import CancellationToken
from literature_funnel.models import ScoreDistribution

logger = logging.getLogger(__name__)

BIN_LABELS = ("very_low", "low", "medium", "high", "excellent")

# Lower bin edges: a value equal to an edge falls in the upper bin
BM25_EDGES = (3.0, 5.0, 10.0, 20.0)
RELEVANCE_EDGES = (0.2, 0.4, 0.6, 0.8)
QUALITY_EDGES = (20.0, 40.0, 60.0, 80.0)


class StageClock:
    """Times named stages; entering a stage is also a cancellation checkpoint."""

    def __init__(self, token: CancellationToken):
        self.token = token
        self.timings: Dict[str, float] = {}

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        self.token.raise_if_cancelled()
        started = time.monotonic()
        try:
            yield
        finally:
            elapsed = time.monotonic() - started
            self.timings[name] = self.timings.get(name, 0.0) + elapsed
            logger.debug(f"Stage {name} took {elapsed:.4f}s")


def score_distribution(values: Iterable[float], edges: Sequence[float]) -> ScoreDistribution:
    """Min, max, mean and per-bin counts of `values` over len(edges) + 1 bins."""
    if len(edges) != len(BIN_LABELS) - 1:
        raise ValueError(f"Expected {len(BIN_LABELS) - 1} bin edges, got {len(edges)}")
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return ScoreDistribution(count=0, minimum=0.0, maximum=0.0, mean=0.0, bins={label: 0 for label in BIN_LABELS})
    counts = np.bincount(np.digitize(arr, edges), minlength=len(BIN_LABELS))
    return ScoreDistribution(
        count=int(arr.size),
        minimum=float(arr.min()),
        maximum=float(arr.max()),
        mean=float(arr.mean()),
        bins={label: int(n) for label, n in zip(BIN_LABELS, counts)},
    )
