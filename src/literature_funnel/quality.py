"""
Quality scoring: citations, journal prestige and recency -> 0-100.

Each component is normalized to [0, 1] on its own before weighting:
- citation impact: log1p(citations) / log1p(saturation), capped at 1
- journal prestige: mean of impact-factor percentile, log-scaled journal
  h-index and quartile rank, over whichever of the three are known
- recency: exponential decay with a configurable half-life

When journal metrics exist the score leans on prestige (0.30/0.50/0.20);
without them it falls back to citations and recency (0.60/0.40).
"""

import csv
import json
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Union

import numpy as np

from literature_funnel.config import QualityParams
from literature_funnel.models import Candidate, JournalMetrics
from literature_funnel.text import normalize_venue

logger = logging.getLogger(__name__)

QUARTILE_SCORES = {"Q1": 1.0, "Q2": 0.75, "Q3": 0.5, "Q4": 0.25}


class JournalMetricsTable:
    """
    Read-only venue -> JournalMetrics lookup.

    Loaded once at process start and shared across searches; nothing mutates
    it after construction.
    """

    def __init__(self, metrics: Optional[Mapping[str, JournalMetrics]] = None):
        self._metrics: Dict[str, JournalMetrics] = {
            normalize_venue(venue): m for venue, m in (metrics or {}).items() if normalize_venue(venue)
        }
        factors = [m.impact_factor for m in self._metrics.values() if m.impact_factor is not None]
        self._sorted_factors = np.sort(np.asarray(factors, dtype=float))

    def __len__(self) -> int:
        return len(self._metrics)

    def lookup(self, venue: Optional[str]) -> Optional[JournalMetrics]:
        if not venue:
            return None
        return self._metrics.get(normalize_venue(venue))

    def impact_factor_percentile(self, impact_factor: float) -> Optional[float]:
        """Fraction of known journals with an impact factor <= this one."""
        if self._sorted_factors.size == 0:
            return None
        rank = np.searchsorted(self._sorted_factors, impact_factor, side="right")
        return float(rank) / float(self._sorted_factors.size)


def load_journal_metrics(path: Union[str, Path]) -> JournalMetricsTable:
    """
    Read a journal metrics file (JSON object or CSV).

    JSON: {"Venue name": {"impact_factor": 4.2, "h_index": 180, "quartile": "Q1"}, ...}
    CSV columns: venue, impact_factor, h_index, quartile
    """
    path = Path(path)
    if path.suffix.lower() == ".json":
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        rows = ({"venue": venue, **(values or {})} for venue, values in raw.items())
    else:
        with open(path, "r", encoding="utf-8", newline="") as f:
            rows = list(csv.DictReader(f))

    table = JournalMetricsTable({row["venue"]: _row_to_metrics(row) for row in rows if row.get("venue")})
    logger.info(f"Loaded journal metrics for {len(table)} venues from {path}")
    return table


def _row_to_metrics(row: Mapping[str, object]) -> JournalMetrics:
    quartile = row.get("quartile")
    return JournalMetrics(
        impact_factor=_to_float(row.get("impact_factor")),
        h_index=_to_int(row.get("h_index")),
        quartile=str(quartile).upper() if quartile else None,
    )


def _to_float(value) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


def _to_int(value) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(float(value))


def compute_citation_impact(citation_count: Optional[int], saturation: int = 1000) -> float:
    """
    Normalize citation count to 0-1 using log scale.
    Zero citations is a valid value and scores 0; 1000+ citations score 1.
    """
    if not citation_count or citation_count <= 0:
        return 0.0
    return min(math.log1p(citation_count) / math.log1p(saturation), 1.0)


def compute_recency(
    year: Optional[int],
    half_life_years: float = 8.0,
    neutral: float = 0.5,
    current_year: Optional[int] = None,
) -> float:
    """Halves every `half_life_years`; unknown year -> neutral midpoint."""
    if year is None:
        return neutral
    current_year = current_year or datetime.now().year
    age = current_year - year
    if age <= 0:
        return 1.0
    return 0.5 ** (age / half_life_years)


def compute_journal_prestige(
    metrics: JournalMetrics,
    params: QualityParams,
    table: Optional[JournalMetricsTable] = None,
) -> Optional[float]:
    """Mean of the known prestige components, or None when nothing is known."""
    parts = []
    if metrics.impact_factor is not None:
        percentile = table.impact_factor_percentile(metrics.impact_factor) if table else None
        if percentile is None:
            percentile = min(
                math.log1p(max(metrics.impact_factor, 0.0)) / math.log1p(params.impact_factor_saturation), 1.0
            )
        parts.append(percentile)
    if metrics.h_index is not None:
        parts.append(min(math.log1p(max(metrics.h_index, 0)) / math.log1p(params.h_index_saturation), 1.0))
    if metrics.quartile:
        score = QUARTILE_SCORES.get(metrics.quartile.upper())
        if score is not None:
            parts.append(score)
    if not parts:
        return None
    return sum(parts) / len(parts)


def combine_quality(
    citation_impact: float,
    recency: float,
    journal_prestige: Optional[float],
    params: QualityParams,
) -> float:
    """Adaptive weighting of normalized components -> 0-100."""
    if journal_prestige is not None:
        score = (
            citation_impact * params.citation_weight_with_journal
            + journal_prestige * params.prestige_weight_with_journal
            + recency * params.recency_weight_with_journal
        )
    else:
        score = (
            citation_impact * params.citation_weight_without_journal
            + recency * params.recency_weight_without_journal
        )
    return max(0.0, min(100.0, score * 100.0))


class QualityScorer:
    """Scores candidates with a shared, read-only journal table."""

    def __init__(
        self,
        params: Optional[QualityParams] = None,
        journal_table: Optional[JournalMetricsTable] = None,
        current_year: Optional[int] = None,
    ):
        self.params = params or QualityParams()
        self.journal_table = journal_table
        self.current_year = current_year

    def journal_metrics_for(self, candidate: Candidate) -> Optional[JournalMetrics]:
        own = JournalMetrics(candidate.impact_factor, candidate.h_index, candidate.quartile)
        if not own.is_empty():
            return own
        if self.journal_table is not None:
            return self.journal_table.lookup(candidate.venue)
        return None

    def score(self, candidate: Candidate) -> float:
        p = self.params
        citation = compute_citation_impact(candidate.citation_count, p.citation_saturation)
        recency = compute_recency(candidate.year, p.recency_half_life_years, p.neutral_recency, self.current_year)
        prestige = None
        metrics = self.journal_metrics_for(candidate)
        if metrics is not None:
            prestige = compute_journal_prestige(metrics, p, self.journal_table)
        return combine_quality(citation, recency, prestige, p)

    def score_many(self, candidates: Iterable[Candidate]) -> list:
        return [self.score(c) for c in candidates]


def score_quality(candidate: Candidate, scorer: Optional[QualityScorer] = None) -> float:
    """Quality score in [0, 100] for one candidate."""
    return (scorer or QualityScorer()).score(candidate)
