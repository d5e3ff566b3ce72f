"""
Data models for the funnel.

The data structures that flow between the collection stage, the scorers and
the orchestrator. Every stage builds new instances rather than mutating the
ones it was given.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class QueryComplexity(str, Enum):
    """How broad the query is; drives which thresholds apply."""
    BROAD = "broad"
    SPECIFIC = "specific"
    COMPREHENSIVE = "comprehensive"


class Aspect(str, Enum):
    """The facet of inquiry a query (or a paper) is about."""
    METHOD = "method"
    OUTCOME = "outcome"
    POPULATION = "population"
    THEORY = "theory"


@dataclass(frozen=True)
class Candidate:
    """A raw bibliographic record as returned by one external source."""
    title: str
    source: str  # which source client produced it, e.g. "semantic_scholar"
    external_id: Optional[str] = None  # DOI when known
    abstract: Optional[str] = None
    authors: Tuple[str, ...] = ()
    year: Optional[int] = None
    venue: Optional[str] = None
    keywords: FrozenSet[str] = frozenset()
    url: Optional[str] = None
    citation_count: Optional[int] = None

    # Journal-level metrics, when the source knows them
    impact_factor: Optional[float] = None
    h_index: Optional[int] = None
    quartile: Optional[str] = None  # "Q1".."Q4"

    # Other sources that returned the same work (filled in by dedup)
    also_found_in: Tuple[str, ...] = ()


@dataclass(frozen=True)
class JournalMetrics:
    """Venue-level prestige metrics."""
    impact_factor: Optional[float] = None
    h_index: Optional[int] = None
    quartile: Optional[str] = None

    def is_empty(self) -> bool:
        return self.impact_factor is None and self.h_index is None and self.quartile is None


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate annotated with independently computed scores."""
    candidate: Candidate
    quality_score: Optional[float] = None  # 0-100
    bm25_score: float = 0.0
    neural_score: Optional[float] = None  # cosine, only for the top-K subset
    domain_match: bool = False
    aspect_match: bool = False
    domain: Optional[str] = None
    aspects: FrozenSet[Aspect] = frozenset()
    composite_relevance: float = 0.0

    @property
    def effective_quality(self) -> float:
        """Quality as read by threshold filters: missing counts as 0."""
        return self.quality_score if self.quality_score is not None else 0.0

    @property
    def source(self) -> str:
        return self.candidate.source

    @property
    def title(self) -> str:
        return self.candidate.title


@dataclass(frozen=True)
class StageThresholds:
    """Per-stage thresholds for one search."""
    min_relevance_score: float
    bm25_multiplier: float
    quality_threshold: float
    top_k_for_neural_scoring: int
    target_final_count: int

    @property
    def bm25_threshold(self) -> float:
        return self.min_relevance_score * self.bm25_multiplier


@dataclass(frozen=True)
class QueryProfile:
    """Everything derived once from the raw query."""
    raw_query: str
    terms: Tuple[str, ...]
    complexity: QueryComplexity
    domain: Optional[str]
    aspect: Optional[Aspect]
    thresholds: StageThresholds


@dataclass
class StageCounts:
    """How many candidates survived each stage, in pipeline order."""
    collected: int = 0
    deduplicated: int = 0
    quality_scored: int = 0
    structurally_valid: int = 0
    bm25_passed: int = 0
    top_k: int = 0
    neural_scored: int = 0
    domain_aspect_passed: int = 0
    quality_passed: int = 0
    final: int = 0

    def as_list(self) -> List[Tuple[str, int]]:
        return [(f.name, getattr(self, f.name)) for f in fields(self)]


@dataclass
class RelaxationReport:
    """Disclosed when the funnel loosened its thresholds to reach the minimum."""
    reason: str
    count_before: int
    count_after: int
    bm25_multiplier_before: float
    bm25_multiplier_after: float
    quality_threshold_before: float
    quality_threshold_after: float
    met_minimum: bool


@dataclass
class ScoreDistribution:
    """Summary of one score over a candidate set, bucketed into labelled bins."""
    count: int
    minimum: float
    maximum: float
    mean: float
    bins: Dict[str, int] = field(default_factory=dict)


@dataclass
class SourceReport:
    """Outcome of one source call during collection."""
    source: str
    count: int = 0
    elapsed_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FunnelResult:
    """Final output of one funnel run."""
    profile: Optional[QueryProfile]
    candidates: List[ScoredCandidate] = field(default_factory=list)
    stage_counts: StageCounts = field(default_factory=StageCounts)
    source_distribution: Dict[str, int] = field(default_factory=dict)
    relaxation: Optional[RelaxationReport] = None
    warnings: List[str] = field(default_factory=list)
    # Seconds per stage; relaxed-pass stages carry a "relaxed_" prefix
    stage_timings: Dict[str, float] = field(default_factory=dict)
    score_distributions: Dict[str, ScoreDistribution] = field(default_factory=dict)

    @property
    def relaxed(self) -> bool:
        return self.relaxation is not None

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-ready structure with camelCase keys."""
        profile = self.profile
        return {
            "query": profile.raw_query if profile else "",
            "complexity": profile.complexity.value if profile else None,
            "domain": profile.domain if profile else None,
            "aspect": profile.aspect.value if profile and profile.aspect else None,
            "thresholds": _thresholds_to_dict(profile.thresholds) if profile else None,
            "candidates": [_scored_to_dict(c) for c in self.candidates],
            "stageCounts": {_camel(name): count for name, count in self.stage_counts.as_list()},
            "sourceDistribution": dict(self.source_distribution),
            "relaxation": _relaxation_to_dict(self.relaxation) if self.relaxation else None,
            "warnings": list(self.warnings),
            "stageTimings": {_camel(name): round(seconds, 4) for name, seconds in self.stage_timings.items()},
            "scoreDistributions": {
                _camel(name): _distribution_to_dict(d) for name, d in self.score_distributions.items()
            },
        }


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _thresholds_to_dict(t: StageThresholds) -> Dict[str, Any]:
    return {
        "minRelevanceScore": t.min_relevance_score,
        "bm25Multiplier": t.bm25_multiplier,
        "bm25Threshold": t.bm25_threshold,
        "qualityThreshold": t.quality_threshold,
        "topKForNeuralScoring": t.top_k_for_neural_scoring,
        "targetFinalCount": t.target_final_count,
    }


def _relaxation_to_dict(r: RelaxationReport) -> Dict[str, Any]:
    return {_camel(f.name): getattr(r, f.name) for f in fields(r)}


def _distribution_to_dict(d: ScoreDistribution) -> Dict[str, Any]:
    return {
        "count": d.count,
        "min": round(d.minimum, 3),
        "max": round(d.maximum, 3),
        "mean": round(d.mean, 3),
        "bins": {_camel(label): n for label, n in d.bins.items()},
    }


def _scored_to_dict(s: ScoredCandidate) -> Dict[str, Any]:
    c = s.candidate
    return {
        "externalId": c.external_id,
        "title": c.title,
        "abstract": c.abstract,
        "authors": list(c.authors),
        "year": c.year,
        "venue": c.venue,
        "keywords": sorted(c.keywords),
        "source": c.source,
        "url": c.url,
        "citationCount": c.citation_count,
        "alsoFoundIn": list(c.also_found_in),
        "qualityScore": round(s.quality_score, 3) if s.quality_score is not None else None,
        "bm25Score": round(s.bm25_score, 3),
        "neuralScore": round(s.neural_score, 3) if s.neural_score is not None else None,
        "domain": s.domain,
        "aspects": sorted(a.value for a in s.aspects),
        "domainMatch": s.domain_match,
        "aspectMatch": s.aspect_match,
        "compositeRelevance": round(s.composite_relevance, 3),
    }
