"""
Funnel orchestrator.

Runs the pipeline: dedupe -> quality (annotate) -> structural filter -> BM25
threshold -> Top-K -> neural -> domain/aspect -> sort -> quality threshold ->
diversity

Stage order matters:
- dedup before scoring so duplicates are neither scored twice nor counted twice for diversity
- BM25 is cheap, neural is expensive, so neural only sees the BM25 Top-K
- quality is query-independent, so it filters only after relevance is known
- diversity runs last, on the already small, relevant, quality-passing set

Each stage returns a new list of new ScoredCandidate instances. If too few
candidates survive, one relaxation pass re-runs from the BM25 stage on the
structurally valid set with looser thresholds.

Every stage runs under a StageClock, which checks for cancellation on entry
and records the stage's wall-clock seconds in the result.
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from literature_funnel.bm25 import BM25Scorer
from literature_funnel.cancellation import CancellationToken
from literature_funnel.config import FunnelConfig, resolve_config
from literature_funnel.dedup import deduplicate
from literature_funnel.diversity import enforce_diversity, source_distribution
from literature_funnel.domain import DomainAspectMatcher
from literature_funnel.models import (
    Candidate,
    FunnelResult,
    QueryProfile,
    RelaxationReport,
    ScoredCandidate,
    StageCounts,
)
from literature_funnel.neural import NeuralScorer, normalize_cosine
from literature_funnel.quality import QualityScorer
from literature_funnel.query import build_query_profile
from literature_funnel.reporting import BM25_EDGES, QUALITY_EDGES, RELEVANCE_EDGES, StageClock, score_distribution

logger = logging.getLogger(__name__)


class QualityScoring(Protocol):
    def score(self, candidate: Candidate) -> Optional[float]: ...


class NeuralScoring(Protocol):
    def score_many(self, query: str, candidates: Sequence[Candidate]) -> List[float]: ...


@dataclass(frozen=True)
class _PassSettings:
    bm25_multiplier: float
    quality_threshold: float


@dataclass
class _PassOutcome:
    final: List[ScoredCandidate]
    bm25_passed: int
    top_k: int
    neural_scored: int
    domain_aspect_passed: int
    quality_passed: int
    neural_failed: bool


def composite_relevance(
    bm25_score: float,
    max_bm25: float,
    neural_score: Optional[float],
    bm25_weight: float = 0.3,
    neural_weight: float = 0.7,
) -> float:
    """
    Weighted blend of normalized BM25 and cosine, in [0, 1].

    bm25_norm = bm25 / max bm25 in the Top-K; neural_norm = (cos + 1) / 2.
    Without a neural score the composite is bm25_norm alone.
    """
    bm25_norm = bm25_score / max_bm25 if max_bm25 > 0 else 0.0
    if neural_score is None:
        return bm25_norm
    total = bm25_weight + neural_weight
    return (bm25_weight * bm25_norm + neural_weight * normalize_cosine(neural_score)) / total


def passes_quality(scored: ScoredCandidate, threshold: float) -> bool:
    """Missing quality counts as 0 and fails any positive threshold."""
    return scored.effective_quality >= threshold


def passes_bm25(scored: ScoredCandidate, threshold: float) -> bool:
    """Inclusive: a score exactly at the threshold passes."""
    return scored.bm25_score >= threshold


def is_structurally_valid(candidate: Candidate, require_abstract: bool = True) -> bool:
    if not candidate.title or not candidate.title.strip():
        return False
    if require_abstract and not (candidate.abstract and candidate.abstract.strip()):
        return False
    return True


def run_funnel(
    query: str,
    source_candidates: Sequence[Sequence[Candidate]],
    config: Union[FunnelConfig, Mapping[str, Any], None] = None,
    *,
    quality_scorer: Optional[QualityScoring] = None,
    lexical_scorer: Optional[BM25Scorer] = None,
    neural_scorer: Optional[NeuralScoring] = None,
    domain_matcher: Optional[DomainAspectMatcher] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> FunnelResult:
    """
    Narrow raw per-source candidate lists to a bounded, diverse, deduplicated set.

    Only configuration errors (FunnelConfigError) and cancellation
    (SearchCancelled) propagate; empty input yields an empty result.
    """
    cfg = resolve_config(config)
    token = cancel_token or CancellationToken()
    quality_scorer = quality_scorer or QualityScorer(params=cfg.quality)
    lexical_scorer = lexical_scorer or BM25Scorer()
    # The default embedder loads its model on first use, i.e. only if a Top-K exists
    neural_scorer = neural_scorer or NeuralScorer(batch_size=cfg.neural_batch_size)
    domain_matcher = domain_matcher or DomainAspectMatcher()

    token.raise_if_cancelled()
    clock = StageClock(token)
    run_started = time.monotonic()
    flattened = [c for source_list in source_candidates for c in source_list]
    profile = build_query_profile(query, cfg)
    counts = StageCounts(collected=len(flattened))
    warnings: List[str] = []

    if not flattened:
        logger.info("No candidates collected; returning empty result")
        return FunnelResult(profile=profile, stage_counts=counts, warnings=warnings, stage_timings={"total": 0.0})

    # --- Dedupe ---
    with clock.stage("dedup"):
        unique = deduplicate(flattened)
    counts.deduplicated = len(unique)

    # --- Quality (annotate only) ---
    with clock.stage("quality_scoring"):
        annotated = [ScoredCandidate(candidate=c, quality_score=quality_scorer.score(c)) for c in unique]
    counts.quality_scored = len(annotated)
    logger.info(f"Quality scored {len(annotated)} candidates")

    # --- Structural filter ---
    with clock.stage("structural_filter"):
        structural = [s for s in annotated if is_structurally_valid(s.candidate, cfg.require_abstract)]
    counts.structurally_valid = len(structural)
    logger.info(f"Structural filter: {len(annotated)} -> {len(structural)} candidates")

    # --- BM25 (fit once over the structurally valid set) ---
    with clock.stage("bm25_scoring"):
        index = lexical_scorer.fit([s.candidate for s in structural])
        bm25_scores = index.score_all(list(profile.terms))
        structural = [replace(s, bm25_score=float(score)) for s, score in zip(structural, bm25_scores)]
    bm25_distribution = score_distribution((s.bm25_score for s in structural), BM25_EDGES)
    if structural and bm25_distribution.maximum == 0.0:
        logger.warning(f"All {len(structural)} BM25 scores are 0 for terms {list(profile.terms)}")
        warnings.append("No candidate matched any query term lexically (all BM25 scores are 0)")

    # Cosines by candidate identity, reused by the relaxation pass
    neural_cache: Dict[int, float] = {}

    settings = _PassSettings(profile.thresholds.bm25_multiplier, profile.thresholds.quality_threshold)
    outcome = _relevance_pass(profile, structural, settings, cfg, neural_scorer, neural_cache, domain_matcher, clock)

    relaxation: Optional[RelaxationReport] = None
    if (
        len(outcome.final) < cfg.min_acceptable_count
        and structural
        and cfg.max_relaxation_passes > 0
    ):
        relaxed = _PassSettings(
            min(cfg.relaxed_bm25_multiplier, settings.bm25_multiplier),
            min(cfg.relaxed_quality_threshold, settings.quality_threshold),
        )
        if relaxed != settings:
            count_before = len(outcome.final)
            logger.warning(
                f"Only {count_before} candidates (minimum {cfg.min_acceptable_count}); relaxing "
                f"bm25 multiplier {settings.bm25_multiplier} -> {relaxed.bm25_multiplier}, "
                f"quality threshold {settings.quality_threshold} -> {relaxed.quality_threshold}"
            )
            outcome = _relevance_pass(
                profile, structural, relaxed, cfg, neural_scorer, neural_cache, domain_matcher, clock, prefix="relaxed_"
            )
            relaxation = RelaxationReport(
                reason=f"{count_before} candidates below minimum acceptable count {cfg.min_acceptable_count}",
                count_before=count_before,
                count_after=len(outcome.final),
                bm25_multiplier_before=settings.bm25_multiplier,
                bm25_multiplier_after=relaxed.bm25_multiplier,
                quality_threshold_before=settings.quality_threshold,
                quality_threshold_after=relaxed.quality_threshold,
                met_minimum=len(outcome.final) >= cfg.min_acceptable_count,
            )
            warnings.append(
                f"Thresholds relaxed (bm25 multiplier {relaxed.bm25_multiplier}, "
                f"quality threshold {relaxed.quality_threshold}): {count_before} -> {len(outcome.final)} candidates"
            )

    # Only the pass that produced the result decides the ranking disclosure
    if outcome.neural_failed:
        warnings.append("Neural scoring unavailable; ranked by BM25 only")
    if len(outcome.final) < cfg.min_acceptable_count:
        warnings.append(
            f"Returned {len(outcome.final)} candidates, below minimum acceptable count {cfg.min_acceptable_count}"
        )

    counts.bm25_passed = outcome.bm25_passed
    counts.top_k = outcome.top_k
    counts.neural_scored = outcome.neural_scored
    counts.domain_aspect_passed = outcome.domain_aspect_passed
    counts.quality_passed = outcome.quality_passed
    counts.final = len(outcome.final)

    clock.timings["total"] = time.monotonic() - run_started
    distribution = source_distribution(outcome.final)
    logger.info(f"Funnel complete: {counts.collected} -> {counts.final} candidates, sources {distribution}")
    return FunnelResult(
        profile=profile,
        candidates=outcome.final,
        stage_counts=counts,
        source_distribution=distribution,
        relaxation=relaxation,
        warnings=warnings,
        stage_timings=clock.timings,
        score_distributions={
            "bm25": bm25_distribution,
            "composite_relevance": score_distribution((s.composite_relevance for s in outcome.final), RELEVANCE_EDGES),
            "quality": score_distribution((s.effective_quality for s in outcome.final), QUALITY_EDGES),
        },
    )


def _relevance_pass(
    profile: QueryProfile,
    structural: List[ScoredCandidate],
    settings: _PassSettings,
    cfg: FunnelConfig,
    neural_scorer: NeuralScoring,
    neural_cache: Dict[int, float],
    domain_matcher: DomainAspectMatcher,
    clock: StageClock,
    prefix: str = "",
) -> _PassOutcome:
    """Steps from the BM25 threshold through diversity, under one set of thresholds."""
    thresholds = profile.thresholds

    # --- BM25 threshold ---
    bm25_threshold = thresholds.min_relevance_score * settings.bm25_multiplier
    with clock.stage(f"{prefix}bm25_filter"):
        bm25_passed = [s for s in structural if passes_bm25(s, bm25_threshold)]
    logger.info(f"BM25 filter (>= {bm25_threshold:.3f}): {len(structural)} -> {len(bm25_passed)} candidates")

    # --- Top-K (stable: ties keep input order) ---
    with clock.stage(f"{prefix}top_k"):
        top_k = sorted(bm25_passed, key=lambda s: s.bm25_score, reverse=True)[: thresholds.top_k_for_neural_scoring]
    logger.info(f"Top-K ({thresholds.top_k_for_neural_scoring}): {len(bm25_passed)} -> {len(top_k)} candidates")

    # --- Neural (Top-K only, reusing scores from an earlier pass) ---
    neural_failed = False
    with clock.stage(f"{prefix}neural_scoring"):
        missing = [s.candidate for s in top_k if id(s.candidate) not in neural_cache]
        if missing:
            try:
                cosines = neural_scorer.score_many(profile.raw_query, missing)
                for candidate, cosine in zip(missing, cosines):
                    neural_cache[id(candidate)] = float(cosine)
            except Exception as e:
                neural_failed = True
                logger.warning(f"Neural scoring failed, falling back to BM25-only ranking: {e}")

        max_bm25 = max((s.bm25_score for s in top_k), default=0.0)
        neural_scored = []
        for s in top_k:
            cosine = None if neural_failed else neural_cache.get(id(s.candidate))
            neural_scored.append(
                replace(
                    s,
                    neural_score=cosine,
                    composite_relevance=composite_relevance(
                        s.bm25_score, max_bm25, cosine, cfg.bm25_weight, cfg.neural_weight
                    ),
                )
            )
    logger.info(f"Neural scored {sum(1 for s in neural_scored if s.neural_score is not None)}/{len(top_k)} candidates")

    # --- Domain/aspect ---
    with clock.stage(f"{prefix}domain_aspect"):
        domain_passed = domain_matcher.filter(profile, neural_scored)

    # --- Sort by composite relevance ---
    with clock.stage(f"{prefix}sort"):
        ranked = sorted(domain_passed, key=lambda s: s.composite_relevance, reverse=True)

    # --- Quality threshold ---
    with clock.stage(f"{prefix}quality_filter"):
        quality_passed = [s for s in ranked if passes_quality(s, settings.quality_threshold)]
    logger.info(
        f"Quality filter (>= {settings.quality_threshold}): {len(ranked)} -> {len(quality_passed)} candidates"
    )

    # --- Diversity ---
    with clock.stage(f"{prefix}diversity"):
        final = enforce_diversity(
            quality_passed,
            target_count=thresholds.target_final_count,
            max_share=cfg.max_share_per_source,
            min_acceptable=cfg.min_acceptable_count,
        )
    logger.info(f"Diversity: {len(quality_passed)} -> {len(final)} candidates")

    return _PassOutcome(
        final=final,
        bm25_passed=len(bm25_passed),
        top_k=len(top_k),
        neural_scored=len(neural_scored),
        domain_aspect_passed=len(domain_passed),
        quality_passed=len(quality_passed),
        neural_failed=neural_failed,
    )
