"""
Funnel configuration.

All tunable weights and thresholds live here so that tuning never touches
pipeline control flow. Thresholds that depend on query complexity come from
COMPLEXITY_DEFAULTS unless the caller overrides them explicitly.
"""

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from literature_funnel.models import QueryComplexity, StageThresholds


class FunnelConfigError(ValueError):
    """Raised at funnel entry when the configuration is unusable."""


# Nominal minimum BM25 relevance and top-K budget per complexity.
# Broad queries get a permissive floor and a larger neural budget.
COMPLEXITY_DEFAULTS: Dict[QueryComplexity, Dict[str, float]] = {
    QueryComplexity.BROAD: {"min_relevance_score": 1.0, "top_k_for_neural_scoring": 1500},
    QueryComplexity.SPECIFIC: {"min_relevance_score": 2.0, "top_k_for_neural_scoring": 800},
    QueryComplexity.COMPREHENSIVE: {"min_relevance_score": 2.0, "top_k_for_neural_scoring": 1200},
}


class QualityParams(BaseModel):
    """Weights and normalization curves for the quality score."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Adaptive weights: with journal metrics / without
    citation_weight_with_journal: float = Field(0.30, ge=0)
    prestige_weight_with_journal: float = Field(0.50, ge=0)
    recency_weight_with_journal: float = Field(0.20, ge=0)
    citation_weight_without_journal: float = Field(0.60, ge=0)
    recency_weight_without_journal: float = Field(0.40, ge=0)

    # Citation counts are log-scaled against this saturation point
    citation_saturation: int = Field(1000, gt=0)
    # Used when no journal table is loaded to percentile-rank impact factors
    impact_factor_saturation: float = Field(20.0, gt=0)
    h_index_saturation: int = Field(500, gt=0)
    recency_half_life_years: float = Field(8.0, gt=0)
    neutral_recency: float = Field(0.5, ge=0, le=1)

    @model_validator(mode="after")
    def _check_weights(self) -> "QualityParams":
        with_journal = (
            self.citation_weight_with_journal
            + self.prestige_weight_with_journal
            + self.recency_weight_with_journal
        )
        without_journal = self.citation_weight_without_journal + self.recency_weight_without_journal
        for label, total in (("with journal", with_journal), ("without journal", without_journal)):
            if abs(total - 1.0) > 1e-6:
                raise ValueError(f"quality weights {label} must sum to 1.0, got {total:.3f}")
        return self


class FunnelConfig(BaseModel):
    """Caller-facing options for one funnel run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_relevance_score: Optional[float] = Field(None, ge=0)
    bm25_multiplier: float = Field(1.25, ge=0)
    quality_threshold: float = Field(40.0, ge=0, le=100)
    top_k_for_neural_scoring: Optional[int] = Field(None, ge=1)
    target_final_count: int = Field(300, ge=1)
    min_acceptable_count: int = Field(200, ge=0)
    max_share_per_source: float = Field(0.4, gt=0, le=1)

    # Last-resort pass when too few candidates survive
    relaxed_bm25_multiplier: float = Field(1.0, ge=0)
    relaxed_quality_threshold: float = Field(20.0, ge=0, le=100)
    max_relaxation_passes: int = Field(1, ge=0, le=1)

    # compositeRelevance = bm25_weight * bm25_norm + neural_weight * neural_norm
    bm25_weight: float = Field(0.3, ge=0)
    neural_weight: float = Field(0.7, ge=0)

    require_abstract: bool = True
    neural_batch_size: int = Field(32, ge=1)
    quality: QualityParams = Field(default_factory=QualityParams)

    @model_validator(mode="after")
    def _check_consistency(self) -> "FunnelConfig":
        if self.relaxed_bm25_multiplier > self.bm25_multiplier:
            raise ValueError("relaxed_bm25_multiplier must not exceed bm25_multiplier")
        if self.relaxed_quality_threshold > self.quality_threshold:
            raise ValueError("relaxed_quality_threshold must not exceed quality_threshold")
        if self.bm25_weight + self.neural_weight <= 0:
            raise ValueError("bm25_weight and neural_weight cannot both be zero")
        if self.min_acceptable_count > self.target_final_count:
            raise ValueError("min_acceptable_count must not exceed target_final_count")
        return self

    def thresholds_for(self, complexity: QueryComplexity) -> StageThresholds:
        """Thresholds for one search: complexity defaults plus explicit overrides."""
        defaults = COMPLEXITY_DEFAULTS[complexity]
        min_relevance = self.min_relevance_score
        if min_relevance is None:
            min_relevance = defaults["min_relevance_score"]
        top_k = self.top_k_for_neural_scoring
        if top_k is None:
            top_k = int(defaults["top_k_for_neural_scoring"])
        return StageThresholds(
            min_relevance_score=float(min_relevance),
            bm25_multiplier=self.bm25_multiplier,
            quality_threshold=self.quality_threshold,
            top_k_for_neural_scoring=top_k,
            target_final_count=self.target_final_count,
        )


def resolve_config(config: Union[FunnelConfig, Mapping[str, Any], None]) -> FunnelConfig:
    """Accept a FunnelConfig, a plain mapping or None; fail fast on bad values."""
    if config is None:
        return FunnelConfig()
    if isinstance(config, FunnelConfig):
        return config
    if not isinstance(config, Mapping):
        raise FunnelConfigError(f"Unsupported config type: {type(config).__name__}")
    try:
        return FunnelConfig.model_validate(dict(config))
    except ValidationError as e:
        raise FunnelConfigError(f"Invalid funnel configuration: {e}") from e


def load_config(path: Union[str, Path]) -> FunnelConfig:
    """Read a FunnelConfig from a JSON file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise FunnelConfigError(f"Cannot read funnel config {path}: {e}") from e
    return resolve_config(data)
