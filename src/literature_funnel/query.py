"""
Query analysis: turn the raw query into a QueryProfile.

Complexity heuristic:
- BROAD: at most two content terms and no quoted phrase
- COMPREHENSIVE: six or more content terms, or boolean operators joining clauses
- SPECIFIC: everything in between, or any quoted phrase
"""

import logging
import re

from literature_funnel.config import FunnelConfig
from literature_funnel.domain import MIN_QUERY_DOMAIN_HITS, infer_domain, infer_query_aspect
from literature_funnel.models import QueryComplexity, QueryProfile
from literature_funnel.text import tokenize

logger = logging.getLogger(__name__)

BROAD_MAX_TERMS = 2
COMPREHENSIVE_MIN_TERMS = 6

_QUOTED_RE = re.compile(r'"[^"]+"')
_BOOLEAN_RE = re.compile(r"\b(AND|OR|NOT)\b")


def classify_complexity(query: str) -> QueryComplexity:
    """Keyword count and specificity signals -> complexity class."""
    terms = tokenize(query)
    has_phrase = bool(_QUOTED_RE.search(query))
    has_boolean = bool(_BOOLEAN_RE.search(query))

    if has_boolean or len(terms) >= COMPREHENSIVE_MIN_TERMS:
        return QueryComplexity.COMPREHENSIVE
    if len(terms) <= BROAD_MAX_TERMS and not has_phrase:
        return QueryComplexity.BROAD
    return QueryComplexity.SPECIFIC


def build_query_profile(query: str, config: FunnelConfig) -> QueryProfile:
    """Computed once per search; never changes during the run."""
    complexity = classify_complexity(query)
    profile = QueryProfile(
        raw_query=query,
        terms=tuple(dict.fromkeys(tokenize(query))),
        complexity=complexity,
        domain=infer_domain(query, min_hits=MIN_QUERY_DOMAIN_HITS),
        aspect=infer_query_aspect(query),
        thresholds=config.thresholds_for(complexity),
    )
    logger.info(
        f"Query profile: complexity={complexity.value}, domain={profile.domain}, "
        f"aspect={profile.aspect.value if profile.aspect else None}, terms={list(profile.terms)}"
    )
    return profile
