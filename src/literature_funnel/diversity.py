"""
Diversity enforcement: keep any one source from dominating the final set.

Diversity is soft: the per-source cap never pushes the result below the
minimum acceptable count when enough candidates exist to reach it.
"""

import logging
import math
from collections import Counter
from typing import Dict, List, Sequence, TypeVar

from literature_funnel.models import ScoredCandidate

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=ScoredCandidate)


def source_distribution(candidates: Sequence[ScoredCandidate]) -> Dict[str, int]:
    """Count per source, most frequent first."""
    return dict(Counter(c.source for c in candidates).most_common())


def per_source_cap(target_count: int, max_share: float) -> int:
    return max(1, math.ceil(target_count * max_share))


def enforce_diversity(
    candidates: Sequence[T],
    target_count: int,
    max_share: float = 0.4,
    min_acceptable: int = 0,
) -> List[T]:
    """
    Select up to `target_count` candidates from a relevance-ordered list.

    With two or more contributing sources each source is capped at
    ceil(target_count * max_share); excess is trimmed from the low-relevance
    end of the over-represented source. Trimmed candidates come back (best
    first) only while the total is below min(min_acceptable, len(candidates)).
    The output keeps the input order.
    """
    if target_count <= 0 or not candidates:
        return []

    sources = {c.source for c in candidates}
    if len(sources) < 2:
        return list(candidates[:target_count])

    cap = per_source_cap(target_count, max_share)
    taken: Dict[str, int] = {}
    selected: List[int] = []
    skipped: List[int] = []
    for i, c in enumerate(candidates):
        if len(selected) >= target_count:
            break
        if taken.get(c.source, 0) >= cap:
            skipped.append(i)
            continue
        taken[c.source] = taken.get(c.source, 0) + 1
        selected.append(i)

    floor = min(min_acceptable, len(candidates), target_count)
    backfilled = 0
    for i in skipped:
        if len(selected) >= floor:
            break
        selected.append(i)
        backfilled += 1

    if skipped:
        logger.info(
            f"Diversity cap {cap}/source: trimmed {len(skipped) - backfilled}, "
            f"backfilled {backfilled} to honour minimum {floor}"
        )
    return [candidates[i] for i in sorted(selected)]
