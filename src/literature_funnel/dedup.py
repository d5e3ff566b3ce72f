"""
Deduplication: collapse candidates that are the same underlying work.

1. Exact match on normalized identifier (DOI)
2. Fuzzy match on normalized title within blocks sharing the first title
   tokens, confirmed by author-surname overlap when both sides list authors

The most complete record survives and the other sources are recorded in
`also_found_in`. Merging repeats until nothing changes, so running
deduplicate() on its own output is a no-op.
"""

import logging
from dataclasses import replace
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from fuzzywuzzy import fuzz

from literature_funnel.models import Candidate
from literature_funnel.text import normalize_identifier, normalize_title

logger = logging.getLogger(__name__)

TITLE_THRESHOLD = 0.93
AUTHOR_THRESHOLD = 0.5
BLOCK_TOKENS = 3


def completeness(candidate: Candidate) -> Tuple[int, ...]:
    """Sort key: more filled-in metadata wins."""
    return (
        1 if candidate.abstract else 0,
        1 if candidate.venue else 0,
        len(candidate.authors),
        1 if candidate.external_id else 0,
        1 if candidate.year is not None else 0,
        len(candidate.keywords),
    )


def author_surnames(candidate: Candidate) -> FrozenSet[str]:
    surnames = set()
    for name in candidate.authors:
        parts = normalize_title(name).split()
        if parts:
            surnames.add(parts[-1])
    return frozenset(surnames)


def author_overlap(a: Candidate, b: Candidate) -> Optional[float]:
    """Jaccard overlap of author surnames, or None when either side has none."""
    sa, sb = author_surnames(a), author_surnames(b)
    if not sa or not sb:
        return None
    return len(sa & sb) / len(sa | sb)


def title_similarity(a: str, b: str) -> float:
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    # fuzz.ratio is 0-100
    return fuzz.ratio(na, nb) / 100.0


def is_duplicate(
    a: Candidate,
    b: Candidate,
    title_threshold: float = TITLE_THRESHOLD,
    author_threshold: float = AUTHOR_THRESHOLD,
) -> bool:
    id_a, id_b = normalize_identifier(a.external_id or ""), normalize_identifier(b.external_id or "")
    if id_a and id_b and id_a == id_b:
        return True
    if title_similarity(a.title, b.title) < title_threshold:
        return False
    overlap = author_overlap(a, b)
    return overlap is None or overlap >= author_threshold


def merge(keep: Candidate, drop: Candidate) -> Candidate:
    """Survivor of a duplicate pair, carrying the other's provenance."""
    if completeness(drop) > completeness(keep):
        keep, drop = drop, keep
    found_in = list(keep.also_found_in)
    for source in (drop.source, *drop.also_found_in):
        if source != keep.source and source not in found_in:
            found_in.append(source)
    return replace(keep, also_found_in=tuple(found_in))


def _block_key(candidate: Candidate) -> str:
    return " ".join(normalize_title(candidate.title).split()[:BLOCK_TOKENS])


def _merge_pass(
    candidates: Sequence[Candidate],
    title_threshold: float,
    author_threshold: float,
) -> List[Candidate]:
    survivors: List[Candidate] = []
    by_id: Dict[str, int] = {}
    by_block: Dict[str, List[int]] = {}

    for candidate in candidates:
        ident = normalize_identifier(candidate.external_id or "")
        match: Optional[int] = by_id.get(ident) if ident else None
        if match is None:
            for pos in by_block.get(_block_key(candidate), []):
                if is_duplicate(survivors[pos], candidate, title_threshold, author_threshold):
                    match = pos
                    break

        if match is None:
            survivors.append(candidate)
            pos = len(survivors) - 1
        else:
            pos = match
            survivors[pos] = merge(survivors[pos], candidate)
            logger.debug(f"Duplicate collapsed: {candidate.title[:60]!r} ({candidate.source})")

        merged_ident = normalize_identifier(survivors[pos].external_id or "")
        for key in {ident, merged_ident}:
            if key:
                by_id.setdefault(key, pos)
        block = by_block.setdefault(_block_key(candidate), [])
        if pos not in block:
            block.append(pos)
        survivor_block = by_block.setdefault(_block_key(survivors[pos]), [])
        if pos not in survivor_block:
            survivor_block.append(pos)

    return survivors


def deduplicate(
    candidates: Sequence[Candidate],
    title_threshold: float = TITLE_THRESHOLD,
    author_threshold: float = AUTHOR_THRESHOLD,
) -> List[Candidate]:
    """
    Collapse duplicates across all sources.

    Output keeps first-seen order; re-running on the output changes nothing.
    """
    current = list(candidates)
    while True:
        merged = _merge_pass(current, title_threshold, author_threshold)
        if len(merged) == len(current):
            break
        current = merged

    logger.info(f"Deduplicated {len(candidates)} candidates into {len(current)} (removed {len(candidates) - len(current)})")
    return current
