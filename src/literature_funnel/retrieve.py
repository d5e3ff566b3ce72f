"""
Collection stage: fetch raw candidates from every source in parallel.

One asyncio task per source, each bounded by its own timeout. A source that
fails or times out contributes nothing; the error is recorded in its
SourceReport and the funnel proceeds with whatever arrived.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Sequence

from literature_funnel.backends.base import SourceClient
from literature_funnel.models import Candidate, SourceReport

logger = logging.getLogger(__name__)


@dataclass
class CollectionResult:
    """Per-source candidate lists, in the order the sources were given."""
    candidates: List[List[Candidate]] = field(default_factory=list)
    reports: List[SourceReport] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(len(c) for c in self.candidates)

    @property
    def failed_sources(self) -> List[str]:
        return [r.source for r in self.reports if not r.ok]


async def collect_from_source(
    query: str,
    source: SourceClient,
    limit: int,
    timeout: float,
) -> tuple[List[Candidate], SourceReport]:
    """Run one source search; failures become an empty list plus a report."""
    started = time.monotonic()
    try:
        candidates = await asyncio.wait_for(source.search(query, limit), timeout=timeout)
    except asyncio.TimeoutError:
        elapsed = time.monotonic() - started
        logger.warning(f"Source {source.name} timed out after {timeout:.1f}s")
        return [], SourceReport(source=source.name, elapsed_seconds=elapsed, error=f"timeout after {timeout:.1f}s")
    except Exception as e:
        elapsed = time.monotonic() - started
        logger.warning(f"Source {source.name} failed: {e}")
        return [], SourceReport(source=source.name, elapsed_seconds=elapsed, error=str(e) or type(e).__name__)

    candidates = list(candidates)[:limit]
    elapsed = time.monotonic() - started
    logger.info(f"Source {source.name}: {len(candidates)} candidates in {elapsed:.2f}s")
    return candidates, SourceReport(source=source.name, count=len(candidates), elapsed_seconds=elapsed)


async def collect_candidates(
    query: str,
    sources: Sequence[SourceClient],
    limit_per_source: int = 100,
    timeout: float = 30.0,
) -> CollectionResult:
    """
    Fan out to all sources at once.

    Cancelling the caller cancels every in-flight source call.
    """
    if not sources:
        return CollectionResult()

    tasks = [
        asyncio.create_task(collect_from_source(query, source, limit_per_source, timeout))
        for source in sources
    ]
    try:
        outcomes = await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Collection cancelled; in-flight source calls aborted")
        raise

    result = CollectionResult(
        candidates=[candidates for candidates, _ in outcomes],
        reports=[report for _, report in outcomes],
    )
    logger.info(
        f"Collected {result.total} candidates from {len(sources)} sources "
        f"({len(result.failed_sources)} failed)"
    )
    return result
