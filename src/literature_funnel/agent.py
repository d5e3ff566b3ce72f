"""
Literature Search Agent

Runs the pipeline: collect (parallel, per-source timeout) -> funnel (orchestrator)
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence, Union

from literature_funnel.backends.base import SourceClient
from literature_funnel.cancellation import CancellationToken
from literature_funnel.config import FunnelConfig, resolve_config
from literature_funnel.funnel import run_funnel
from literature_funnel.neural import NeuralScorer
from literature_funnel.quality import JournalMetricsTable, QualityScorer
from literature_funnel.retrieve import collect_candidates

logger = logging.getLogger(__name__)


class LiteratureSearchAgent:
    """Wires collection and the funnel together."""

    def __init__(
        self,
        sources: Sequence[SourceClient],
        config: Union[FunnelConfig, Mapping[str, Any], None] = None,
        journal_table: Optional[JournalMetricsTable] = None,
        neural_scorer: Optional[NeuralScorer] = None,
        limit_per_source: int = 100,
        timeout: float = 30.0,
    ):
        self.sources = list(sources)
        self.config = resolve_config(config)
        self.quality_scorer = QualityScorer(params=self.config.quality, journal_table=journal_table)
        self.neural_scorer = neural_scorer
        self.limit_per_source = limit_per_source
        self.timeout = timeout

        # Configure logging - suppress noisy httpx logs
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    async def run(self, query: str) -> dict[str, Any]:
        """Run collection and the funnel on a user query."""
        logger.info(f"Starting literature search for: {query!r}")

        # --- Step 1: Collect ---
        collection = await collect_candidates(
            query, self.sources, limit_per_source=self.limit_per_source, timeout=self.timeout
        )

        # --- Step 2: Funnel (CPU-bound, off the event loop) ---
        token = CancellationToken()
        try:
            result = await asyncio.to_thread(
                run_funnel,
                query,
                collection.candidates,
                self.config,
                quality_scorer=self.quality_scorer,
                neural_scorer=self.neural_scorer,
                cancel_token=token,
            )
        except asyncio.CancelledError:
            # The worker thread stops before its next stage
            token.cancel()
            logger.info("Search cancelled; discarding partial results")
            raise

        # Log top 3 with scores
        for s in result.candidates[:3]:
            logger.info(
                f"  - [{s.source}] {s.title[:50]}... "
                f"(relevance={s.composite_relevance:.2f}, quality={s.effective_quality:.1f})"
            )

        output = result.to_dict()
        output["metadata"] = {
            "sources": [
                {
                    "source": r.source,
                    "count": r.count,
                    "elapsedSeconds": round(r.elapsed_seconds, 3),
                    "error": r.error,
                }
                for r in collection.reports
            ],
            "totalCollected": collection.total,
            "searchStrategy": "literature_funnel",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return output

    async def close(self):
        for source in self.sources:
            await source.close()
