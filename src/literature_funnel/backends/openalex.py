"""
OpenAlex API client.

Uses /works?search= with cursor paging. Abstracts arrive as an inverted index
(word -> positions) and are rebuilt into plain text.
"""

import logging
import os
from typing import Dict, List, Optional

import httpx

from literature_funnel.models import Candidate

logger = logging.getLogger(__name__)


def rebuild_abstract(inverted_index: Optional[Dict[str, List[int]]]) -> Optional[str]:
    """{"word": [positions]} -> "word word ..." in position order."""
    if not inverted_index:
        return None
    positions = []
    for word, indexes in inverted_index.items():
        for i in indexes or []:
            positions.append((i, word))
    if not positions:
        return None
    positions.sort()
    return " ".join(word for _, word in positions)


class OpenAlexClient:
    """Client for OpenAlex works search."""

    name = "openalex"

    BASE_URL = "https://api.openalex.org"
    PAGE_SIZE = 200  # API max per page

    def __init__(self, mailto: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        # Polite pool: identified requests get better rate limits
        self.mailto = mailto or os.environ.get("OPENALEX_MAILTO")
        self.client = client or httpx.AsyncClient(timeout=30.0)

    async def search(self, query: str, limit: int = 100) -> List[Candidate]:
        logger.info(f"OpenAlex search: {query!r} (limit {limit})")
        url = f"{self.BASE_URL}/works"
        candidates: List[Candidate] = []
        cursor = "*"
        while cursor and len(candidates) < limit:
            params = {
                "search": query,
                "per-page": min(limit - len(candidates), self.PAGE_SIZE),
                "cursor": cursor,
            }
            if self.mailto:
                params["mailto"] = self.mailto
            resp = await self.client.get(url, params=params)
            resp.raise_for_status()
            data = resp.json()

            results = data.get("results") or []
            for item in results:
                candidate = self._parse_work(item)
                if candidate is not None:
                    candidates.append(candidate)
            if not results:
                break
            cursor = (data.get("meta") or {}).get("next_cursor")
        return candidates[:limit]

    def _parse_work(self, item: dict) -> Optional[Candidate]:
        """Convert a work record to Candidate."""
        if not item:
            return None
        authors = []
        for authorship in item.get("authorships") or []:
            author = (authorship or {}).get("author") or {}
            if author.get("display_name"):
                authors.append(author["display_name"])

        location = item.get("primary_location") or {}
        source = location.get("source") or {}

        keywords = set()
        for entry in (item.get("keywords") or []) + (item.get("concepts") or []):
            label = (entry or {}).get("display_name")
            if label:
                keywords.add(label.lower())

        return Candidate(
            title=item.get("title") or item.get("display_name") or "",
            source=self.name,
            external_id=item.get("doi") or None,
            abstract=rebuild_abstract(item.get("abstract_inverted_index")),
            authors=tuple(authors),
            year=item.get("publication_year"),
            venue=source.get("display_name") or None,
            keywords=frozenset(keywords),
            url=location.get("landing_page_url") or item.get("id"),
            citation_count=item.get("cited_by_count"),
        )

    async def close(self):
        await self.client.aclose()
