"""
Semantic Scholar API client.

Uses the relevance-ranked /paper/search endpoint, paging with offset until
`limit` records are collected (the API caps one page at 100).
"""

import logging
import os
from typing import List, Optional

import httpx

from literature_funnel.models import Candidate

logger = logging.getLogger(__name__)


class S2Client:
    """Client for Semantic Scholar API."""

    name = "semantic_scholar"

    BASE_URL = "https://api.semanticscholar.org/graph/v1"
    PAGE_SIZE = 100

    # Fields we want for each paper
    FIELDS = "paperId,externalIds,title,abstract,year,venue,citationCount,authors,url,fieldsOfStudy,journal"

    def __init__(self, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key or os.environ.get("S2_API_KEY")
        self.client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self) -> dict:
        headers = {}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def search(self, query: str, limit: int = 100) -> List[Candidate]:
        logger.info(f"S2 search: {query!r} (limit {limit})")
        url = f"{self.BASE_URL}/paper/search"
        candidates: List[Candidate] = []
        offset = 0
        while len(candidates) < limit:
            params = {
                "query": query,
                "offset": offset,
                "limit": min(limit - len(candidates), self.PAGE_SIZE),
                "fields": self.FIELDS,
            }
            resp = await self.client.get(url, params=params, headers=self._headers())
            resp.raise_for_status()
            data = resp.json()

            items = data.get("data") or []
            for item in items:
                candidate = self._parse_paper(item)
                if candidate is not None:
                    candidates.append(candidate)
            next_offset = data.get("next")
            if not items or next_offset is None:
                break
            offset = next_offset
        return candidates[:limit]

    def _parse_paper(self, item: dict) -> Optional[Candidate]:
        """Convert API response to Candidate."""
        if not item:
            return None
        authors = []
        for author in item.get("authors") or []:
            if author and author.get("name"):
                authors.append(author["name"])

        external_ids = item.get("externalIds") or {}
        journal = item.get("journal") or {}
        venue = item.get("venue") or journal.get("name") or None

        return Candidate(
            title=item.get("title") or "",
            source=self.name,
            external_id=external_ids.get("DOI") or None,
            abstract=item.get("abstract"),
            authors=tuple(authors),
            year=item.get("year"),
            venue=venue,
            keywords=frozenset(k.lower() for k in item.get("fieldsOfStudy") or [] if k),
            url=item.get("url"),
            citation_count=item.get("citationCount"),
        )

    async def close(self):
        await self.client.aclose()
