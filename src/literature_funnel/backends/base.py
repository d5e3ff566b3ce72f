"""Interface every bibliographic source client implements."""

from typing import List, Protocol, runtime_checkable

from literature_funnel.models import Candidate


@runtime_checkable
class SourceClient(Protocol):
    """Given a query, return up to `limit` raw candidate records."""

    name: str

    async def search(self, query: str, limit: int) -> List[Candidate]: ...

    async def close(self) -> None: ...
