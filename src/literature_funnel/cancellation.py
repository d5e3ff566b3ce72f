"""Cooperative cancellation for funnel runs."""

from dataclasses import dataclass


class SearchCancelled(Exception):
    """Raised when a search is cancelled via CancellationToken."""


@dataclass
class CancellationToken:
    """
    Cancellation flag shared between the caller and a running funnel.

    The funnel checks raise_if_cancelled() before each stage, so a cancelled
    search never starts another stage and returns no partial result.
    """

    _cancelled: bool = False

    def cancel(self) -> None:
        """Request cancellation. Safe from any thread (single bool write)."""
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise SearchCancelled("Search was cancelled")
