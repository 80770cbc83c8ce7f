"""
tableau_mcp/tools/pagination.py
===============================

Drives page-numbered list endpoints until the server runs out of results or
the caller's cap is reached.

The contract is all-or-nothing: if any page fails, ``fetch_all`` raises
``PaginationError`` for that page number and the items gathered so far are
dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Mapping, Optional, Sequence, TypeVar

from ..errors import PaginationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Pagination:
    page_number: int
    page_size: int
    total_available: int

    @classmethod
    def from_response(cls, data: Optional[Mapping[str, Any]]) -> "Pagination":
        """Parse the REST API ``pagination`` object (its numbers arrive as strings)."""
        data = data or {}
        return cls(
            page_number=int(data.get("pageNumber", 1)),
            page_size=int(data.get("pageSize", 0)),
            total_available=int(data.get("totalAvailable", 0)),
        )


@dataclass(frozen=True)
class Page(Generic[T]):
    items: Sequence[T]
    pagination: Pagination = field(default_factory=lambda: Pagination(1, 0, 0))


PageFetcher = Callable[[int], Awaitable[Page[T]]]


async def fetch_all(page_fetcher: PageFetcher, max_results: Optional[int] = None) -> List[T]:
    """Fetch successive pages and concatenate their items.

    Parameters
    ----------
    page_fetcher:
        Coroutine function taking a 1-based page number and returning a
        ``Page``.
    max_results:
        Upper bound on the number of items returned; ``None`` for no cap.

    Raises
    ------
    PaginationError
        If ``page_fetcher`` raises for any page.
    """
    results: List[T] = []
    if max_results is not None and max_results <= 0:
        return results

    page_number = 1

    while True:
        try:
            page = await page_fetcher(page_number)
        except Exception as e:
            logger.warning("Page %d failed; discarding %d gathered items", page_number, len(results))
            raise PaginationError(page_number, e) from e

        if not page.items:
            break

        results.extend(page.items)
        if max_results is not None and len(results) >= max_results:
            del results[max_results:]
            break
        if page.pagination.total_available <= len(results):
            break

        page_number += 1

    logger.debug("Fetched %d items over %d page(s)", len(results), page_number)
    return results
