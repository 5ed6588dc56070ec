"""Page-number pagination helpers for list endpoints."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PageParams:
    """Normalized pagination request.

    Attributes:
        page: 1-based page number.
        limit: Page size, clamped to ``MAX_PAGE_SIZE``.
    """

    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    @classmethod
    def normalize(cls, page: int | None, limit: int | None) -> PageParams:
        """Clamp raw query values into a valid page request.

        Examples:
            >>> PageParams.normalize(0, 500)
            PageParams(page=1, limit=100)
            >>> PageParams.normalize(None, None)
            PageParams(page=1, limit=20)
        """
        size = limit if limit and limit > 0 else DEFAULT_PAGE_SIZE
        return cls(page=max(1, page or 1), limit=min(size, MAX_PAGE_SIZE))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def slice(self, items: Sequence[Any]) -> list[Any]:
        return list(items[self.offset:self.offset + self.limit])


def pagination_meta(total: int, params: PageParams, base_url: str) -> dict[str, Any]:
    """Build the pagination block returned alongside list payloads."""

    total_pages = math.ceil(total / params.limit) if total else 0
    meta: dict[str, Any] = {
        "currentPage": params.page,
        "totalPages": total_pages,
        "totalItems": total,
        "itemsPerPage": params.limit,
        "hasNext": params.page < total_pages,
        "hasPrev": params.page > 1,
    }
    if meta["hasNext"]:
        meta["nextPage"] = f"{base_url}?page={params.page + 1}&limit={params.limit}"
    if meta["hasPrev"]:
        meta["prevPage"] = f"{base_url}?page={params.page - 1}&limit={params.limit}"
    return meta
