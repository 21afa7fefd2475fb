"""Page/limit validation and pagination metadata."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

from workforge.core.coercion import to_safe_integer
from workforge.errors import BadRequest

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginationService:
    """Normalizes page/limit options; out-of-range values are capped, not rejected."""

    def __init__(self, default_limit: int = DEFAULT_PAGE_SIZE, max_limit: int = MAX_PAGE_SIZE):
        self.default_limit = default_limit
        self.max_limit = max_limit

    def validate_params(self, options: Mapping[str, Any] | None) -> PageParams:
        options = options or {}
        page = self._to_int(options.get("page"), 1)
        limit = self._to_int(options.get("limit"), self.default_limit)
        return PageParams(
            page=max(page, 1),
            limit=min(max(limit, 1), self.max_limit),
        )

    @staticmethod
    def generate_metadata(page: int, limit: int, total: int) -> dict[str, Any]:
        total_pages = math.ceil(total / limit) if limit else 0
        return {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        }

    @staticmethod
    def _to_int(value: Any, default: int) -> int:
        if value is None or value == "":
            return default
        try:
            return to_safe_integer(value, minimum=None)
        except BadRequest:
            return default
