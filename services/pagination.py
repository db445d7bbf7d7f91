"""Page addressing shared by catalog, category and bookmark listings.

Callers address pages either as ``offset``/``limit`` (zero-based page index
and page size) or as ``page``/``page_size`` (one-based page number and page
size). Both resolve to the same ``PageRequest``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, TypeVar

from config import settings
from services.errors import CatalogValidationError

T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    index: int = 0
    size: int = 12

    @property
    def offset(self) -> int:
        return self.index * self.size

    @property
    def page(self) -> int:
        return self.index + 1


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise CatalogValidationError(f"{name} must be an integer") from exc


def resolve_page_request(
    *,
    offset: Optional[Any] = None,
    limit: Optional[Any] = None,
    page: Optional[Any] = None,
    page_size: Optional[Any] = None,
    default_size: Optional[int] = None,
    max_size: Optional[int] = None,
) -> PageRequest:
    """Normalize either addressing scheme into a ``PageRequest``.

    ``page``/``page_size`` wins when both schemes are supplied. Sizes above
    ``max_size`` are clamped; negative indexes and non-positive sizes are
    rejected.
    """
    fallback_size = int(default_size or settings.DEFAULT_PAGE_SIZE)
    ceiling = int(max_size or settings.MAX_PAGE_SIZE)

    if page is not None or page_size is not None:
        number = _as_int(page, "page") if page is not None else 1
        size = _as_int(page_size, "pageSize") if page_size is not None else fallback_size
        if number < 1:
            raise CatalogValidationError("page must be >= 1")
        index = number - 1
    else:
        index = _as_int(offset, "offset") if offset is not None else 0
        size = _as_int(limit, "limit") if limit is not None else fallback_size
        if index < 0:
            raise CatalogValidationError("offset must be >= 0")

    if size < 1:
        raise CatalogValidationError("page size must be >= 1")
    return PageRequest(index=index, size=min(size, ceiling))


def paginate(values: Sequence[T], request: PageRequest) -> Tuple[list, int]:
    """Slice an already-materialized sequence."""
    total = len(values)
    start = request.offset
    return list(values[start:start + request.size]), total


def total_pages(total: int, size: int) -> int:
    if total <= 0 or size <= 0:
        return 0
    return math.ceil(total / size)
