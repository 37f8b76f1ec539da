"""Offset/limit paging over listings that may change between requests.

Every request re-lists the directory and re-derives ``total``. ``offset`` means
"skip the first N entries of the current listing", so when files are added or
removed between two requests a page boundary shifts by at most the number of
files that changed. Callers merge pages client side and must tolerate that.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, List, Optional, Sequence, TypeVar

from core.errors import InvalidArgument

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 500


@dataclass(slots=True)
class Pagination:
    """Resolved pagination values after clamping settings and user input."""

    limit: int
    offset: int


def resolve_pagination(
    offset: Optional[int],
    limit: Optional[int],
    *,
    default_limit: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Pagination:
    """Validate caller supplied paging arguments.

    Raises :class:`InvalidArgument` for negative offsets or limits outside
    ``1..max_page_size``; ``None`` picks the defaults.
    """

    max_page = max(1, int(max_page_size))
    if offset is None:
        offset_value = 0
    else:
        offset_value = int(offset)
        if offset_value < 0:
            raise InvalidArgument("offset must be >= 0")
    if limit is None:
        limit_value = min(max(1, int(default_limit)), max_page)
    else:
        limit_value = int(limit)
        if limit_value < 1 or limit_value > max_page:
            raise InvalidArgument(f"limit must be between 1 and {max_page}")
    return Pagination(limit=limit_value, offset=offset_value)


@dataclass(slots=True)
class Page(Generic[T]):
    items: List[T] = field(default_factory=list)
    total: int = 0
    offset: int = 0
    limit: int = DEFAULT_PAGE_SIZE

    @property
    def has_more(self) -> bool:
        return (self.offset + self.limit) < self.total


def paginate(listing: Sequence[T], pagination: Pagination) -> Page[T]:
    total = len(listing)
    start = pagination.offset
    end = start + pagination.limit
    return Page(items=list(listing[start:end]), total=total, offset=start, limit=pagination.limit)


@dataclass(slots=True)
class LoadMoreResult:
    """Incremental view of :func:`paginate` used by "load more" buttons."""

    count: int
    delivered: int
    total: int
    has_more: bool


def load_more(listing: Sequence[T], delivered: int, page_size: int) -> LoadMoreResult:
    """Deliver the next page after *delivered* entries of the current listing.

    *delivered* is the cursor the caller got back from the previous call. It is
    clamped to the current total so that entries removed since then do not
    hide files added afterwards.
    """

    if delivered < 0:
        raise InvalidArgument("delivered must be >= 0")
    cursor = min(int(delivered), len(listing))
    page = paginate(listing, Pagination(limit=max(1, int(page_size)), offset=cursor))
    count = len(page.items)
    new_cursor = cursor + count
    return LoadMoreResult(
        count=count,
        delivered=new_cursor,
        total=page.total,
        has_more=new_cursor < page.total,
    )


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "LoadMoreResult",
    "MAX_PAGE_SIZE",
    "Page",
    "Pagination",
    "load_more",
    "paginate",
    "resolve_pagination",
]
