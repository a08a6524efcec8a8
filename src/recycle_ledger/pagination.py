"""Page-window arithmetic for the transactions table.

States are immutable ``(page_index, page_size)`` pairs. Every transition
returns a new :class:`PaginationState`; the session decides when to apply
them.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterator, Sequence, TypeVar

from .constants import DEFAULT_PAGE_SIZE, PAGE_SIZE_OPTIONS


T = TypeVar("T")


@dataclass(frozen=True)
class PaginationState:
    page_index: int = 0
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        require_page_size(self.page_size)
        if self.page_index < 0:
            raise ValueError("Page index must be zero or positive")


def require_page_size(page_size: int) -> None:
    """Reject sizes outside :data:`~recycle_ledger.constants.PAGE_SIZE_OPTIONS`."""

    if page_size not in PAGE_SIZE_OPTIONS:
        raise ValueError(f"Page size must be one of {PAGE_SIZE_OPTIONS}, got {page_size}")


def page_count(total: int, page_size: int) -> int:
    """Number of pages needed for ``total`` rows; an empty table has one page."""

    if total <= 0:
        return 1
    return -(-total // page_size)


def clamp_page_index(page_index: int, total: int, page_size: int) -> int:
    """Pull ``page_index`` back into ``[0, page_count - 1]``."""

    return max(0, min(page_index, page_count(total, page_size) - 1))


def visible_slice(records: Sequence[T], page_index: int, page_size: int) -> Sequence[T]:
    """Return the rows displayed on ``page_index``.

    An index past the end (for example after the filtered set shrank) is
    clamped to the last page instead of producing an accidental empty page.
    """

    index = clamp_page_index(page_index, len(records), page_size)
    start = index * page_size
    return records[start:start + page_size]


def iter_pages(records: Sequence[T], page_size: int) -> Iterator[Sequence[T]]:
    """Yield every page in order; concatenated they rebuild ``records``."""

    for index in range(page_count(len(records), page_size)):
        yield records[index * page_size:(index + 1) * page_size]


def set_page(state: PaginationState, page_index: int, total: int) -> PaginationState:
    """Move to ``page_index``, clamped into the pages that exist for ``total`` rows."""

    return replace(state, page_index=clamp_page_index(page_index, total, state.page_size))


def set_page_size(state: PaginationState, page_size: int) -> PaginationState:
    """Change the page size; the old offset is meaningless so paging restarts."""

    require_page_size(page_size)
    return PaginationState(page_index=0, page_size=page_size)


def on_filter_changed(state: PaginationState) -> PaginationState:
    """Return to the first page while keeping the chosen page size."""

    if state.page_index == 0:
        return state
    return replace(state, page_index=0)
