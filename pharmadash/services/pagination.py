"""Page slicing for ranked result lists."""

from __future__ import annotations

from typing import Optional, Sequence, TypeVar

from pharmadash.domain.models import Page

T = TypeVar("T")


class ResultPaginator:
    """Clamps page parameters and slices an already-sorted list."""

    def __init__(self, min_size: int = 1, max_size: int = 50, default_size: int = 5):
        self.min_size = min_size
        self.max_size = max_size
        self.default_size = default_size

    def clamp_page_size(self, page_size: Optional[int]) -> int:
        if page_size is None:
            page_size = self.default_size
        return max(self.min_size, min(self.max_size, int(page_size)))

    @staticmethod
    def clamp_page(page: Optional[int]) -> int:
        if page is None or page < 1:
            return 1
        return int(page)

    def paginate(self, items: Sequence[T], page: Optional[int], page_size: Optional[int]) -> Page[T]:
        size = self.clamp_page_size(page_size)
        number = self.clamp_page(page)
        offset = (number - 1) * size
        return Page(
            items=list(items[offset: offset + size]),
            page=number,
            page_size=size,
            total=len(items),
        )
