"""
Page size and offset tracking for record lists.
"""

from dataclasses import dataclass, replace

from records.resources import PageSpec

# Page sizes offered to the user
PAGE_SIZES = (20, 30, 40, 50)
DEFAULT_PAGE_SIZE = PAGE_SIZES[0]


@dataclass(frozen=True)
class Paginator:
    """
    Immutable page position.

    Every transition returns a new Paginator. The offset never drops below
    zero; there is no upper bound, running past the end of the data shows
    up as an end-of-data page from the fetcher.
    """
    page_size: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    def __post_init__(self):
        if self.page_size <= 0:
            raise ValueError(f'Page size must be positive, got {self.page_size}')
        if self.offset < 0:
            object.__setattr__(self, 'offset', 0)

    @property
    def spec(self) -> PageSpec:
        return PageSpec(count=self.page_size, offset=self.offset)

    def set_page_size(self, page_size):
        if page_size not in PAGE_SIZES:
            raise ValueError(
                f'Page size must be one of {", ".join(map(str, PAGE_SIZES))}, got {page_size}'
            )
        return replace(self, page_size=page_size)

    def advance(self):
        return replace(self, offset=self.offset + self.page_size)

    def retreat(self):
        return replace(self, offset=max(0, self.offset - self.page_size))

    def go_to(self, offset):
        return replace(self, offset=max(0, offset))

    @property
    def next_offset(self):
        return self.offset + self.page_size

    @property
    def previous_offset(self):
        return max(0, self.offset - self.page_size)
