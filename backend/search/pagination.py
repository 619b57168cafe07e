from __future__ import annotations

from dataclasses import dataclass

from .config import DEFAULT_SEARCH_CONFIG
from .errors import SearchValidationError


def validate_page(
    limit: int,
    offset: int,
    max_limit: int = DEFAULT_SEARCH_CONFIG.max_page_size,
    location: str = "query",
) -> None:
    """Reject out-of-range pagination before anything reaches storage.

    *location* is where the values came from, for the error's ``loc``.
    """
    if not 1 <= limit <= max_limit:
        raise SearchValidationError("limit", f"Limit must be between 1 and {max_limit}", location)
    if offset < 0:
        raise SearchValidationError("offset", "Offset must be zero or greater", location)


def has_more(total: int, offset: int, returned: int) -> bool:
    return offset + returned < total


@dataclass(frozen=True)
class PageInfo:
    total: int
    limit: int
    offset: int
    returned: int

    @property
    def has_more(self) -> bool:
        return has_more(self.total, self.offset, self.returned)

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "has_more": self.has_more,
        }
