"""
Page/limit parsing and pagination metadata.

Malformed page or limit values never fail a request: they fall back to the
defaults, mirroring how the list endpoints have always behaved.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_PAGE_SIZE = 100


def _positive_int(raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        logger.debug(f"Ignoring non-numeric pagination value {raw!r}, using {default}")
        return default
    return value if value >= 1 else default


def parse_page(raw: Optional[str]) -> int:
    return _positive_int(raw, DEFAULT_PAGE)


def parse_limit(raw: Optional[str]) -> int:
    return min(_positive_int(raw, DEFAULT_LIMIT), MAX_PAGE_SIZE)


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


@dataclass(frozen=True)
class Pagination:
    current_page: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            has_next=page < total_pages,
            has_prev=page > 1,
        )
