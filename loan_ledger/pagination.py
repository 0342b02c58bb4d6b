"""
Pagination helpers shared by list endpoints.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple
import math


@dataclass
class Page:
    """One page of a list result"""
    items: List[Any] = field(default_factory=list)
    page: int = 1
    limit: int = 10
    total: int = 0

    @property
    def pages(self) -> int:
        if self.total == 0:
            return 0
        return math.ceil(self.total / self.limit)

    def to_dict(self) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "pages": self.pages,
        }


def normalize(page: Optional[int], limit: Optional[int],
              default_limit: int = 10, max_limit: int = 100) -> Tuple[int, int]:
    """Clamp page to >= 1 and replace an out-of-range limit with the default"""
    if page is None or page < 1:
        page = 1
    if limit is None or limit < 1 or limit > max_limit:
        limit = default_limit
    return page, limit


def paginate(items: Sequence[Any], page: Optional[int], limit: Optional[int],
             default_limit: int = 10, max_limit: int = 100) -> Page:
    page, limit = normalize(page, limit, default_limit, max_limit)
    offset = (page - 1) * limit
    return Page(items=list(items[offset:offset + limit]), page=page, limit=limit, total=len(items))
