"""
List pages returned by entity queries.
"""

from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of results.

    Pagination is stateless: only the first ``limit`` matches are returned
    and next_cursor is always None.
    """

    items: List[T]
    next_cursor: Optional[str] = None
