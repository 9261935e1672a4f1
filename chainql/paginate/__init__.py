"""Pagination and chunked iteration."""
from __future__ import annotations

from chainql.paginate.chunking import Chunker
from chainql.paginate.meta import UNKNOWN, CursorPage, PaginationMeta, PaginationResult
from chainql.paginate.paginator import Paginator, after_cursor

__all__ = [
    "Chunker",
    "CursorPage",
    "PaginationMeta",
    "PaginationResult",
    "Paginator",
    "UNKNOWN",
    "after_cursor",
]
