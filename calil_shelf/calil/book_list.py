"""Paginated wish/read list fetching on top of the retry-with-refresh wrapper."""

from __future__ import annotations

import logging
import math
import sys
from typing import AsyncIterator

from ..constants import ITEMS_PER_PAGE, LIST_TYPES
from ..models.book import Book, ListMetadata
from ..session_manager.retry import RetryWithRefresh
from .client import CalilClient

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def check_list_type(list_type: str) -> str:
    if list_type not in LIST_TYPES:
        raise ValueError(f"Invalid list type: {list_type!r}")
    return list_type


class BookListFetcher:
    """Fetches Calil list metadata and pages. All resilience lives in ``caller``."""

    def __init__(self, client: CalilClient, caller: RetryWithRefresh, page_size: int = ITEMS_PER_PAGE):
        self._client = client
        self._caller = caller
        self._page_size = page_size

    async def fetch_metadata(self, list_type: str) -> ListMetadata:
        check_list_type(list_type)
        total = await self._caller.run(
            lambda cookie, token: self._client.fetch_total_count(cookie, token, list_type)
        )
        return ListMetadata(
            total_count=total,
            total_pages=math.ceil(total / self._page_size),
            page_size=self._page_size,
        )

    async def fetch_page(self, list_type: str, page: int) -> list[Book]:
        check_list_type(list_type)
        if page < 1:
            raise ValueError(f"Page numbers start at 1, got {page}")
        return await self._caller.run(
            lambda cookie, token: self._client.fetch_book_page(
                cookie, token, list_type, page, self._page_size
            )
        )

    async def iter_pages(self, list_type: str, pages: int) -> AsyncIterator[tuple[int, list[Book]]]:
        """Yield ``(page_number, books)`` for pages 1..pages, one request at a time."""
        for page in range(1, pages + 1):
            books = await self.fetch_page(list_type, page)
            logger.info(f"Fetched {list_type} page {page}/{pages}: {len(books)} books")
            yield page, books

    async def fetch_all(self, list_type: str) -> list[Book]:
        metadata = await self.fetch_metadata(list_type)
        books: list[Book] = []
        async for _, page_books in self.iter_pages(list_type, metadata.total_pages):
            books.extend(page_books)
        return books
