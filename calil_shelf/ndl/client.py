"""NDL search with a SQLite-backed bibliographic cache."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import aiosqlite
import httpx

from ..constants import NDL_OPENSEARCH_URL
from ..database.repository import BibliographicRepository
from ..models.book import NdlItem
from .opensearch import parse_opensearch

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class NdlClient:
    """Looks up ISBNs on NDL Search, serving repeats from the local cache."""

    def __init__(
        self,
        repo: Optional[BibliographicRepository] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._repo = repo
        self._client = httpx.AsyncClient(transport=transport, follow_redirects=True, timeout=30.0)

    async def aclose(self):
        await self._client.aclose()

    async def search(self, isbn: str) -> list[NdlItem]:
        if self._repo is not None:
            cached = await self._repo.get(isbn)
            if cached is not None:
                logger.debug(f"NDL cache hit: {isbn}")
                return [cached]

        logger.info(f"NDL API lookup: {isbn}")
        response = await self._client.get(NDL_OPENSEARCH_URL, params={"isbn": isbn})
        response.raise_for_status()
        items = parse_opensearch(response.text).items

        if self._repo is not None and items and items[0].title:
            try:
                # Cached under the requested ISBN, not the record's own isbn13
                await self._repo.upsert(isbn, items[0])
            except aiosqlite.Error as e:
                logger.error(f"Failed to cache NDL record for {isbn}: {e}")

        return items
