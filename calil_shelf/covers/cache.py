"""Cover image disk cache backed by NDL thumbnails."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import sys
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

import httpx

from ..config import COVER_CACHE_DIR, COVER_NOT_FOUND_TTL_SECONDS
from ..constants import NDL_THUMBNAIL_URL

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_ISBN_RE = re.compile(r"^[0-9Xx]{10,13}$")


class CoverCache:
    """Serves ``<isbn>.jpg`` from disk, fetching from NDL on a miss.

    ISBNs NDL answered 404 for are remembered for a day so they are not
    requested again on every page view.
    """

    def __init__(
        self,
        cache_dir: Path = COVER_CACHE_DIR,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        not_found_ttl: float = COVER_NOT_FOUND_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache_dir = Path(cache_dir)
        self._not_found: dict[str, float] = {}
        self._not_found_ttl = not_found_ttl
        self._clock = clock
        self._client = httpx.AsyncClient(transport=transport, follow_redirects=True, timeout=30.0)

    async def aclose(self):
        await self._client.aclose()

    def _known_missing(self, isbn: str) -> bool:
        cached_at = self._not_found.get(isbn)
        if cached_at is None:
            return False
        if self._clock() - cached_at > self._not_found_ttl:
            del self._not_found[isbn]
            return False
        return True

    async def get(self, isbn: str) -> Optional[Path]:
        """Return the cached cover path, or None if NDL has no cover."""
        if not _ISBN_RE.match(isbn):
            raise ValueError(f"Invalid ISBN: {isbn!r}")

        if self._known_missing(isbn):
            logger.debug(f"Cover known to not exist: {isbn}")
            return None

        path = self.cache_dir / f"{isbn}.jpg"
        if path.exists():
            return path

        response = await self._client.get(NDL_THUMBNAIL_URL.format(isbn=isbn))
        if response.status_code == 404:
            logger.debug(f"Cover not found on NDL: {isbn}")
            self._remember_missing(isbn)
            return None
        response.raise_for_status()

        await asyncio.to_thread(self._write, path, response.content)
        logger.info(f"Cached cover for {isbn} ({len(response.content)} bytes)")
        return path

    def _remember_missing(self, isbn: str) -> None:
        now = self._clock()
        expired = [
            key for key, cached_at in self._not_found.items()
            if now - cached_at > self._not_found_ttl
        ]
        for key in expired:
            del self._not_found[key]
        self._not_found[isbn] = now

    def _write(self, path: Path, content: bytes) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        # Readers only ever see a complete file at the final name
        tmp = path.with_name(f".{path.name}.{os.getpid()}.{uuid.uuid4().hex}.tmp")
        try:
            tmp.write_bytes(content)
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
