"""Async repository for cached NDL bibliographic records."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from ..models.book import NdlItem

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_LIST_COLUMNS = {
    "authors": "creators",
    "authors_kana": "creators_kana",
    "subjects": "subjects",
    "categories": "categories",
    "see_also": "see_also",
}


class BibliographicRepository:
    """Async repository for bibliographic data in SQLite, keyed by the requested ISBN."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def upsert(self, isbn: str, item: NdlItem):
        """Insert or replace the cached record for ``isbn``."""
        await self._db.execute(
            """
            INSERT INTO bibliographic_info (
                isbn, title, title_kana, link, authors, authors_kana,
                publisher, pub_year, issued, extent, price, ndc10, ndlc,
                ndl_bib_id, jpno, tohan_marc_no, subjects, categories,
                see_also, description, updated_at
            ) VALUES (
                ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
            )
            ON CONFLICT(isbn) DO UPDATE SET
                title = excluded.title,
                title_kana = excluded.title_kana,
                link = excluded.link,
                authors = excluded.authors,
                authors_kana = excluded.authors_kana,
                publisher = excluded.publisher,
                pub_year = excluded.pub_year,
                issued = excluded.issued,
                extent = excluded.extent,
                price = excluded.price,
                ndc10 = excluded.ndc10,
                ndlc = excluded.ndlc,
                ndl_bib_id = excluded.ndl_bib_id,
                jpno = excluded.jpno,
                tohan_marc_no = excluded.tohan_marc_no,
                subjects = excluded.subjects,
                categories = excluded.categories,
                see_also = excluded.see_also,
                description = COALESCE(excluded.description, bibliographic_info.description),
                updated_at = excluded.updated_at
            """,
            (
                isbn, item.title or "", item.title_kana, item.link,
                json.dumps(item.creators, ensure_ascii=False),
                json.dumps(item.creators_kana, ensure_ascii=False),
                item.publisher, item.pub_year, item.issued, item.extent, item.price,
                item.ndc10, item.ndlc, item.ndl_bib_id, item.jpno, item.tohan_marc_no,
                json.dumps(item.subjects, ensure_ascii=False),
                json.dumps(item.categories, ensure_ascii=False),
                json.dumps(item.see_also, ensure_ascii=False),
                item.description_html,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        await self._db.commit()

    async def get(self, isbn: str) -> Optional[NdlItem]:
        cursor = await self._db.execute(
            "SELECT * FROM bibliographic_info WHERE isbn = ?", (isbn,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return self._row_to_item(row) if row else None

    async def count(self) -> int:
        cursor = await self._db.execute("SELECT COUNT(*) FROM bibliographic_info")
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row else 0

    @staticmethod
    def _row_to_item(row: aiosqlite.Row) -> NdlItem:
        data = dict(row)
        lists = {field: json.loads(data.get(column) or "[]") for column, field in _LIST_COLUMNS.items()}
        return NdlItem(
            title=data["title"],
            title_kana=data["title_kana"],
            link=data["link"],
            publisher=data["publisher"],
            pub_year=data["pub_year"],
            issued=data["issued"],
            extent=data["extent"],
            price=data["price"],
            isbn13=data["isbn"],
            ndl_bib_id=data["ndl_bib_id"],
            jpno=data["jpno"],
            tohan_marc_no=data["tohan_marc_no"],
            ndc10=data["ndc10"],
            ndlc=data["ndlc"],
            description_html=data["description"],
            **lists,
        )
