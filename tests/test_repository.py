"""Tests for the bibliographic SQLite cache."""

import asyncio

import aiosqlite

from calil_shelf.database.models import initialize_db
from calil_shelf.database.repository import BibliographicRepository
from calil_shelf.models.book import NdlItem


ITEM = NdlItem(
    title="吾輩は猫である",
    title_kana="ワガハイ ハ ネコ デ アル",
    creators=["夏目, 漱石"],
    publisher="岩波書店",
    pub_year="2021",
    ndc10="913.6",
    subjects=["日本文学"],
    see_also=["https://id.ndl.go.jp/bib/031234567"],
    description_html="<p>改版</p>",
)


def with_repo(db_path, fn):
    async def scenario():
        async with aiosqlite.connect(str(db_path)) as db:
            db.row_factory = aiosqlite.Row
            await initialize_db(db)
            return await fn(BibliographicRepository(db))

    return asyncio.run(scenario())


class TestBibliographicRepository:
    """Tests for BibliographicRepository."""

    def test_upsert_then_get(self, tmp_path):
        """Test that a stored record is read back under the requested ISBN."""

        async def fn(repo):
            await repo.upsert("4003101014", ITEM)
            return await repo.get("4003101014")

        item = with_repo(tmp_path / "bib.db", fn)

        assert item.title == ITEM.title
        assert item.creators == ["夏目, 漱石"]
        assert item.subjects == ["日本文学"]
        assert item.see_also == ITEM.see_also
        assert item.isbn13 == "4003101014"

    def test_get_missing(self, tmp_path):
        """Test that an unknown ISBN gives None."""
        assert with_repo(tmp_path / "bib.db", lambda repo: repo.get("0000000000")) is None

    def test_upsert_replaces_and_keeps_description(self, tmp_path):
        """Test that a refresh without description keeps the old one."""

        async def fn(repo):
            await repo.upsert("9784003101018", ITEM)
            await repo.upsert(
                "9784003101018",
                ITEM.model_copy(update={"publisher": "新潮社", "description_html": None}),
            )
            return await repo.get("9784003101018"), await repo.count()

        item, count = with_repo(tmp_path / "bib.db", fn)

        assert count == 1
        assert item.publisher == "新潮社"
        assert item.description_html == "<p>改版</p>"
