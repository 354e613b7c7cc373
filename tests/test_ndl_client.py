"""Tests for the cached NDL client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import httpx
import pytest

from calil_shelf.models.book import NdlItem
from calil_shelf.ndl.client import NdlClient


@pytest.fixture
def repo() -> MagicMock:
    repo = MagicMock()
    repo.get = AsyncMock(return_value=None)
    repo.upsert = AsyncMock()
    return repo


def search(client: NdlClient, isbn: str):
    async def scenario():
        try:
            return await client.search(isbn)
        finally:
            await client.aclose()

    return asyncio.run(scenario())


class TestNdlClient:
    """Tests for NdlClient.search()."""

    def test_fetches_and_caches(self, repo, ndl_feed_xml):
        """Test a cache miss queries NDL and stores the first record."""
        seen = {}

        def handler(request):
            seen["isbn"] = request.url.params["isbn"]
            return httpx.Response(200, text=ndl_feed_xml)

        client = NdlClient(repo, transport=httpx.MockTransport(handler))
        items = search(client, "9784003101018")

        assert seen["isbn"] == "9784003101018"
        assert items[0].title == "吾輩は猫である"
        repo.upsert.assert_awaited_once_with("9784003101018", items[0])

    def test_cache_hit_skips_network(self, repo):
        """Test that a cached record is returned without a request."""
        cached = NdlItem(title="cached")
        repo.get.return_value = cached

        def handler(request):
            raise AssertionError("NDL should not be queried")

        client = NdlClient(repo, transport=httpx.MockTransport(handler))

        assert search(client, "9784003101018") == [cached]

    def test_http_error_raises(self, repo):
        """Test that NDL failures propagate."""
        client = NdlClient(repo, transport=httpx.MockTransport(lambda r: httpx.Response(500)))

        with pytest.raises(httpx.HTTPStatusError):
            search(client, "9784003101018")

        repo.upsert.assert_not_awaited()

    def test_cache_write_failure_still_returns(self, repo, ndl_feed_xml):
        """Test that a broken cache does not hide the NDL answer."""
        repo.upsert.side_effect = aiosqlite.OperationalError("database is locked")
        client = NdlClient(
            repo, transport=httpx.MockTransport(lambda r: httpx.Response(200, text=ndl_feed_xml))
        )

        assert len(search(client, "9784003101018")) == 1
