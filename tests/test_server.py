"""Tests for the aiohttp service endpoints."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp import test_utils

from calil_shelf.exceptions import LoginTimeoutError, SessionExpiredError, UpstreamError
from calil_shelf.models.book import Book, ListMetadata, NdlItem
from calil_shelf.models.session import SessionStatus
from calil_shelf.server import AppContext, create_app


@pytest.fixture
def ctx() -> MagicMock:
    ctx = MagicMock()
    ctx.setup = AsyncMock()
    ctx.cleanup = AsyncMock()
    ctx.ensurer.status = AsyncMock(return_value=SessionStatus(state="VALID", cookie_count=1, saved_at=5))
    ctx.vault.save = AsyncMock()
    ctx.vault.clear = AsyncMock()
    ctx.books.fetch_metadata = AsyncMock(
        return_value=ListMetadata(total_count=25, total_pages=2, page_size=20)
    )
    ctx.books.fetch_page = AsyncMock(return_value=[Book(id="1", title="猫")])
    ctx.ndl.search = AsyncMock(return_value=[NdlItem(title="猫")])
    ctx.covers.get = AsyncMock(return_value=None)
    return ctx


def run_app(ctx, scenario):
    async def _run():
        async with test_utils.TestClient(test_utils.TestServer(create_app(ctx))) as client:
            return await scenario(client)

    return asyncio.run(_run())


def ndjson(text: str) -> list[dict]:
    return [json.loads(line) for line in text.splitlines() if line]


class TestAuthEndpoints:
    """Tests for the /auth routes."""

    def test_status(self, ctx):
        """Test that the stored session state is reported."""

        async def scenario(client):
            resp = await client.get("/auth/status")
            return resp.status, await resp.json()

        status, body = run_app(ctx, scenario)

        assert status == 200
        assert body == {"state": "VALID", "cookie_count": 1, "saved_at": 5}
        ctx.setup.assert_awaited_once()
        ctx.cleanup.assert_awaited_once()

    def test_start_login(self, ctx):
        """Test that a background login is kicked off."""

        async def scenario(client):
            return (await client.post("/auth/start")).status

        assert run_app(ctx, scenario) == 200
        ctx.start_login.assert_called_once()

    def test_manual_cookie(self, ctx):
        """Test that pasted cookies are stored and the token dropped."""

        async def scenario(client):
            resp = await client.post("/auth/cookie", data="sid=1; pref=2")
            return resp.status, await resp.json()

        status, body = run_app(ctx, scenario)

        assert status == 200
        assert body["cookie_count"] == 2
        saved = ctx.vault.save.await_args.args[0]
        assert saved.cookie_header() == "sid=1; pref=2"
        ctx.tokens.invalidate.assert_called_once()

    def test_manual_cookie_rejects_garbage(self, ctx):
        """Test that input without name=value pairs is refused."""

        async def scenario(client):
            return (await client.post("/auth/cookie", data="nonsense")).status

        assert run_app(ctx, scenario) == 400
        ctx.vault.save.assert_not_awaited()

    def test_logout(self, ctx):
        """Test that logout clears the vault and token."""

        async def scenario(client):
            return (await client.post("/auth/logout")).status

        assert run_app(ctx, scenario) == 200
        ctx.vault.clear.assert_awaited_once()
        ctx.tokens.invalidate.assert_called_once()


class TestBookEndpoints:
    """Tests for the list routes."""

    def test_metadata(self, ctx):
        """Test the metadata payload."""

        async def scenario(client):
            resp = await client.get("/api/books/wish/meta")
            return resp.status, await resp.json()

        status, body = run_app(ctx, scenario)

        assert status == 200
        assert body == {"total_count": 25, "total_pages": 2, "page_size": 20}

    @pytest.mark.parametrize(
        "error, expected",
        [
            (ValueError("Invalid list type"), 400),
            (SessionExpiredError(), 502),
            (UpstreamError("HTTP 500", status=500), 502),
            (LoginTimeoutError(), 504),
        ],
    )
    def test_metadata_errors(self, ctx, error, expected):
        """Test the status code for each failure."""
        ctx.books.fetch_metadata.side_effect = error

        async def scenario(client):
            resp = await client.get("/api/books/wish/meta")
            return resp.status, await resp.json()

        status, body = run_app(ctx, scenario)

        assert status == expected
        assert "error" in body

    def test_page(self, ctx):
        """Test that one page of books is returned."""

        async def scenario(client):
            resp = await client.get("/api/books/read/pages/2")
            return resp.status, await resp.json()

        status, body = run_app(ctx, scenario)

        assert status == 200
        assert body["page"] == 2
        assert body["books"][0]["title"] == "猫"
        ctx.books.fetch_page.assert_awaited_once_with("read", 2)

    def test_page_not_a_number(self, ctx):
        """Test that a non-numeric page is a bad request."""

        async def scenario(client):
            return (await client.get("/api/books/read/pages/two")).status

        assert run_app(ctx, scenario) == 400


class TestBookStream:
    """Tests for the NDJSON list stream."""

    @staticmethod
    def pages_of(*counts):
        async def iter_pages(list_type, pages):
            for page in range(1, pages + 1):
                yield page, [Book(id=str(i)) for i in range(counts[page - 1])]

        return iter_pages

    def test_streams_meta_pages_done(self, ctx):
        """Test the full sequence of stream events."""
        ctx.books.iter_pages = self.pages_of(20, 5)

        async def scenario(client):
            resp = await client.get("/api/book-list-stream/wish")
            return resp.status, resp.headers["Content-Type"], await resp.text()

        status, content_type, text = run_app(ctx, scenario)
        events = ndjson(text)

        assert status == 200
        assert content_type.startswith("application/x-ndjson")
        assert [e["type"] for e in events] == ["meta", "page", "page", "done"]
        assert events[0]["totalCount"] == 25
        assert events[2]["pageNumber"] == 2
        assert len(events[2]["books"]) == 5

    def test_max_pages(self, ctx):
        """Test that maxPages caps the number of pages streamed."""
        ctx.books.iter_pages = self.pages_of(20, 5)

        async def scenario(client):
            return await (await client.get("/api/book-list-stream/wish?maxPages=1")).text()

        events = ndjson(run_app(ctx, scenario))

        assert [e["type"] for e in events] == ["meta", "page", "done"]

    def test_failure_ends_with_error_event(self, ctx):
        """Test that an upstream failure mid-stream is reported in-band."""

        async def failing(list_type, pages):
            yield 1, [Book(id="1")]
            raise SessionExpiredError()

        ctx.books.iter_pages = failing

        async def scenario(client):
            return await (await client.get("/api/book-list-stream/read")).text()

        events = ndjson(run_app(ctx, scenario))

        assert [e["type"] for e in events] == ["meta", "page", "error"]

    def test_invalid_list_type(self, ctx):
        """Test that unknown lists are refused before streaming."""

        async def scenario(client):
            return (await client.get("/api/book-list-stream/owned")).status

        assert run_app(ctx, scenario) == 400


class TestNdlEndpoints:
    """Tests for the bibliographic and cover routes."""

    def test_bibliographic_normalizes_isbn10(self, ctx):
        """Test that ISBN-10 input is looked up as ISBN-13."""

        async def scenario(client):
            resp = await client.get("/api/bibliographic/4003101014")
            return resp.status, await resp.json()

        status, body = run_app(ctx, scenario)

        assert status == 200
        assert body["title"] == "猫"
        ctx.ndl.search.assert_awaited_once_with("9784003101018")

    def test_bibliographic_not_found(self, ctx):
        """Test a lookup with no NDL record."""
        ctx.ndl.search.return_value = []

        async def scenario(client):
            return (await client.get("/api/bibliographic/9784003101018")).status

        assert run_app(ctx, scenario) == 404

    def test_cover_served_from_cache(self, ctx, tmp_path):
        """Test that a cached cover file is returned."""
        cover = tmp_path / "9784003101018.jpg"
        cover.write_bytes(b"\xff\xd8jpeg")
        ctx.covers.get.return_value = cover

        async def scenario(client):
            resp = await client.get("/covers/9784003101018")
            return resp.status, await resp.read()

        assert run_app(ctx, scenario) == (200, b"\xff\xd8jpeg")

    def test_cover_missing(self, ctx):
        """Test that a cover NDL does not have is a 404."""

        async def scenario(client):
            return (await client.get("/covers/9784003101018")).status

        assert run_app(ctx, scenario) == 404

    def test_cover_invalid_isbn(self, ctx):
        """Test that a malformed ISBN is a bad request."""
        ctx.covers.get.side_effect = ValueError("Invalid ISBN")

        async def scenario(client):
            return (await client.get("/covers/abc")).status

        assert run_app(ctx, scenario) == 400


class TestLogsEndpoint:
    """Tests for /api/logs."""

    def test_returns_buffered_logs(self, ctx):
        """Test that buffered records are returned with the limit applied."""
        buffer = MagicMock()
        buffer.entries.return_value = [{"message": "hello"}]

        async def scenario(client):
            resp = await client.get("/api/logs?limit=10")
            return await resp.json()

        with patch("calil_shelf.server.log_buffer", buffer):
            body = run_app(ctx, scenario)

        assert body == {"logs": [{"message": "hello"}]}
        buffer.entries.assert_called_once_with(10)


class TestBackgroundLogin:
    """Tests for AppContext.start_login()."""

    def test_failed_login_is_logged_and_released(self):
        """Test that a failing background login does not leak its task."""
        app_ctx = AppContext()
        app_ctx.ensurer = MagicMock()
        app_ctx.ensurer.ensure = AsyncMock(side_effect=LoginTimeoutError())

        async def scenario():
            task = app_ctx.start_login()
            await asyncio.gather(task, return_exceptions=True)
            await asyncio.sleep(0)
            return len(app_ctx._background)

        with patch("calil_shelf.server.logger") as logger:
            assert asyncio.run(scenario()) == 0

        logger.error.assert_called_once()
        app_ctx.ensurer.ensure.assert_awaited_once_with(force=True)
