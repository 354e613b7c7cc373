"""calil-shelf HTTP service.

Runs as a local aiohttp web server in front of Calil and NDL. Wires the
credential vault, browser session manager, session ensurer and
retry-with-refresh wrapper together and exposes them as JSON endpoints.

Endpoints:
    GET  /auth/status                          - Stored session state (no login)
    POST /auth/start                           - Force a login in the background
    POST /auth/cookie                          - Register cookies manually ("a=1; b=2")
    POST /auth/logout                          - Forget the stored session
    GET  /api/books/{list_type}/meta           - Total count and page count
    GET  /api/books/{list_type}/pages/{page}   - One page of books
    GET  /api/book-list-stream/{list_type}     - NDJSON: meta, pages, done/error
    GET  /api/bibliographic/{isbn}             - NDL record (cached)
    GET  /covers/{isbn}                        - Cover image (cached)
    GET  /api/logs                             - Recent log records
"""

from __future__ import annotations

import asyncio
import atexit
import json
import logging
import sys
from typing import Optional

import aiosqlite
import httpx
from aiohttp import web

from .calil.book_list import BookListFetcher
from .calil.client import CalilClient
from .config import DB_PATH, SERVER_HOST, SERVER_PORT, ensure_dirs
from .constants import LIST_TYPES
from .covers.cache import CoverCache
from .database.models import initialize_db
from .database.repository import BibliographicRepository
from .exceptions import (
    CalilShelfError,
    LoginTimeoutError,
    SessionExpiredError,
    TokenRejectedError,
    UpstreamError,
)
from .log_buffer import log_buffer
from .models.session import Session
from .ndl.client import NdlClient
from .ndl.opensearch import isbn10_to_13
from .session_manager.browser import BrowserSessionManager
from .session_manager.ensurer import SessionEnsurer
from .session_manager.retry import AccessTokenCache, RetryWithRefresh
from .session_manager.vault import CredentialVault

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class AppContext:
    """Owns every long-lived collaborator of the service."""

    def __init__(self):
        self.db: aiosqlite.Connection | None = None
        self.vault: CredentialVault | None = None
        self.browser: BrowserSessionManager | None = None
        self.ensurer: SessionEnsurer | None = None
        self.calil: CalilClient | None = None
        self.tokens: AccessTokenCache | None = None
        self.caller: RetryWithRefresh | None = None
        self.books: BookListFetcher | None = None
        self.ndl: NdlClient | None = None
        self.covers: CoverCache | None = None
        self._background: set[asyncio.Task] = set()

    async def setup(self):
        ensure_dirs()
        self.db = await aiosqlite.connect(str(DB_PATH))
        self.db.row_factory = aiosqlite.Row
        await initialize_db(self.db)

        self.vault = CredentialVault()
        self.browser = BrowserSessionManager()
        atexit.register(self.browser.release_on_exit)
        self.ensurer = SessionEnsurer(self.vault, self.browser)

        self.calil = CalilClient()
        await self.calil.__aenter__()
        self.tokens = AccessTokenCache(self.calil.fetch_access_token)
        self.caller = RetryWithRefresh(self.ensurer, self.tokens)
        self.books = BookListFetcher(self.calil, self.caller)

        self.ndl = NdlClient(BibliographicRepository(self.db))
        self.covers = CoverCache()

    async def cleanup(self):
        for task in list(self._background):
            task.cancel()
        if self.browser:
            await self.browser.shutdown()
        if self.calil:
            await self.calil.aclose()
        if self.ndl:
            await self.ndl.aclose()
        if self.covers:
            await self.covers.aclose()
        if self.db:
            await self.db.close()

    def start_login(self) -> asyncio.Task:
        """Force a fresh login without making the caller wait for it."""
        task = asyncio.ensure_future(self.ensurer.ensure(force=True))
        self._background.add(task)
        task.add_done_callback(self._login_finished)
        return task

    def _login_finished(self, task: asyncio.Task):
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background login failed: {error}", exc_info=error)
        else:
            logger.info("Background login completed.")


def _error_response(error: Exception) -> web.Response:
    if isinstance(error, LoginTimeoutError):
        status = 504
    elif isinstance(error, (UpstreamError, SessionExpiredError, TokenRejectedError, httpx.HTTPError)):
        status = 502
    else:
        status = 500
    message = error.message if isinstance(error, CalilShelfError) else str(error)
    return web.json_response({"error": message}, status=status)


def _ndjson(payload: dict) -> bytes:
    return (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")


# ── Auth Handlers ────────────────────────────────────────────────────────────


async def handle_auth_status(request: web.Request) -> web.Response:
    ctx: AppContext = request.app["ctx"]
    status = await ctx.ensurer.status()
    return web.json_response(status.model_dump())


async def handle_auth_start(request: web.Request) -> web.Response:
    ctx: AppContext = request.app["ctx"]
    ctx.start_login()
    return web.json_response({"ok": True})


async def handle_auth_cookie(request: web.Request) -> web.Response:
    ctx: AppContext = request.app["ctx"]
    session = Session.from_header(await request.text())
    if not session.cookies:
        return web.json_response({"error": "Expected 'name=value; ...' cookies."}, status=400)

    await ctx.vault.save(session)
    ctx.tokens.invalidate()
    return web.json_response({"ok": True, "cookie_count": len(session.cookies)})


async def handle_auth_logout(request: web.Request) -> web.Response:
    ctx: AppContext = request.app["ctx"]
    await ctx.vault.clear()
    ctx.tokens.invalidate()
    return web.json_response({"ok": True})


# ── Book List Handlers ───────────────────────────────────────────────────────


async def handle_list_meta(request: web.Request) -> web.Response:
    ctx: AppContext = request.app["ctx"]
    list_type = request.match_info["list_type"]

    try:
        metadata = await ctx.books.fetch_metadata(list_type)
    except ValueError as e:
        return web.json_response({"error": str(e)}, status=400)
    except (CalilShelfError, httpx.HTTPError) as e:
        logger.error(f"Metadata fetch failed for {list_type}: {e}", exc_info=True)
        return _error_response(e)

    return web.json_response(metadata.model_dump())


async def handle_list_page(request: web.Request) -> web.Response:
    ctx: AppContext = request.app["ctx"]
    list_type = request.match_info["list_type"]

    try:
        page = int(request.match_info["page"])
        books = await ctx.books.fetch_page(list_type, page)
    except ValueError as e:
        return web.json_response({"error": str(e)}, status=400)
    except (CalilShelfError, httpx.HTTPError) as e:
        logger.error(f"Page fetch failed for {list_type}: {e}", exc_info=True)
        return _error_response(e)

    return web.json_response({"page": page, "books": [b.model_dump() for b in books]})


async def handle_list_stream(request: web.Request) -> web.StreamResponse:
    ctx: AppContext = request.app["ctx"]
    list_type = request.match_info["list_type"]
    max_pages_param = request.query.get("maxPages")

    try:
        max_pages: Optional[int] = int(max_pages_param) if max_pages_param else None
    except ValueError:
        return web.json_response({"error": "maxPages must be an integer"}, status=400)
    if list_type not in LIST_TYPES:
        logger.warning(f"Invalid list type: {list_type}")
        return web.json_response({"error": "Invalid list type"}, status=400)

    response = web.StreamResponse(headers={"Content-Type": "application/x-ndjson; charset=utf-8"})
    await response.prepare(request)

    try:
        metadata = await ctx.books.fetch_metadata(list_type)
        await response.write(_ndjson({
            "type": "meta",
            "totalCount": metadata.total_count,
            "totalPages": metadata.total_pages,
            "pageSize": metadata.page_size,
        }))

        pages = metadata.total_pages if max_pages is None else min(max_pages, metadata.total_pages)
        async for page, books in ctx.books.iter_pages(list_type, pages):
            await response.write(_ndjson({
                "type": "page",
                "pageNumber": page,
                "books": [b.model_dump() for b in books],
            }))

        await response.write(_ndjson({"type": "done"}))
        logger.info(f"Stream completed for {list_type}: {pages} page(s)")

    except (CalilShelfError, httpx.HTTPError) as e:
        logger.error(f"Streaming error for {list_type}: {e}", exc_info=True)
        await response.write(_ndjson({"type": "error", "value": "Failed to load the book list."}))

    await response.write_eof()
    return response


# ── NDL Handlers ─────────────────────────────────────────────────────────────


async def handle_bibliographic(request: web.Request) -> web.Response:
    ctx: AppContext = request.app["ctx"]
    isbn = isbn10_to_13(request.match_info["isbn"])

    try:
        items = await ctx.ndl.search(isbn)
    except httpx.HTTPError as e:
        logger.error(f"NDL lookup failed for {isbn}: {e}")
        return _error_response(e)

    if not items:
        return web.json_response({"error": f"No NDL record for {isbn}"}, status=404)
    return web.json_response(items[0].model_dump())


async def handle_cover(request: web.Request) -> web.StreamResponse:
    ctx: AppContext = request.app["ctx"]
    isbn = request.match_info["isbn"]

    try:
        path = await ctx.covers.get(isbn)
    except ValueError as e:
        return web.json_response({"error": str(e)}, status=400)
    except httpx.HTTPError as e:
        logger.warning(f"Cover fetch failed for {isbn}: {e}")
        return _error_response(e)

    if path is None:
        return web.json_response({"error": "Cover not found"}, status=404)
    return web.FileResponse(
        path,
        headers={"Content-Type": "image/jpeg", "Cache-Control": "public, max-age=604800"},
    )


async def handle_logs(request: web.Request) -> web.Response:
    try:
        limit = int(request.query.get("limit", "0")) or None
    except ValueError:
        return web.json_response({"error": "limit must be an integer"}, status=400)
    return web.json_response({"logs": log_buffer.entries(limit)})


# ── App Factory ──────────────────────────────────────────────────────────────


async def on_startup(app: web.Application):
    ctx: AppContext = app["ctx"]
    await ctx.setup()
    logger.info(f"calil-shelf started on {SERVER_HOST}:{SERVER_PORT}")


async def on_cleanup(app: web.Application):
    # aiohttp runs cleanup on SIGINT/SIGTERM too, so the browser is closed there
    ctx: AppContext = app["ctx"]
    await ctx.cleanup()
    logger.info("calil-shelf stopped.")


def create_app(ctx: Optional[AppContext] = None) -> web.Application:
    app = web.Application()
    app["ctx"] = ctx or AppContext()
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/auth/status", handle_auth_status)
    app.router.add_post("/auth/start", handle_auth_start)
    app.router.add_post("/auth/cookie", handle_auth_cookie)
    app.router.add_post("/auth/logout", handle_auth_logout)
    app.router.add_get("/api/books/{list_type}/meta", handle_list_meta)
    app.router.add_get("/api/books/{list_type}/pages/{page}", handle_list_page)
    app.router.add_get("/api/book-list-stream/{list_type}", handle_list_stream)
    app.router.add_get("/api/bibliographic/{isbn}", handle_bibliographic)
    app.router.add_get("/covers/{isbn}", handle_cover)
    app.router.add_get("/api/logs", handle_logs)

    return app


def main():
    """Run calil-shelf as a standalone HTTP service."""
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    logging.getLogger().addHandler(log_buffer)
    web.run_app(create_app(), host=SERVER_HOST, port=SERVER_PORT)


if __name__ == "__main__":
    main()
