"""HTTP calls to the Calil list API, each classified into a typed result."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import httpx

from ..constants import (
    CALIL_AUTH_HOST,
    CALIL_LIST_REFERER,
    CALIL_LIST_URL,
    CALIL_TOKEN_URL,
    CALIL_TOTAL_COUNT_URL,
    ITEMS_PER_PAGE,
    TOKEN_HEADER,
)
from ..models.book import Book
from ..models.upstream import AuthExpired, Ok, OtherError, TokenExpired, UpstreamResult

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def _redirects_to_login(response: httpx.Response) -> bool:
    if not response.is_redirect:
        return False
    location = response.headers.get("location", "")
    return CALIL_AUTH_HOST in location or "/login" in location


class CalilClient:
    """Thin async client for Calil. Never raises for HTTP or transport failures."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30.0):
        self._transport = transport
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            transport=self._transport,
            headers={"accept": "*/*", "Referer": CALIL_LIST_REFERER},
            follow_redirects=False,
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("CalilClient is not open.")
        return self._client

    @staticmethod
    def _headers(cookie_header: str, token: Optional[str] = None) -> dict[str, str]:
        headers = {"Cookie": cookie_header}
        if token:
            headers[TOKEN_HEADER] = token
        return headers

    async def _send(
        self, method: str, url: str, headers: dict[str, str], body: Optional[dict] = None
    ) -> httpx.Response | OtherError:
        try:
            return await self._http.request(method, url, headers=headers, json=body)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {e}")
            return OtherError(f"{method} {url} failed: {e}", error=e)

    @staticmethod
    def _classify(response: httpx.Response, what: str, rejected) -> Optional[UpstreamResult]:
        """Map a non-success response to a failure variant; None means success."""
        status = response.status_code
        if _redirects_to_login(response):
            return AuthExpired(f"{what}: redirected to login", status=status)
        if status in (401, 403):
            return rejected(f"{what}: HTTP {status} {response.reason_phrase}", status=status)
        if not response.is_success:
            return OtherError(f"{what}: HTTP {status} {response.reason_phrase}", status=status)
        return None

    async def fetch_access_token(self, cookie_header: str) -> UpstreamResult:
        """GET the yomitai token. A 401/403 here means the session itself is bad."""
        response = await self._send("GET", CALIL_TOKEN_URL, self._headers(cookie_header))
        if isinstance(response, OtherError):
            return response

        failure = self._classify(response, "Failed to fetch yomitai token", AuthExpired)
        if failure is not None:
            return failure

        try:
            return Ok(str(response.json()[TOKEN_HEADER]))
        except (ValueError, KeyError, TypeError) as e:
            return OtherError(f"Unexpected token response: {e}", status=response.status_code, error=e)

    async def fetch_total_count(self, cookie_header: str, token: str, list_type: str) -> UpstreamResult:
        response = await self._send(
            "POST",
            CALIL_TOTAL_COUNT_URL,
            self._headers(cookie_header, token),
            {"name": list_type, "startCount": 0},
        )
        if isinstance(response, OtherError):
            return response

        failure = self._classify(response, "Failed to fetch total count", TokenExpired)
        if failure is not None:
            return failure

        try:
            total = int(response.json()["totalCount"])
        except (ValueError, KeyError, TypeError) as e:
            return OtherError(f"Unexpected total count response: {e}", status=response.status_code, error=e)

        logger.info(f"Total books in {list_type} list: {total}")
        return Ok(total)

    async def fetch_book_page(
        self, cookie_header: str, token: str, list_type: str, page: int, per_page: int = ITEMS_PER_PAGE
    ) -> UpstreamResult:
        response = await self._send(
            "POST",
            CALIL_LIST_URL,
            self._headers(cookie_header, token),
            {"name": list_type, "page": page, "perCount": per_page},
        )
        if isinstance(response, OtherError):
            return response

        failure = self._classify(response, f"Failed to fetch book page {page}", TokenExpired)
        if failure is not None:
            return failure

        try:
            books = [Book.model_validate(b) for b in response.json()["books"]]
        except (ValueError, KeyError, TypeError) as e:
            return OtherError(f"Unexpected book page response: {e}", status=response.status_code, error=e)
        return Ok(books)
