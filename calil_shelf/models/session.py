"""Pydantic models for the Calil session and its status."""

from __future__ import annotations

import time
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

from ..constants import CALIL_APEX_DOMAIN, CALIL_AUTH_BASE


class Cookie(BaseModel):
    """A single browser cookie as captured at login."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    value: str
    domain: str = ""
    path: str = "/"
    expires: float = -1  # epoch seconds, -1 for browser-session cookies
    http_only: bool = Field(default=False, alias="httpOnly")
    secure: bool = False

    def header_pair(self) -> str:
        return f"{self.name}={self.value}"

    def belongs_to_site(self) -> bool:
        """True for cookies of calil.jp (or a subdomain) or the auth subdomain's path."""
        domain = self.domain.lstrip(".")
        if domain == CALIL_APEX_DOMAIN or domain.endswith(f".{CALIL_APEX_DOMAIN}"):
            return True
        return self.path.startswith(CALIL_AUTH_BASE)


class Session(BaseModel):
    """An ordered cookie set proving we are logged in to Calil."""

    model_config = ConfigDict(populate_by_name=True)

    cookies: list[Cookie] = Field(default_factory=list)
    saved_at: int = Field(default=0, alias="savedAt")  # epoch millis

    @classmethod
    def from_browser_cookies(cls, raw: Iterable[dict]) -> "Session":
        """Build a session from driver cookie dicts, keeping only Calil cookies."""
        cookies = [Cookie.model_validate(c) for c in raw]
        return cls(cookies=[c for c in cookies if c.belongs_to_site()])

    @classmethod
    def from_header(cls, raw: str) -> "Session":
        """Parse a ``name=value; name2=value2`` string into a session."""
        cookies = []
        for part in raw.split(";"):
            name, sep, value = part.strip().partition("=")
            if not sep or not name:
                continue
            cookies.append(
                Cookie(name=name, value=value, domain=f".{CALIL_APEX_DOMAIN}", secure=True)
            )
        return cls(cookies=cookies)

    def cookie_header(self) -> str:
        return "; ".join(c.header_pair() for c in self.cookies)

    def by_expiry_desc(self) -> list[Cookie]:
        return sorted(self.cookies, key=lambda c: c.expires, reverse=True)

    def stamped(self) -> "Session":
        return self.model_copy(update={"saved_at": int(time.time() * 1000)})

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class SessionStatus(BaseModel):
    """Result of checking the stored session without logging in."""

    state: str = "NO_COOKIE"  # NO_COOKIE, VALID, EXPIRED
    cookie_count: int = 0
    saved_at: int | None = None
