"""The one entry point for "I need a usable Calil session right now"."""

from __future__ import annotations

import logging
import sys
from typing import Callable

from ..config import BROWSER_HEADLESS
from ..models.session import Session, SessionStatus
from .browser import BrowserSessionManager
from .singleflight import SingleFlight
from .vault import CredentialVault

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class SessionEnsurer:
    """Returns a probed session from the vault, logging in only when it must.

    Nothing else may call ``BrowserSessionManager.login``: funnelling every
    login through here is what keeps it to one at a time.
    """

    def __init__(
        self,
        vault: CredentialVault,
        browser: BrowserSessionManager,
        prefer_headless: bool = BROWSER_HEADLESS,
    ):
        self.vault = vault
        self.browser = browser
        self._prefer_headless = prefer_headless
        self._flights = SingleFlight()
        self._refresh_listeners: list[Callable[[Session], None]] = []

    def add_refresh_listener(self, listener: Callable[[Session], None]) -> None:
        """Register a callback run after every successful login."""
        self._refresh_listeners.append(listener)

    async def ensure(self, force: bool = False) -> Session:
        """Return a session Calil accepts.

        With ``force`` the vault is bypassed and a fresh login is performed.
        """
        if force:
            return await self._flights.do(self._login_and_save, key="login")
        return await self._flights.do(self._load_or_login, key="ensure")

    async def _load_or_login(self) -> Session:
        stored = await self.vault.load()
        if stored is not None:
            session = await self.vault.probe(stored)
            if session is not None:
                return session
            logger.info("Stored session is no longer valid, logging in again")
        else:
            logger.info("No stored session, logging in")
        return await self._flights.do(self._login_and_save, key="login")

    async def _login_and_save(self) -> Session:
        # First-ever login is always visible: the consent step may need a human
        headless = self._prefer_headless and self.browser.has_profile
        session = await self.browser.login(headless=headless)
        if not session.cookies:
            logger.warning("Login finished but no Calil cookies were captured")

        saved = await self.vault.save(session)
        for listener in self._refresh_listeners:
            listener(saved)
        return saved

    async def status(self) -> SessionStatus:
        """Report whether the stored session still works, without logging in."""
        stored = await self.vault.load()
        if stored is None:
            return SessionStatus(state="NO_COOKIE")

        session = await self.vault.probe(stored)
        if session is None:
            return SessionStatus(
                state="EXPIRED", cookie_count=len(stored.cookies), saved_at=stored.saved_at
            )
        return SessionStatus(
            state="VALID", cookie_count=len(session.cookies), saved_at=session.saved_at
        )
