"""Credential vault: on-disk Calil session plus a live validity probe."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Optional

import httpx
from pydantic import ValidationError

from ..config import VAULT_FILE
from ..constants import CALIL_ROOT_URL
from ..models.session import Session

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class CredentialVault:
    """Single source of truth for "do we believe we are logged in".

    The session is stored as one JSON document ``{cookies, savedAt}``. A
    stored session is never trusted on its own; ``probe`` checks it against
    the live site.
    """

    def __init__(
        self,
        path: Path = VAULT_FILE,
        probe_url: str = CALIL_ROOT_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.path = Path(path)
        self._probe_url = probe_url
        self._transport = transport

    # ── Persistence ─────────────────────────────────────────────────────────

    async def save(self, session: Session) -> Session:
        """Replace the stored session. Returns the session as written."""
        stamped = session.stamped()
        payload = json.dumps(stamped.to_document(), ensure_ascii=False)
        await asyncio.to_thread(self._write, payload)
        logger.info(f"Saved session with {len(stamped.cookies)} cookie(s) to {self.path}")
        return stamped

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Unique temp name so concurrent saves never share a partial file
        tmp = self.path.with_name(f".{self.path.name}.{os.getpid()}.{uuid.uuid4().hex}.tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, self.path)

    async def load(self) -> Optional[Session]:
        """Return the stored session, or None if missing or unreadable."""
        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read session file {self.path}: {e}")
            return None

        try:
            return Session.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring corrupt session file {self.path}: {e}")
            return None

    async def clear(self) -> None:
        """Delete the stored session. No error if there is none."""
        try:
            await asyncio.to_thread(self.path.unlink)
            logger.info("Session cleared.")
        except FileNotFoundError:
            pass

    # ── Validity ────────────────────────────────────────────────────────────

    async def probe(self, session: Session) -> Optional[Session]:
        """Find the first cookie Calil still accepts, newest expiry first.

        On success the single surviving cookie is persisted as the new,
        minimal session and returned. Returns None if every candidate fails.
        Transport errors count as a failed candidate.
        """
        candidates = session.by_expiry_desc()
        if not candidates:
            return None

        async with httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=False,
            timeout=30.0,
        ) as client:
            for cookie in candidates:
                try:
                    response = await client.get(
                        self._probe_url, headers={"Cookie": cookie.header_pair()}
                    )
                except httpx.HTTPError as e:
                    logger.warning(f"Probe with cookie '{cookie.name}' failed: {e}")
                    continue

                if response.status_code == 200:
                    logger.info(f"Session valid via cookie '{cookie.name}'")
                    return await self.save(Session(cookies=[cookie]))

                logger.info(f"Cookie '{cookie.name}' rejected (HTTP {response.status_code})")

        return None

    async def is_valid(self, session: Session) -> bool:
        return await self.probe(session) is not None
