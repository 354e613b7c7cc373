"""Browser executable resolution: system Chrome first, managed Chromium second."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import sys
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from ..constants import SYSTEM_CHROME_CANDIDATES
from ..exceptions import BrowserLaunchError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class ExecutableProvider(Protocol):
    name: str

    async def resolve(self) -> Optional[str]:
        """Return a usable executable path, None to defer to the next provider."""
        ...


def is_wsl() -> bool:
    return sys.platform.startswith("linux") and "microsoft" in platform.release().lower()


class SystemChromeProvider:
    """Finds a Chrome/Chromium already installed on the machine."""

    name = "system"

    def __init__(self, candidates: Optional[Sequence[str]] = None, skip_on_wsl: bool = True):
        if candidates is None:
            key = "linux" if sys.platform.startswith("linux") else sys.platform
            candidates = SYSTEM_CHROME_CANDIDATES.get(key, [])
        self._candidates = list(candidates)
        self._skip_on_wsl = skip_on_wsl

    async def resolve(self) -> Optional[str]:
        # WSL sees Windows paths but cannot drive that Chrome reliably
        if self._skip_on_wsl and is_wsl():
            return None
        for candidate in self._candidates:
            if Path(candidate).exists():
                return candidate
        return None


class ManagedChromiumProvider:
    """Playwright-managed Chromium, downloaded the first time it is needed."""

    name = "managed"

    def __init__(self, executable_path: Callable[[], str]):
        self._executable_path = executable_path

    async def resolve(self) -> Optional[str]:
        path = self._executable_path()
        if path and Path(path).exists():
            return path

        logger.info("Downloading Chromium for Playwright (first use only)...")
        await self._install()

        path = self._executable_path()
        if path and Path(path).exists():
            return path
        raise BrowserLaunchError(f"Chromium download finished but {path!r} does not exist.")

    async def _install(self) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                sys.executable, "-m", "playwright", "install", "chromium",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=os.environ.copy(),
            )
        except OSError as e:
            raise BrowserLaunchError(f"Could not start Chromium download: {e}") from e

        output, _ = await process.communicate()
        if process.returncode != 0:
            tail = output.decode(errors="replace")[-500:] if output else ""
            raise BrowserLaunchError(
                f"Chromium download failed (exit {process.returncode}): {tail}"
            )


async def resolve_executable(providers: Sequence[ExecutableProvider]) -> str:
    """Try each provider in order and return the first executable found."""
    for provider in providers:
        path = await provider.resolve()
        if path:
            logger.info(f"Using {provider.name} browser: {path}")
            return path
    raise BrowserLaunchError("No browser executable could be resolved.")
