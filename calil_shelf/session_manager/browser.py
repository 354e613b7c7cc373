"""Chrome automation over CDP: shared browser lifecycle and the Calil login flow."""

from __future__ import annotations

import asyncio
import enum
import logging
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import (
    BROWSER_ENDPOINT_FILE,
    BROWSER_LAUNCH_TIMEOUT,
    BROWSER_PROFILE_DIR,
    LOGIN_TIMEOUT_MS,
)
from ..constants import (
    ANTI_DETECTION_ARGS,
    CALIL_LOGIN_URL,
    DEVTOOLS_PORT_FILE,
    HIDE_WEBDRIVER_SCRIPT,
    LOGIN_LANDED_CHECK,
    LOGIN_USER_AGENT,
)
from ..exceptions import BrowserLaunchError, LoginTimeoutError
from ..models.session import Session
from .browser_path import (
    ExecutableProvider,
    ManagedChromiumProvider,
    SystemChromeProvider,
    resolve_executable,
)
from .singleflight import SingleFlight

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class BrowserState(enum.Enum):
    ABSENT = "absent"
    LAUNCHING = "launching"
    READY = "ready"
    DISCONNECTED = "disconnected"
    EXITING = "exiting"


def read_devtools_endpoint(port_file: Path) -> Optional[str]:
    """Build the ws:// endpoint from Chrome's DevToolsActivePort file, if written yet."""
    try:
        lines = port_file.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    if len(lines) < 2 or not lines[0].strip().isdigit():
        return None
    return f"ws://127.0.0.1:{lines[0].strip()}{lines[1].strip()}"


class BrowserSessionManager:
    """Owns the one automated Chrome process and drives logins through it.

    The browser outlives individual logins: each login opens and closes its
    own page. Its endpoint is written to disk so a restarted process can
    reconnect instead of launching a second browser.
    """

    def __init__(
        self,
        profile_dir: Path = BROWSER_PROFILE_DIR,
        endpoint_file: Path = BROWSER_ENDPOINT_FILE,
        providers: Optional[Sequence[ExecutableProvider]] = None,
        playwright_factory: Callable = async_playwright,
        login_timeout_ms: int = LOGIN_TIMEOUT_MS,
        launch_timeout: float = BROWSER_LAUNCH_TIMEOUT,
    ):
        self.profile_dir = Path(profile_dir)
        self.endpoint_file = Path(endpoint_file)
        self._providers = providers
        self._playwright_factory = playwright_factory
        self._login_timeout_ms = login_timeout_ms
        self._launch_timeout = launch_timeout

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._state = BrowserState.ABSENT
        self._launches = SingleFlight()

    @property
    def state(self) -> BrowserState:
        return self._state

    @property
    def has_profile(self) -> bool:
        return self.profile_dir.exists() and any(self.profile_dir.iterdir())

    # ── Browser instance ────────────────────────────────────────────────────

    async def get_browser(self, headless: bool = False) -> Browser:
        """Return the shared browser, launching or reconnecting if needed.

        Concurrent callers during a launch all receive the same browser.
        ``headless`` only affects a fresh launch; a running browser is reused
        in whatever mode it was started.
        """
        if self._state is BrowserState.EXITING:
            raise BrowserLaunchError("Browser manager is shutting down.")

        if self._browser is not None:
            if await self._is_alive(self._browser):
                logger.debug("Reusing existing browser instance")
                return self._browser
            logger.warning("Cached browser is disconnected, will launch a new one")
            self._browser = None
            self._state = BrowserState.DISCONNECTED

        if self._launches.in_flight("launch"):
            logger.info("Browser launch already in progress, waiting...")
        return await self._launches.do(lambda: self._launch(headless), key="launch")

    async def _is_alive(self, browser: Browser) -> bool:
        if not browser.is_connected():
            return False
        try:
            cdp = await browser.new_browser_cdp_session()
            await cdp.send("Browser.getVersion")
            await cdp.detach()
            return True
        except PlaywrightError as e:
            logger.debug(f"Liveness check failed: {e}")
            return False

    async def _launch(self, headless: bool) -> Browser:
        previous = self._state
        self._state = BrowserState.LAUNCHING
        try:
            browser = await self._reconnect()
            if browser is None:
                browser = await self._start_new(headless)
        except BaseException:
            self._state = previous
            raise

        self._browser = browser
        self._state = BrowserState.READY
        return browser

    async def _ensure_playwright(self) -> Playwright:
        if self._playwright is None:
            self._playwright = await self._playwright_factory().start()
        return self._playwright

    async def _reconnect(self) -> Optional[Browser]:
        endpoint = await self._load_endpoint()
        if not endpoint:
            return None

        pw = await self._ensure_playwright()
        try:
            browser = await pw.chromium.connect_over_cdp(endpoint)
        except PlaywrightError as e:
            logger.info(f"Saved browser endpoint is not reachable ({e}); launching fresh")
            await self._forget_endpoint()
            return None

        logger.info(f"Reconnected to running browser at {endpoint}")
        return browser

    async def _start_new(self, headless: bool) -> Browser:
        pw = await self._ensure_playwright()
        providers = self._providers
        if providers is None:
            providers = [
                SystemChromeProvider(),
                ManagedChromiumProvider(lambda: pw.chromium.executable_path),
            ]
        executable = await resolve_executable(providers)

        self.profile_dir.mkdir(parents=True, exist_ok=True)
        port_file = self.profile_dir / DEVTOOLS_PORT_FILE
        port_file.unlink(missing_ok=True)

        args = [
            executable,
            f"--user-data-dir={self.profile_dir}",
            "--remote-debugging-port=0",
            *ANTI_DETECTION_ARGS,
        ]
        if sys.platform.startswith("linux"):
            args.append("--no-sandbox")
        if headless:
            args.append("--headless=new")
        args.append("about:blank")

        logger.info(f"Launching browser (headless={headless})...")
        try:
            # Own session so the browser survives a restart of this process
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise BrowserLaunchError(f"Failed to start {executable}: {e}") from e

        try:
            endpoint = await self._wait_for_endpoint(port_file)
            try:
                browser = await pw.chromium.connect_over_cdp(endpoint)
            except PlaywrightError as e:
                raise BrowserLaunchError(f"Could not connect to launched browser: {e}") from e
        except BaseException:
            # A half-started browser would keep the profile locked for the next launch
            logger.warning("Browser launch failed, stopping the spawned process")
            await self._stop_process()
            raise

        await self._save_endpoint(endpoint)
        logger.info("Browser launched successfully")
        return browser

    async def _wait_for_endpoint(self, port_file: Path) -> str:
        deadline = asyncio.get_event_loop().time() + self._launch_timeout

        while asyncio.get_event_loop().time() < deadline:
            if self._process is not None and self._process.returncode is not None:
                raise BrowserLaunchError(
                    f"Browser exited during startup (code {self._process.returncode})."
                )
            endpoint = read_devtools_endpoint(port_file)
            if endpoint:
                return endpoint
            await asyncio.sleep(0.1)

        raise BrowserLaunchError(
            f"Browser did not report a DevTools endpoint within {self._launch_timeout:.0f}s."
        )

    # ── Endpoint file ───────────────────────────────────────────────────────

    async def _load_endpoint(self) -> Optional[str]:
        try:
            text = await asyncio.to_thread(self.endpoint_file.read_text, encoding="utf-8")
        except OSError:
            return None
        return text.strip() or None

    async def _save_endpoint(self, endpoint: str) -> None:
        def _write():
            self.endpoint_file.parent.mkdir(parents=True, exist_ok=True)
            self.endpoint_file.write_text(endpoint, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def _forget_endpoint(self) -> None:
        await asyncio.to_thread(self.endpoint_file.unlink, missing_ok=True)

    # ── Login ───────────────────────────────────────────────────────────────

    async def login(self, headless: bool = False) -> Session:
        """Drive the Calil Google login and return the captured session.

        The first login usually needs a visible window for the consent step;
        later ones pass unattended thanks to the persistent profile. Raises
        LoginTimeoutError if the landing page is not reached in time.
        """
        browser = await self.get_browser(headless)
        context = browser.contexts[0] if browser.contexts else await browser.new_context()
        page = await context.new_page()

        try:
            cdp = await context.new_cdp_session(page)
            await cdp.send("Network.setUserAgentOverride", {"userAgent": LOGIN_USER_AGENT})
            await page.add_init_script(HIDE_WEBDRIVER_SCRIPT)

            logger.info("Navigating to Calil login...")
            try:
                await page.goto(
                    CALIL_LOGIN_URL,
                    wait_until="domcontentloaded",
                    timeout=self._login_timeout_ms,
                )
                await page.wait_for_function(LOGIN_LANDED_CHECK, timeout=self._login_timeout_ms)
            except PlaywrightTimeoutError as e:
                raise LoginTimeoutError(
                    f"Login did not reach calil.jp within {self._login_timeout_ms // 1000}s."
                ) from e

            raw_cookies = await context.cookies()
            session = Session.from_browser_cookies(raw_cookies)
            logger.info(
                f"Login complete: kept {len(session.cookies)} of {len(raw_cookies)} cookies"
            )
            return session

        finally:
            # Only the page; the browser stays up for the next login
            try:
                await page.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing login page: {e}")

    # ── Teardown ────────────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Close the shared browser and clear the handle."""
        self._state = BrowserState.EXITING
        browser, self._browser = self._browser, None

        if browser is not None:
            logger.info("Closing browser...")
            try:
                cdp = await browser.new_browser_cdp_session()
                await cdp.send("Browser.close")
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error disconnecting from browser: {e}")

        await self._stop_process()
        await self._forget_endpoint()

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            finally:
                self._playwright = None

        logger.info("Browser session stopped.")

    async def _stop_process(self, timeout: float = 5) -> None:
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning("Browser did not exit after SIGTERM, killing it")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    def release_on_exit(self) -> None:
        """Best-effort release for interpreter exit; nothing is awaited."""
        if self._browser is not None:
            logger.info("Releasing browser handle on process exit")
            self._browser = None
        self._state = BrowserState.EXITING
