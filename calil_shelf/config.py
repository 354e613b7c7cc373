"""Application configuration loaded from environment variables."""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def resolve_app_root(
    platform: str = sys.platform,
    env: dict | None = None,
    home: Path | None = None,
    app_dir_name: str | None = None,
) -> Path:
    """Return the per-user data directory for the app on this platform."""
    env = os.environ if env is None else env
    home = home or Path.home()
    app_dir_name = app_dir_name or env.get("CALIL_APP_DIR_NAME", "Calil-management-app")

    if platform == "win32":
        base = env.get("LOCALAPPDATA") or str(home / "AppData" / "Local")
        return Path(base) / app_dir_name

    if platform == "darwin":
        return home / "Library" / "Application Support" / app_dir_name

    base = env.get("XDG_DATA_HOME") or str(home / ".local" / "share")
    return Path(base) / app_dir_name


# Paths
APP_ROOT = Path(os.getenv("CALIL_APP_ROOT") or resolve_app_root())
CACHE_DIR = APP_ROOT / "cache"
COVER_CACHE_DIR = CACHE_DIR / "covers"
VAULT_DIR = APP_ROOT / "vault"
VAULT_FILE = VAULT_DIR / "calil.cookies.json"
BROWSER_ENDPOINT_FILE = VAULT_DIR / "chrome.ws"
BROWSER_PROFILE_DIR = APP_ROOT / "browser-profile"
CHROMIUM_CACHE_DIR = APP_ROOT / "chromium-cache"
DB_PATH = APP_ROOT / "bibliographic.db"

# Managed Chromium downloads land under the app root unless overridden
os.environ.setdefault("PLAYWRIGHT_BROWSERS_PATH", str(CHROMIUM_CACHE_DIR))

# HTTP service
SERVER_HOST = os.getenv("CALIL_SERVER_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("CALIL_SERVER_PORT", "8787"))

# Browser
BROWSER_HEADLESS = os.getenv("BROWSER_HEADLESS", "false").lower() == "true"
LOGIN_TIMEOUT_MS = int(os.getenv("LOGIN_TIMEOUT_MS", "180000"))
BROWSER_LAUNCH_TIMEOUT = float(os.getenv("BROWSER_LAUNCH_TIMEOUT", "30"))

# Upstream
TOKEN_TTL_SECONDS = int(os.getenv("TOKEN_TTL_SECONDS", "600"))
COVER_NOT_FOUND_TTL_SECONDS = 24 * 60 * 60

# Logging
LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "500"))


def ensure_dirs():
    """Create required data directories if they don't exist."""
    APP_ROOT.mkdir(parents=True, exist_ok=True)
    VAULT_DIR.mkdir(parents=True, exist_ok=True)
    COVER_CACHE_DIR.mkdir(parents=True, exist_ok=True)
