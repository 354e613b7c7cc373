"""Calil and NDL URLs, request headers, and browser launch settings."""

# ── URLs ─────────────────────────────────────────────────────────────────────

CALIL_APEX_DOMAIN = "calil.jp"
CALIL_BASE = "https://calil.jp"
CALIL_ROOT_URL = f"{CALIL_BASE}/"
CALIL_AUTH_BASE = "https://login.calil.jp"
CALIL_AUTH_HOST = "login.calil.jp"
CALIL_LOGIN_URL = f"{CALIL_AUTH_BASE}/google_login?redirect=%2F"
CALIL_LIST_REFERER = f"{CALIL_BASE}/list"

CALIL_TOKEN_URL = f"{CALIL_BASE}/infrastructure/v2/get_yomitai_token"
CALIL_TOTAL_COUNT_URL = f"{CALIL_BASE}/api/list/v2/get_total_count"
CALIL_LIST_URL = f"{CALIL_BASE}/api/list/v2/"

NDL_OPENSEARCH_URL = "https://ndlsearch.ndl.go.jp/api/opensearch"
NDL_THUMBNAIL_URL = "https://ndlsearch.ndl.go.jp/thumbnail/{isbn}.jpg"

# ── Calil List API ───────────────────────────────────────────────────────────

TOKEN_HEADER = "Calil-Yomitai-Token"
ITEMS_PER_PAGE = 20
LIST_TYPES = ("wish", "read")

# ── Browser ──────────────────────────────────────────────────────────────────

LOGIN_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/129.0.0.0 Safari/537.36"
)

ANTI_DETECTION_ARGS = [
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--no-first-run",
    "--no-default-browser-check",
]

HIDE_WEBDRIVER_SCRIPT = (
    "Object.defineProperty(navigator, 'webdriver', { get: () => false });"
)

# Evaluated in the page until it returns true
LOGIN_LANDED_CHECK = (
    "() => location.hostname.endsWith('calil.jp') && location.pathname === '/'"
)

SYSTEM_CHROME_CANDIDATES = {
    "win32": [
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
    ],
    "darwin": [
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
    ],
    "linux": [
        "/usr/bin/google-chrome-stable",
        "/usr/bin/google-chrome",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
    ],
}

DEVTOOLS_PORT_FILE = "DevToolsActivePort"
