"""Configuration constants for the gallery harvester."""
from __future__ import annotations

import os
from pathlib import Path

DATA_DIR: Path = Path(os.getenv("HARVESTER_DATA_DIR", "/app/data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
FAILURE_LOG_DIR: Path = DATA_DIR / "failed_scrapes"
RUNS_DIR: Path = DATA_DIR / "runs"

# Detail page URL for an item discovered through an embed element rather than
# an anchor; ``{hash}`` is the collection/customer hash.
ITEM_URL_TEMPLATE: str = os.getenv(
    "HARVESTER_ITEM_URL_TEMPLATE",
    "https://smartframe.com/search/image/{hash}/{item_id}",
)
# Path fragment used to recognise item links and to split hash/id out of them.
ITEM_PATH_MARKER: str = os.getenv("HARVESTER_ITEM_PATH_MARKER", "/search/image/")
# Network responses whose URL contains this host fragment plus one of the
# path fragments below are inspected for JSON metadata.
METADATA_URL_HOST: str = os.getenv("HARVESTER_METADATA_URL_HOST", "smartframe.")
METADATA_URL_PATHS: tuple[str, ...] = ("/api/", "/metadata", "/image/")


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


def _parse_int(env_var: str, default: int) -> int:
    try:
        return int(os.getenv(env_var, str(default)))
    except ValueError:
        return default


def _parse_bool(env_var: str, default: bool) -> bool:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", ""}


# Playwright timeouts (seconds)
# Navigation timeout for page.goto calls.
NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds("HARVESTER_NAV_TIMEOUT_SECONDS", 30)
# Gallery readiness on the entry page.
GALLERY_READY_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "HARVESTER_GALLERY_READY_TIMEOUT_SECONDS", 15
)
# Detail page readiness: embed element, then metadata-ready condition.
EMBED_WAIT_TIMEOUT_SECONDS: int = _parse_timeout_seconds("HARVESTER_EMBED_WAIT_SECONDS", 5)
METADATA_READY_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "HARVESTER_METADATA_READY_SECONDS", 3
)

# Navigation retry controller
NAV_MAX_ATTEMPTS: int = _parse_int("HARVESTER_NAV_MAX_ATTEMPTS", 3)
SERVER_ERROR_BACKOFF_BASE_MS: int = 2000
RATE_LIMIT_BACKOFF_BASE_MS: int = 5000

# Worker pool
DEFAULT_CONCURRENCY: int = _parse_int("HARVESTER_CONCURRENCY", 5)
MAX_CONCURRENCY: int = 10
INTER_BATCH_DELAY_MS: int = _parse_int("HARVESTER_INTER_BATCH_DELAY_MS", 500)
# Settle delay after navigation when no metadata-ready signal appears.
POST_NAV_SETTLE_MS: int = 500

# Retry rounds
DEFAULT_MAX_RETRY_ROUNDS: int = _parse_int("HARVESTER_MAX_RETRY_ROUNDS", 3)
RETRY_CONCURRENCY: int = 1
RETRY_ROUND_DELAY_MS: int = 5000
RETRY_BATCH_DELAY_MS: int = 3000
# A retried record counts as recovered only if one of these fields is set.
MEANINGFUL_FIELDS: tuple[str, ...] = tuple(
    field.strip()
    for field in os.getenv("HARVESTER_MEANINGFUL_FIELDS", "title,photographer,caption").split(",")
    if field.strip()
)

# Discovery
DEFAULT_SCROLL_DELAY_MS: int = 1000
PATIENCE_ROUNDS: int = _parse_int("HARVESTER_PATIENCE_ROUNDS", 5)
# Extra wait after a pagination click on top of the scroll delay.
CLICK_SETTLE_EXTRA_MS: int = 2000
SCROLL_INTO_VIEW_DELAY_MS: int = 500
# Pause before the final collection once discovery has terminated.
FINAL_COLLECT_DELAY_MS: int = _parse_int("HARVESTER_FINAL_COLLECT_DELAY_MS", 3000)

# Proxy pool
PROXY_LIST: str = os.getenv("PROXY_LIST", "")
PROXY_MAX_FAILURES: int = 3
PROXY_HEALTH_CHECK_INTERVAL_SECONDS: int = _parse_timeout_seconds(
    "PROXY_HEALTH_CHECK_INTERVAL_SECONDS", 60
)
# Endpoints unused for longer than this get their failure counters reset.
PROXY_STALE_AFTER_SECONDS: int = 3600

# VPN
VPN_ENABLED: bool = _parse_bool("VPN_ENABLED", False)
VPN_CHANGE_COMMAND: str = os.getenv("VPN_CHANGE_COMMAND", "")
VPN_VERIFY_COMMAND: str = os.getenv("VPN_VERIFY_COMMAND", "")
VPN_WAIT_AFTER_CHANGE_MS: int = _parse_int("VPN_WAIT_AFTER_CHANGE", 5000)
VPN_MAX_VERIFY_ATTEMPTS: int = _parse_int("VPN_MAX_VERIFY_ATTEMPTS", 10)
VPN_VERIFY_DELAY_MS: int = _parse_int("VPN_VERIFY_DELAY", 2000)
VPN_CHANGE_ON_START: bool = _parse_bool("VPN_CHANGE_ON_START", False)
VPN_ROTATE_BETWEEN_ROUNDS: bool = _parse_bool("VPN_ROTATE_BETWEEN_ROUNDS", False)
VPN_LOCATIONS: tuple[str, ...] = tuple(
    loc.strip() for loc in os.getenv("VPN_LOCATIONS", "").split(",") if loc.strip()
)
PUBLIC_IP_URL: str = os.getenv("VPN_PUBLIC_IP_URL", "https://api.ipify.org?format=json")
PUBLIC_IP_TIMEOUT_SECONDS: int = 10

HEADLESS: bool = _parse_bool("HARVESTER_HEADLESS", True)

# Free space required on the data volume for reports and logs.
MIN_FREE_MB: int = _parse_int("MIN_FREE_MB", 100)

USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

COMMON_HEADERS: dict[str, str] = {
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
}

BROWSER_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
)
