from __future__ import annotations
import os
from dataclasses import dataclass

DEFAULT_SOURCE_URL = "https://stockevents.app/en/stock/{ticker}/dividends"


def env_number(name: str, default, minimum=None):
    """Read an int or float env var (typed by ``default``), clamped to ``minimum``.

    Unparseable values fall back to ``default``.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        val = type(default)(raw.strip())
    except ValueError:
        return default
    return val if minimum is None else max(minimum, val)


def env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    port: int = 3000
    cache_ttl: int = 60
    cache_maxsize: int = 1024
    max_browsers: int = 3
    browser_timeout_ms: int = 30000
    content_timeout_ms: int = 25000
    nav_attempts: int = 3
    nav_backoff: float = 1.0
    request_timeout: float = 150.0
    rate_limit_window: int = 15 * 60
    rate_limit_max: int = 100
    batch_max: int = 10
    headless: bool = True
    source_url_template: str = DEFAULT_SOURCE_URL
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            port=env_number("PORT", 3000, 1),
            cache_ttl=env_number("CACHE_TTL", 60, 1),
            cache_maxsize=env_number("CACHE_MAXSIZE", 1024, 1),
            max_browsers=env_number("MAX_CONCURRENT_BROWSERS", 3, 1),
            browser_timeout_ms=env_number("BROWSER_TIMEOUT", 30000, 1000),
            content_timeout_ms=env_number("CONTENT_TIMEOUT", 25000, 1000),
            nav_attempts=env_number("NAV_ATTEMPTS", 3, 1),
            nav_backoff=env_number("NAV_BACKOFF", 1.0, 0.0),
            request_timeout=env_number("REQUEST_TIMEOUT", 150.0, 1.0),
            rate_limit_window=env_number("RATE_LIMIT_WINDOW", 15 * 60, 1),
            rate_limit_max=env_number("RATE_LIMIT_MAX", 100, 1),
            batch_max=env_number("BATCH_MAX", 10, 1),
            headless=env_flag("HEADLESS", True),
            source_url_template=os.getenv("SOURCE_URL_TEMPLATE") or DEFAULT_SOURCE_URL,
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
