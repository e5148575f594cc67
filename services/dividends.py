from __future__ import annotations

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Sequence, Tuple

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from services.errors import (
    DividendError,
    ExtractionTimeout,
    NavigationFailed,
    NavigationTimeout,
    ValidationError,
)
from services.extract import TABLE_ROW_SELECTORS, extract_dividend_row, parse_dividend_row
from services.models import FetchResult
from services.pool import InstancePool
from utils.cache import TTLCache, normalize_ticker
from utils.config import DEFAULT_SOURCE_URL

logger = logging.getLogger(__name__)

TICKER_RE = re.compile(r'^[A-Za-z0-9.-]{1,10}$')

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36'
)
VIEWPORT = {'width': 1920, 'height': 1080}

Extractor = Callable[[Any], Awaitable[Optional[Sequence[str]]]]


def validate_ticker(ticker: Any) -> str:
    """Return the upper-cased ticker or raise ValidationError."""
    if not ticker or not isinstance(ticker, str):
        raise ValidationError('Ticker symbol is required')
    if not TICKER_RE.match(ticker):
        raise ValidationError('Invalid ticker symbol format', ticker=ticker)
    return normalize_ticker(ticker)


def _batch_key(ticker: Any) -> str:
    return normalize_ticker(ticker) if isinstance(ticker, str) else str(ticker)


def _is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError)) or 'timeout' in str(exc).lower()


class DividendFetcher:
    """Drives one pooled browser through a ticker's dividends page.

    Only navigation is retried (``attempt * backoff`` seconds between tries);
    a missing table or an empty row fails immediately. The instance always
    goes back to the pool, including on cancellation.
    """

    def __init__(
        self,
        pool: InstancePool,
        extractor: Extractor = extract_dividend_row,
        *,
        url_template: str = DEFAULT_SOURCE_URL,
        nav_timeout_ms: int = 30000,
        content_timeout_ms: int = 25000,
        max_attempts: int = 3,
        backoff: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.pool = pool
        self.extractor = extractor
        self.url_template = url_template
        self.nav_timeout_ms = nav_timeout_ms
        self.content_timeout_ms = content_timeout_ms
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._sleep = sleep

    def url_for(self, ticker: str) -> str:
        return self.url_template.format(ticker=ticker)

    async def fetch(self, ticker: str) -> FetchResult:
        ticker = normalize_ticker(ticker)
        async with self.pool.lease() as instance:
            page = await instance.new_page(user_agent=USER_AGENT, viewport=VIEWPORT)
            page.set_default_timeout(self.nav_timeout_ms)
            await self._navigate(page, ticker)
            await self._wait_for_table(page, ticker)
            cells = await self.extractor(page)
        return parse_dividend_row(ticker, cells)

    async def _navigate(self, page, ticker: str):
        url = self.url_for(ticker)
        attempt = 0
        while True:
            attempt += 1
            try:
                await page.goto(url, wait_until='networkidle', timeout=self.nav_timeout_ms)
                return
            except Exception as exc:
                if attempt >= self.max_attempts:
                    logger.warning("Navigation to %s failed after %d attempts: %s", url, attempt, exc)
                    if _is_timeout(exc):
                        raise NavigationTimeout(ticker=ticker) from exc
                    raise NavigationFailed(ticker=ticker) from exc
                delay = attempt * self.backoff
                logger.info("Navigation attempt %d for %s failed (%s); retrying in %.1fs",
                            attempt, ticker, exc, delay)
                await self._sleep(delay)

    async def _wait_for_table(self, page, ticker: str):
        selector = ', '.join(TABLE_ROW_SELECTORS)
        deadline = self.content_timeout_ms / 1000.0
        try:
            await asyncio.wait_for(
                page.wait_for_selector(selector, timeout=self.content_timeout_ms),
                timeout=deadline,
            )
        except (asyncio.TimeoutError, PlaywrightTimeoutError) as exc:
            raise ExtractionTimeout(ticker=ticker) from exc


class DividendService:
    """What the HTTP layer talks to: cache in front of the fetcher.

    ``runner`` executes a coroutine to completion from a request thread
    (``RenderLoop.run`` in production).
    """

    def __init__(
        self,
        fetcher: DividendFetcher,
        cache: TTLCache,
        runner: Callable[..., Any],
        *,
        request_timeout: Optional[float] = None,
        batch_max: int = 10,
        on_shutdown: Optional[Callable[[], None]] = None,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.runner = runner
        self.request_timeout = request_timeout
        self.batch_max = batch_max
        self._on_shutdown = on_shutdown

    def _load(self, ticker: str) -> FetchResult:
        return self.runner(self.fetcher.fetch(ticker), timeout=self.request_timeout)

    def get(self, ticker: str) -> Tuple[FetchResult, bool]:
        """Return ``(result, cached)``; concurrent misses share one scrape."""
        key = validate_ticker(ticker)
        return self.cache.get_or_load(key, self._load)

    def get_many(self, tickers: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
        """Per-ticker results; one ticker failing never fails the others."""
        tickers = list(tickers)
        if not tickers:
            raise ValidationError('Tickers array is required')
        if len(tickers) > self.batch_max:
            raise ValidationError(f'Maximum {self.batch_max} tickers allowed per batch request')

        originals: Dict[str, Any] = {}
        for t in tickers:
            originals.setdefault(_batch_key(t), t)

        def one(raw: Any) -> Tuple[str, Dict[str, Any]]:
            key = _batch_key(raw)
            try:
                result, cached = self.get(raw)
            except DividendError as exc:
                return key, {'error': exc.message}
            except Exception as exc:
                logger.exception("Batch fetch for %s failed", key)
                return key, {'error': str(exc) or 'Scraping failed'}
            return key, dict(result.to_dict(), cached=cached)

        with ThreadPoolExecutor(max_workers=len(originals)) as pool:
            return dict(pool.map(one, list(originals.values())))

    def invalidate(self, ticker: Optional[str] = None) -> bool:
        if ticker:
            return self.cache.invalidate(ticker)
        self.cache.invalidate_all()
        return True

    def health(self) -> Dict[str, Any]:
        stats = self.cache.stats()
        return {
            'cache': {'keys': stats['keys'], 'stats': stats},
            'pool': self.fetcher.pool.stats(),
        }

    def shutdown(self):
        if self._on_shutdown is not None:
            self._on_shutdown()
