from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Coroutine, Dict, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

from services.errors import FetchTimeout

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--disable-web-security',
    '--disable-features=VizDisplayCompositor',
]


class RenderLoop:
    """Runs one asyncio event loop in a background thread.

    Flask handles requests on worker threads; the browser pool and every
    fetch coroutine live on this loop, and threads block on ``run``.
    """

    def __init__(self, name: str = 'render-loop'):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def start(self) -> "RenderLoop":
        if self._thread is not None:
            return self
        self._loop = asyncio.new_event_loop()
        ready = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(ready,), name=self.name, daemon=True)
        self._thread.start()
        ready.wait()
        return self

    def _run(self, ready: threading.Event):
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(ready.set)
        self._loop.run_forever()

    def run(self, coro: Coroutine[Any, Any, Any], timeout: Optional[float] = None) -> Any:
        """Run ``coro`` on the loop and wait for it from the calling thread.

        On timeout the task is cancelled, so its cleanup (instance release)
        still runs on the loop.
        """
        if self._loop is None:
            coro.close()
            raise RuntimeError("Render loop is not started")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout)
        except FutureTimeoutError:
            future.cancel()
            raise FetchTimeout() from None

    def stop(self, timeout: float = 10.0):
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout)
        if not self._loop.is_running():
            self._loop.close()
        self._loop = None
        self._thread = None


class BrowserInstance:
    """One Chromium process. Each fetch gets its own context (session)."""

    def __init__(self, browser: Browser, instance_id: int = 0):
        self.browser = browser
        self.id = instance_id

    async def new_page(self, user_agent: str, viewport: Dict[str, int]) -> Page:
        context = await self.browser.new_context(user_agent=user_agent, viewport=viewport)
        return await context.new_page()

    async def reset(self):
        if not self.browser.is_connected():
            raise RuntimeError(f"browser {self.id} is disconnected")
        for context in list(self.browser.contexts):
            await context.close()

    async def close(self):
        await self.browser.close()


class PlaywrightBackend:
    """Owns the Playwright driver and launches pooled Chromium instances."""

    def __init__(self, headless: bool = True):
        self.headless = headless
        self._pw: Optional[Playwright] = None
        self._lock = asyncio.Lock()
        self._count = 0

    async def launch(self) -> BrowserInstance:
        async with self._lock:
            if self._pw is None:
                self._pw = await async_playwright().start()
        browser = await self._pw.chromium.launch(headless=self.headless, args=CHROMIUM_ARGS)
        self._count += 1
        logger.info("Launched Chromium instance #%d", self._count)
        return BrowserInstance(browser, self._count)

    async def stop(self):
        if self._pw is not None:
            await self._pw.stop()
            self._pw = None
