"""Playwright page provider.

Playwright's sync API (the only one the Eyes SDK can drive) is bound to
the thread that started it. ``BrowserThread`` owns that thread; every
page call and every Eyes SDK call is funneled through it, while the
orchestrator stays async and can time out waiting on any of them.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from playwright.sync_api import Browser, Page, Playwright, sync_playwright

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
CLOSE_TIMEOUT_S = 30.0


class BrowserThread:
    """Single worker thread for blocking browser and SDK calls."""

    def __init__(self):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="visual-batch-browser")

    async def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class BrowserPages:
    """Hands out pages from one browser.

    Shared acquisition reuses a single page for as long as it stays open.
    Fresh acquisition always opens a new page, for concurrent passes where
    each in-flight entry owns its page.
    """

    def __init__(self, thread: BrowserThread, browser: Browser, viewport: Dict[str, int]):
        self.thread = thread
        self.browser = browser
        self.viewport = viewport
        self._shared: Optional[Page] = None
        self._owned: List[Page] = []

    def _open_page(self) -> Page:
        page = self.browser.new_page()
        page.set_viewport_size(self.viewport)
        return page

    async def _new_page(self) -> Page:
        page = await self.thread.run(self._open_page)
        self._owned.append(page)
        return page

    async def acquire(self, fresh: bool = False) -> Page:
        if fresh:
            return await self._new_page()
        if self._shared is None or await self.thread.run(self._shared.is_closed):
            self._shared = await self._new_page()
        return self._shared

    async def navigate(
        self,
        page: Page,
        url: str,
        wait_until: str,
        load_state: str,
        timeout_ms: int,
    ) -> None:
        await self.thread.run(_goto, page, url, wait_until, load_state, timeout_ms)

    async def release(self, page: Page, close: bool = False) -> None:
        if not close:
            return
        try:
            await asyncio.wait_for(self.thread.run(_close_page, page), timeout=CLOSE_TIMEOUT_S)
        except asyncio.TimeoutError:
            logger.warning("Timed out closing page after %gs", CLOSE_TIMEOUT_S)
        except Exception as exc:
            logger.warning("Failed to close page: %s", exc)
        finally:
            if page is self._shared:
                self._shared = None
            if page in self._owned:
                self._owned.remove(page)

    async def close(self) -> None:
        for page in list(self._owned):
            await self.release(page, close=True)
        self._shared = None


def _goto(page: Page, url: str, wait_until: str, load_state: str, timeout_ms: int) -> None:
    page.goto(url, wait_until=wait_until, timeout=timeout_ms)
    page.wait_for_load_state(load_state, timeout=timeout_ms)


def _close_page(page: Page) -> None:
    if not page.is_closed():
        page.close()


def _launch(headless: bool) -> Tuple[Playwright, Browser]:
    playwright = sync_playwright().start()
    try:
        browser = playwright.chromium.launch(headless=headless, args=CHROMIUM_ARGS)
    except Exception:
        playwright.stop()
        raise
    return playwright, browser


def _shutdown(playwright: Playwright, browser: Browser) -> None:
    try:
        browser.close()
    finally:
        playwright.stop()


@asynccontextmanager
async def open_browser_pages(
    viewport: Dict[str, int],
    thread: BrowserThread,
    headless: bool = True,
) -> AsyncIterator[BrowserPages]:
    playwright, browser = await thread.run(_launch, headless)
    pages = BrowserPages(thread, browser, viewport)
    try:
        yield pages
    finally:
        await pages.close()
        try:
            await asyncio.wait_for(thread.run(_shutdown, playwright, browser), timeout=CLOSE_TIMEOUT_S)
        except asyncio.TimeoutError:
            logger.warning("Timed out shutting down the browser after %gs", CLOSE_TIMEOUT_S)
