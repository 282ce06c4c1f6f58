"""
Page Pool
=========
Fixed-size set of page workers shared by the crawl loop.

Architecture:
- One backend session (a Playwright browser + context, or a requests
  session for the static backend)
- ``max_parallel_pages`` page workers, created lazily, one per slot
- Sticky URL -> slot assignment: a URL keeps the slot it was first given,
  since all of its operations run on the same open page
- Round-robin cursor for new URLs
- One ``asyncio.Lock`` per slot so two URLs sharing a slot in the same tick
  never drive the same page at once

A worker navigates only when its current URL differs from the requested
one, so every URL is opened once.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import requests
from playwright.async_api import async_playwright, Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .dom import DomQuery, PlaywrightDom, SoupDom
from .errors import NavigationError
from .settings import ScrapsSettings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Page workers
# ---------------------------------------------------------------------------

class PageWorker(ABC):
    """One reusable page slot."""

    def __init__(self, slot: int):
        self.slot = slot
        self.url: Optional[str] = None

    @abstractmethod
    async def open(self, url: str) -> None:
        """Navigate to ``url``. Raises ``NavigationError`` on failure."""

    @abstractmethod
    def dom(self) -> DomQuery:
        """DOM query provider for the currently open document."""

    async def content(self) -> str:
        return await self.dom().content()

    async def screenshot(self, path: Path) -> bool:
        """Full-page screenshot; returns False when the backend cannot render."""
        return False

    async def close(self) -> None:
        self.url = None


class PlaywrightPageWorker(PageWorker):
    def __init__(self, slot: int, page, timeout: int):
        super().__init__(slot)
        self.page = page
        self.timeout = timeout
        self._dom = PlaywrightDom(page)

    async def open(self, url: str) -> None:
        try:
            response = await self.page.goto(url, wait_until="domcontentloaded", timeout=self.timeout)
        except PlaywrightTimeout:
            raise NavigationError(url, f"timeout after {self.timeout}ms")
        except PlaywrightError as e:
            raise NavigationError(url, str(e).split("\n")[0])
        if response is not None and response.status >= 400:
            raise NavigationError(url, f"HTTP {response.status}")
        self.url = url

    def dom(self) -> DomQuery:
        return self._dom

    async def screenshot(self, path: Path) -> bool:
        await self.page.screenshot(path=str(path), full_page=True)
        return True

    async def close(self) -> None:
        await self.page.close()
        await super().close()


class StaticPageWorker(PageWorker):
    """requests + BeautifulSoup page: no JavaScript, no screenshots."""

    def __init__(self, slot: int, session: requests.Session, timeout: int):
        super().__init__(slot)
        self.session = session
        self.timeout = timeout
        self._dom: Optional[SoupDom] = None

    async def open(self, url: str) -> None:
        loop = asyncio.get_event_loop()

        def _sync_fetch():
            return self.session.get(url, timeout=self.timeout / 1000)

        try:
            response = await loop.run_in_executor(None, _sync_fetch)
        except requests.RequestException as e:
            raise NavigationError(url, str(e))
        if response.status_code >= 400:
            raise NavigationError(url, f"HTTP {response.status_code}")
        self._dom = SoupDom(response.text, url=response.url or url)
        self.url = url

    def dom(self) -> DomQuery:
        if self._dom is None:
            raise NavigationError(self.url or "", "no document loaded")
        return self._dom

    async def close(self) -> None:
        self._dom = None
        await super().close()


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class PageBackend(ABC):
    """Creates page workers and owns the underlying session."""

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def new_page(self, slot: int) -> PageWorker: ...

    @abstractmethod
    async def close(self) -> None: ...


class PlaywrightBackend(PageBackend):
    """Single Chromium browser, single BrowserContext shared by every slot."""

    def __init__(self, settings: ScrapsSettings):
        self.settings = settings
        self._playwright = None
        self._browser = None
        self._context = None

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.settings.headless,
            args=[
                '--disable-gpu',
                '--no-sandbox',
                '--disable-dev-shm-usage',
                '--disable-background-networking',
                '--disable-extensions',
                '--no-first-run',
            ]
        )
        self._context = await self._browser.new_context(
            user_agent=self.settings.user_agent,
            viewport={
                'width': self.settings.page_width,
                'height': self.settings.page_height,
            },
            locale='en-US',
        )
        logger.info(
            f"Async Playwright browser initialized "
            f"(pages={self.settings.max_parallel_pages}, "
            f"viewport={self.settings.page_width}x{self.settings.page_height})"
        )

    async def new_page(self, slot: int) -> PageWorker:
        page = await self._context.new_page()
        return PlaywrightPageWorker(slot, page, self.settings.page_timeout)

    async def close(self) -> None:
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None


class StaticBackend(PageBackend):
    """Shared requests session for static page workers."""

    def __init__(self, settings: ScrapsSettings):
        self.settings = settings
        self._session: Optional[requests.Session] = None

    async def start(self) -> None:
        self._session = requests.Session()
        self._session.headers.update({
            'User-Agent': self.settings.user_agent,
            'Accept': 'text/html,application/xhtml+xml',
            'Accept-Language': 'en-US,en;q=0.9',
        })
        logger.info("Static (requests) page backend initialized")

    async def new_page(self, slot: int) -> PageWorker:
        return StaticPageWorker(slot, self._session, self.settings.page_timeout)

    async def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None


def create_backend(settings: ScrapsSettings) -> PageBackend:
    if settings.backend == "static":
        return StaticBackend(settings)
    return PlaywrightBackend(settings)


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

class PagePool:
    """
    Allocates page slots to URLs.

    Usage::

        pool = PagePool(backend, size=4)
        await pool.start()
        async with pool.acquire(url) as worker:
            dom = worker.dom()
        await pool.close()
    """

    def __init__(self, backend: PageBackend, size: int):
        self.backend = backend
        self.size = size
        self.open_pages: Dict[str, int] = {}
        self._cursor = 0
        self._workers: List[Optional[PageWorker]] = [None] * size
        self._locks = [asyncio.Lock() for _ in range(size)]
        self._started = False

    async def start(self) -> None:
        if not self._started:
            await self.backend.start()
            self._started = True

    def allocate(self, url: str) -> int:
        """Sticky slot for known URLs, else the cursor slot (cursor rotates)."""
        slot = self._cursor
        if url in self.open_pages:
            slot = self.open_pages[url]
        else:
            self.open_pages[url] = slot

        self._cursor += 1
        if self._cursor >= self.size:
            self._cursor = 0

        logger.debug(f"[POOL] {url} -> slot {slot + 1}/{self.size}")
        return slot

    async def _worker(self, slot: int) -> PageWorker:
        worker = self._workers[slot]
        if worker is None:
            worker = await self.backend.new_page(slot)
            self._workers[slot] = worker
        return worker

    @asynccontextmanager
    async def acquire(self, url: str) -> AsyncIterator[PageWorker]:
        """Hold the URL's slot, opened on ``url``, for the duration of the block."""
        slot = self.allocate(url)
        async with self._locks[slot]:
            worker = await self._worker(slot)
            if worker.url != url:
                await worker.open(url)
            yield worker

    @property
    def workers(self) -> List[PageWorker]:
        return [w for w in self._workers if w is not None]

    async def close(self) -> None:
        """Close every page, then the backend session."""
        for i, worker in enumerate(self._workers):
            if worker is None:
                continue
            try:
                await worker.close()
            except (PlaywrightError, requests.RequestException) as e:
                logger.debug(f"[POOL] Closing slot {i + 1} failed: {e}")
            self._workers[i] = None
        if self._started:
            await self.backend.close()
            self._started = False
