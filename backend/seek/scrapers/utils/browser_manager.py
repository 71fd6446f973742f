"""Playwright browser lifecycle with anti-detection.

One BrowserSession per retailer run: a headless Chromium with a single
context carrying a rotated user agent and viewport, realistic headers and
an optional proxy taken from PROXY_LIST.
"""

import asyncio
import itertools
from typing import List, Optional

import structlog
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from seek.config import settings
from seek.scrapers.utils.user_agents import get_random_user_agent, get_random_viewport

logger = structlog.get_logger()

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Upgrade-Insecure-Requests": "1",
}

# Minimal stealth JS to mask automation signals
STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = { runtime: {} };
"""


class ProxyRotation:
    """Round-robin over configured proxy URLs; empty list means no proxy."""

    def __init__(self, proxies: Optional[List[str]] = None):
        self._proxies = list(proxies or [])
        self._cycle = itertools.cycle(self._proxies) if self._proxies else None

    def next(self) -> Optional[str]:
        if self._cycle is None:
            return None
        return next(self._cycle)


_proxy_rotation = ProxyRotation(settings.get_proxy_list())


class BrowserSession:
    """Owns the Playwright driver, browser and context of one scrape run."""

    def __init__(
        self,
        headless: bool = settings.HEADLESS,
        proxy_url: Optional[str] = None,
        navigation_timeout_ms: int = settings.NAVIGATION_TIMEOUT_MS,
    ):
        self._headless = headless
        self._proxy_url = proxy_url if proxy_url is not None else _proxy_rotation.next()
        self._navigation_timeout_ms = navigation_timeout_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._context is not None

    async def start(self) -> None:
        """Launch the browser and create the rotated context."""
        async with self._lock:
            if self._context:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--no-sandbox",
                ],
            )

            proxy_config = {"server": self._proxy_url} if self._proxy_url else None
            self._context = await self._browser.new_context(
                user_agent=get_random_user_agent(),
                viewport=get_random_viewport(),
                locale="en-US",
                extra_http_headers=EXTRA_HEADERS,
                proxy=proxy_config,
                java_script_enabled=True,
            )
            self._context.set_default_navigation_timeout(self._navigation_timeout_ms)
            await self._context.add_init_script(STEALTH_JS)
            logger.info("browser_started", headless=self._headless, has_proxy=bool(self._proxy_url))

    async def new_page(self) -> Page:
        if not self._context:
            await self.start()
        return await self._context.new_page()

    async def close(self) -> None:
        """Close context, browser and driver. Safe to call more than once."""
        async with self._lock:
            if self._context:
                try:
                    await self._context.close()
                except Exception as e:
                    logger.warning("browser_context_close_failed", error=str(e))
                self._context = None
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
            logger.info("browser_stopped")
