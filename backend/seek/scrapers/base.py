"""Base scraper interface.

Retailer scrapers inherit from BaseScraper and implement the two HTML
parsing hooks; browser lifecycle, polite navigation and the selector-list
helpers live here.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional
from urllib.parse import urljoin
import uuid

import structlog
from bs4 import BeautifulSoup, Tag
from playwright.async_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from seek.config import settings
from seek.core.exceptions import NavigationError, ScraperError
from seek.models.enums import Availability, Category
from seek.schemas.retailer import RetailerConfig
from seek.scrapers.utils.browser_manager import BrowserSession
from seek.scrapers.utils.normalizer import (
    MAX_NAME_LENGTH,
    BrandExtractor,
    CategoryClassifier,
    PriceNormalizer,
    is_plausible_name,
    normalize_product_name,
    parse_availability,
    recover_concatenated_name,
)
from seek.scrapers.utils.rate_limiter import AdaptiveDelay
from seek.scrapers.utils.retry import navigation_retrying

logger = structlog.get_logger()


@dataclass
class ScrapedProduct:
    """One product observation extracted from a retailer page.

    name, price and product_url are mandatory; the optional fields are None
    when the page did not provide them.
    """

    name: str
    price: Decimal
    product_url: str
    availability: Availability = Availability.IN_STOCK
    brand: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[Category] = None

    def __post_init__(self):
        """Validate data after initialization."""
        self.name = (self.name or "").strip()
        if not self.name:
            raise ValueError("name is required")
        if not self.product_url:
            raise ValueError("product_url is required")
        if self.price is None or self.price <= 0:
            raise ValueError("price must be a positive Decimal")
        # Blank optional text is absent, not empty
        for attr in ("brand", "description", "image_url"):
            value = getattr(self, attr)
            if value is not None and not value.strip():
                setattr(self, attr, None)


class BaseScraper(ABC):
    """Abstract base class for retailer scrapers.

    Usage::

        async with SmokingpipesScraper(retailer) as scraper:
            products = await scraper.scrape_products()

    The browser session is acquired in initialize() and released in
    cleanup(); the context manager guarantees cleanup on every exit path.
    """

    retailer_slug: str = ""  # Must be overridden in subclass (e.g., "smokingpipes")
    default_category: Category = Category.TINNED

    def __init__(
        self,
        retailer,
        config: Optional[RetailerConfig] = None,
        delay: Optional[AdaptiveDelay] = None,
        session: Optional[BrowserSession] = None,
        max_attempts: int = settings.NAVIGATION_MAX_ATTEMPTS,
        retry_min_wait: float = settings.NAVIGATION_RETRY_MIN_SECONDS,
        retry_max_wait: float = settings.NAVIGATION_RETRY_MAX_SECONDS,
    ):
        """Initialize the scraper for one retailer.

        Args:
            retailer: Retailer record (id, name, slug, base_url, scraping_config)
            config: Recipe override, defaults to the retailer's stored recipe
            delay: Delay policy, defaults to AdaptiveDelay(config.delay_seconds)
            session: Browser session override (tests inject a fake)
            max_attempts: Navigation retry ceiling
            retry_min_wait: Minimum backoff between attempts in seconds
            retry_max_wait: Maximum backoff between attempts in seconds
        """
        self.retailer_id: uuid.UUID = retailer.id
        self.retailer_name: str = retailer.name
        self.base_url: str = retailer.base_url
        self.config = config or retailer.config
        self.delay = delay or AdaptiveDelay(self.config.delay_seconds)
        self.max_attempts = max_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self.brand_extractor = BrandExtractor()
        self._session = session
        self.page: Optional[Page] = None
        self.logger = logger.bind(retailer=self.retailer_slug or retailer.slug)

    async def initialize(self) -> None:
        """Acquire the browser session and open a page."""
        if self.page:
            return
        if self._session is None:
            self._session = BrowserSession()
        self.page = await self._session.new_page()
        self.logger.debug("scraper_initialized")

    async def cleanup(self) -> None:
        """Release the browser session. Safe after a failed initialize()."""
        self.page = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        self.delay.reset()
        self.logger.debug("scraper_cleaned_up")

    async def __aenter__(self) -> "BaseScraper":
        try:
            await self.initialize()
        except BaseException:
            await self.cleanup()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()

    # Navigation

    async def navigate(self, url: str, wait_for: Optional[str] = None) -> str:
        """Load a page politely and return its HTML.

        Applies the adaptive delay, then retries the navigation with
        exponential backoff up to the retry ceiling.

        Raises:
            ScraperError: If the scraper was not initialized
            NavigationError: If every attempt failed
        """
        if not self.page:
            raise ScraperError(self.retailer_name, "scraper not initialized")

        await self.delay.wait()
        self.logger.info("scraping_url", url=url)

        try:
            async for attempt in navigation_retrying(self.max_attempts, self.retry_min_wait, self.retry_max_wait):
                with attempt:
                    await self.page.goto(url, wait_until="domcontentloaded", timeout=settings.NAVIGATION_TIMEOUT_MS)
        except PlaywrightError as e:
            self.logger.warning("navigation_failed", url=url, attempts=self.max_attempts, error=str(e))
            raise NavigationError(self.retailer_name, url, self.max_attempts) from e

        wait_selector = wait_for or self.config.wait_for_selector
        if wait_selector:
            try:
                await self.page.wait_for_selector(wait_selector, timeout=settings.WAIT_FOR_SELECTOR_TIMEOUT_MS)
            except PlaywrightTimeoutError:
                # Parse whatever rendered; selectors decide if it is usable
                self.logger.debug("wait_for_selector_timeout", url=url, selector=wait_selector)

        return await self.page.content()

    async def fetch_page(self, url: str) -> Optional[str]:
        """Like navigate(), but a failed navigation yields None so the caller skips the page."""
        try:
            return await self.navigate(url)
        except NavigationError:
            return None

    # Scraping

    async def scrape_products(self) -> List[ScrapedProduct]:
        """Scrape the retailer's product listing.

        A failed listing navigation raises NavigationError; the caller
        aborts this retailer's run.
        """
        html = await self.navigate(self.config.product_list_url)
        products = self.parse_listing_html(html)
        self.logger.info("products_scraped", count=len(products))
        return products

    async def scrape_product(self, url: str) -> Optional[ScrapedProduct]:
        """Re-check a single product page. Returns None when it cannot be read."""
        html = await self.fetch_page(url)
        if html is None:
            return None
        try:
            return self.parse_product_html(html, url)
        except Exception as e:
            self.logger.warning("product_page_parse_failed", url=url, error=str(e))
            return None

    def parse_listing_html(self, html: str) -> List[ScrapedProduct]:
        """Extract every valid product from a listing page.

        The container selector list is tried in order and the first selector
        matching anything is used. Per-item parse errors are logged and the
        item is dropped.
        """
        soup = BeautifulSoup(html, "html.parser")
        containers = self.find_containers(soup)
        if not containers:
            self.logger.warning("no_product_containers", selectors=self.config.product_list_selector)
            return []

        products: List[ScrapedProduct] = []
        seen_urls = set()
        for index, item in enumerate(containers):
            try:
                product = self.parse_listing_item(item)
            except Exception as e:
                self.logger.warning("product_parse_failed", index=index, error=str(e))
                continue
            if product and product.product_url not in seen_urls:
                seen_urls.add(product.product_url)
                products.append(product)
        return products

    def find_containers(self, soup: BeautifulSoup) -> List[Tag]:
        for selector in self.config.product_list_selector:
            elements = soup.select(selector)
            self.logger.debug("container_selector_tried", selector=selector, count=len(elements))
            if elements:
                return elements
        return []

    @abstractmethod
    def parse_listing_item(self, item: Tag) -> Optional[ScrapedProduct]:
        """Parse one listing container, returning None for incomplete items."""
        pass

    @abstractmethod
    def parse_product_html(self, html: str, url: str) -> Optional[ScrapedProduct]:
        """Parse a product detail page."""
        pass

    # Extraction helpers

    def select_text(self, element: Tag, selectors: Optional[Iterable[str]]) -> Optional[str]:
        """Text of the first selector yielding non-blank text."""
        for selector in selectors or []:
            found = element.select_one(selector)
            if found is None:
                continue
            text = found.get_text(" ", strip=True)
            if text:
                return text
        return None

    def select_name(self, element: Tag, selectors: Iterable[str]) -> Optional[str]:
        """First plausible product name in selector order.

        Over-long candidates are skipped in favour of later selectors; if
        nothing plausible is found, the first over-long text is recovered.
        """
        overlong: Optional[str] = None
        for selector in selectors:
            found = element.select_one(selector)
            if found is None:
                continue
            text = found.get_text(" ", strip=True)
            if len(text) > MAX_NAME_LENGTH:
                self.logger.debug("name_too_long", selector=selector, length=len(text), preview=text[:100])
                overlong = overlong or text
                continue
            if is_plausible_name(text):
                return text

        if overlong:
            return recover_concatenated_name(overlong)
        return None

    def select_price(self, element: Tag, selectors: Iterable[str], require_currency: bool = False) -> Decimal:
        """First positive price in selector order, Decimal("0") if none."""
        for selector in selectors:
            for found in element.select(selector):
                text = found.get_text(" ", strip=True)
                if require_currency and "$" not in text:
                    continue
                price = PriceNormalizer.parse_price(text)
                if price > 0:
                    return price
        return Decimal("0")

    def select_attr(self, element: Tag, selectors: Optional[Iterable[str]], *attrs: str) -> Optional[str]:
        """First non-empty attribute value (attrs tried in order) in selector order."""
        for selector in selectors or []:
            for found in element.select(selector):
                for attr in attrs:
                    value = found.get(attr)
                    if isinstance(value, list):
                        value = " ".join(value)
                    if value and value.strip():
                        return value.strip()
        return None

    def absolute_url(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        if href.startswith("//"):
            return f"https:{href}"
        return urljoin(self.base_url.rstrip("/") + "/", href)

    def extract_availability(self, element: Tag) -> Availability:
        text = self.select_text(element, self.config.availability_selector)
        return parse_availability(text)

    def build_product(
        self,
        name: Optional[str],
        price: Decimal,
        product_url: Optional[str],
        *,
        brand: Optional[str] = None,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        availability: Availability = Availability.IN_STOCK,
    ) -> Optional[ScrapedProduct]:
        """Assemble a ScrapedProduct, dropping incomplete observations."""
        if not name or not product_url or price <= 0:
            self.logger.debug("incomplete_product_skipped", name=name, url=product_url, price=str(price))
            return None

        clean_name = self.clean_name(name)
        category = CategoryClassifier.infer(name, description, default=self.default_category)
        try:
            return ScrapedProduct(
                name=clean_name,
                price=price,
                product_url=product_url,
                availability=availability,
                brand=brand,
                description=description,
                image_url=self.absolute_url(image_url),
                category=category,
            )
        except ValueError as e:
            self.logger.debug("invalid_product_skipped", name=name, error=str(e))
            return None

    def clean_name(self, name: str) -> str:
        return normalize_product_name(name)
