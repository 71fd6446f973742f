"""The Country Squire scraper adapter.

WooCommerce shop with a paginated tobacco category (?page=N). Most of the
catalogue is house blends sold in bulk, so both the brand and the category
fall back to the shop itself.
"""

from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from seek.models.enums import Category
from seek.scrapers.base import BaseScraper, ScrapedProduct
from seek.scrapers.utils.normalizer import BrandExtractor

HOUSE_BRAND = "The Country Squire"

STOCKED_BRANDS = (
    "Peterson", "Dunhill", "McClelland", "Rattray", "Solani",
    "Sutliff", "Lane", "Cornell & Diehl", "G.L. Pease", "Samuel Gawith",
)

_NEXT_PAGE_SELECTORS = (".next", ".pagination .next")


class CountrySquireScraper(BaseScraper):
    """The Country Squire paginated listing scraper."""

    retailer_slug = "countrysquire"
    default_category = Category.BULK

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.brand_extractor = BrandExtractor(STOCKED_BRANDS)

    def page_url(self, page_number: int) -> str:
        base = self.config.product_list_url
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}page={page_number}"

    async def scrape_products(self) -> List[ScrapedProduct]:
        """Walk listing pages until one is empty, has no next link, or max_pages is hit.

        Failing to load the first page aborts the run; a later page that
        cannot be loaded ends the crawl with what was collected so far.
        """
        products: List[ScrapedProduct] = []
        seen_urls = set()

        for page_number in range(1, self.config.max_pages + 1):
            url = self.page_url(page_number)
            if page_number == 1:
                html = await self.navigate(url)
            else:
                html = await self.fetch_page(url)
                if html is None:
                    self.logger.warning("pagination_stopped", page=page_number, reason="navigation_failed")
                    break

            page_products = self.parse_listing_html(html)
            if not page_products:
                self.logger.info("pagination_stopped", page=page_number, reason="no_products")
                break

            for product in page_products:
                if product.product_url not in seen_urls:
                    seen_urls.add(product.product_url)
                    products.append(product)
            self.logger.debug("listing_page_scraped", page=page_number, count=len(page_products))

            if not self.has_next_page(html):
                break

        self.logger.info("products_scraped", count=len(products))
        return products

    def has_next_page(self, html: str) -> bool:
        soup = BeautifulSoup(html, "html.parser")
        return any(soup.select_one(selector) is not None for selector in _NEXT_PAGE_SELECTORS)

    def parse_listing_item(self, item: Tag) -> Optional[ScrapedProduct]:
        config = self.config

        name = self.select_name(item, config.name_selector)
        price = self.select_price(item, config.price_selector)
        link = self.select_attr(item, config.product_link_selector, "href")
        if not name or not link or price <= 0:
            return None

        return self.build_product(
            name,
            price,
            self.absolute_url(link),
            brand=self.extract_brand(item, name),
            description=self.select_text(item, config.description_selector),
            image_url=self.select_attr(item, config.image_selector, "src", "data-src"),
            availability=self.extract_availability(item),
        )

    def parse_product_html(self, html: str, url: str) -> Optional[ScrapedProduct]:
        soup = BeautifulSoup(html, "html.parser")
        config = self.config

        name = self.select_name(soup, config.name_selector)
        price = self.select_price(soup, config.price_selector)
        if not name or price <= 0:
            self.logger.info("product_page_incomplete", url=url)
            return None

        body = soup.body or soup
        return self.build_product(
            name,
            price,
            url,
            brand=self.extract_brand(body, name),
            description=self.select_text(soup, config.description_selector),
            image_url=self.select_attr(soup, config.image_selector, "src", "data-src"),
            availability=self.extract_availability(soup),
        )

    def extract_brand(self, element: Tag, name: str) -> str:
        """House blends are branded as the shop; otherwise a stocked brand if named."""
        lowered = name.lower()
        if "squire" in lowered or element.select_one(".house-blend") is not None:
            return HOUSE_BRAND
        return self.brand_extractor.from_known_list(name) or HOUSE_BRAND
