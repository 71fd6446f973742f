"""Smokingpipes.com scraper adapter.

Scrapes the pipe tobacco listing page. The markup varies between product
cards, so every field is read through the recipe's selector lists.

Structure (typical card):
  - article / .product container
  - h3 a (name + product link)
  - .price ("$12.50")
  - img (tin shot, often relative src)
"""

from typing import Optional

from bs4 import BeautifulSoup, Tag

from seek.models.enums import Category
from seek.scrapers.base import BaseScraper, ScrapedProduct
from seek.scrapers.utils.normalizer import normalize_product_name, strip_size_and_codes


class SmokingpipesScraper(BaseScraper):
    """Smokingpipes.com listing and product page scraper."""

    retailer_slug = "smokingpipes"
    default_category = Category.TINNED

    def parse_listing_item(self, item: Tag) -> Optional[ScrapedProduct]:
        config = self.config

        name = self.select_name(item, config.name_selector)
        price = self.select_price(item, config.price_selector, require_currency=True)
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

        return self.build_product(
            name,
            price,
            url,
            brand=self.extract_brand(soup, name),
            description=self.select_text(soup, config.description_selector),
            image_url=self.select_attr(soup, config.image_selector, "src", "data-src"),
            availability=self.extract_availability(soup),
        )

    def extract_brand(self, element: Tag, name: str) -> str:
        """Brand selector first, then the curated brand list and name heuristics."""
        brand = self.select_text(element, self.config.brand_selector)
        if brand:
            return brand
        return self.brand_extractor.extract(name)

    def clean_name(self, name: str) -> str:
        # Listing titles carry weights and SKU codes: "Orlik Golden Sliced 50g 003-057-0003"
        return strip_size_and_codes(normalize_product_name(name))
