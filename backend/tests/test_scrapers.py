"""Tests for the site scrapers, ScrapedProduct validation and the factory."""

from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from seek.core.exceptions import NavigationError, ScraperError
from seek.models.enums import Availability, Category
from seek.scrapers.adapters import CountrySquireScraper, SmokingpipesScraper
from seek.scrapers.adapters.country_squire import HOUSE_BRAND
from seek.scrapers.base import ScrapedProduct
from seek.scrapers.factory import ScraperFactory


SMOKINGPIPES_LISTING = """
<html><body>
<div class="grid">
  <article>
    <h3><a href="/tobacco/esoterica-penzance">Esoterica Tobacco Penzance 50g 003-057-0003</a></h3>
    <div class="brand">Esoterica</div>
    <span class="price">$18.95</span>
    <img src="/images/tobacco/penzance.jpg" alt="Penzance">
    <div class="stock-status">In Stock</div>
  </article>
  <article>
    <h3><a href="/tobacco/peterson-irish-flake">Peterson Irish Flake 50g</a></h3>
    <span class="price">$16.50</span>
    <div class="stock-status">Sold Out</div>
  </article>
  <article>
    <h3><a href="/tobacco/mystery">Mystery Tin Without Price</a></h3>
    <span class="price">Call</span>
  </article>
  <article>
    <h3><a href="/tobacco/esoterica-penzance">Esoterica Tobacco Penzance 50g</a></h3>
    <span class="price">$18.95</span>
  </article>
</div>
</body></html>
"""

SMOKINGPIPES_PRODUCT = """
<html><body>
  <div class="product-title">Esoterica Tobacco Penzance</div>
  <span class="price">$19.95</span>
  <div class="out-of-stock">Out of Stock</div>
</body></html>
"""

SQUIRE_PAGE_1 = """
<html><body>
<ul class="products">
  <li class="product">
    <a class="woocommerce-LoopProduct-link" href="/product/squire-house-mixture/">
      <h2 class="woocommerce-loop-product__title">Squire House Mixture</h2>
    </a>
    <span class="price">$2.75</span>
    <span class="stock">In stock</span>
  </li>
  <li class="product">
    <a class="woocommerce-LoopProduct-link" href="/product/rattray-red-rapparee/">
      <h2 class="woocommerce-loop-product__title">Rattray Red Rapparee</h2>
    </a>
    <span class="price">$3.10</span>
  </li>
</ul>
<nav class="pagination"><a class="next page-numbers" href="?page=2">Next</a></nav>
</body></html>
"""

SQUIRE_PAGE_2 = """
<html><body>
<ul class="products">
  <li class="product">
    <a class="woocommerce-LoopProduct-link" href="/product/vanilla-cream/">
      <h2 class="woocommerce-loop-product__title">Vanilla Cream Cavendish</h2>
    </a>
    <span class="house-blend">House blend</span>
    <span class="price">$2.50</span>
    <span class="stock">Only 2 left</span>
  </li>
</ul>
</body></html>
"""


# ============================================================================
# TESTS: SCRAPED PRODUCT
# ============================================================================

class TestScrapedProduct:
    """Tests for ScrapedProduct validation."""

    def test_valid_product(self):
        product = ScrapedProduct(
            name="  Peterson Irish Flake ",
            price=Decimal("16.50"),
            product_url="https://example.com/p",
            brand="  ",
        )
        assert product.name == "Peterson Irish Flake"
        assert product.brand is None
        assert product.availability == Availability.IN_STOCK
        assert product.category is None

    @pytest.mark.parametrize("price", [Decimal("0"), Decimal("-1")])
    def test_non_positive_price_rejected(self, price):
        with pytest.raises(ValueError):
            ScrapedProduct(name="Irish Flake", price=price, product_url="https://example.com/p")

    def test_name_and_url_required(self):
        with pytest.raises(ValueError):
            ScrapedProduct(name="", price=Decimal("1"), product_url="https://example.com/p")
        with pytest.raises(ValueError):
            ScrapedProduct(name="Irish Flake", price=Decimal("1"), product_url="")


# ============================================================================
# TESTS: SMOKINGPIPES
# ============================================================================

class TestSmokingpipesScraper:
    """Tests for the single-page Smokingpipes listing."""

    def make_scraper(self, retailer, session, no_delay, **kwargs):
        return SmokingpipesScraper(
            retailer,
            delay=no_delay,
            session=session,
            retry_min_wait=0,
            retry_max_wait=0,
            **kwargs,
        )

    async def test_scrape_products(self, smokingpipes, fake_session_cls, no_delay):
        session = fake_session_cls({smokingpipes.config.product_list_url: SMOKINGPIPES_LISTING})
        scraper = self.make_scraper(smokingpipes, session, no_delay)

        async with scraper:
            products = await scraper.scrape_products()

        assert session.closed is True
        assert [p.name for p in products] == ["Esoterica Tobacco Penzance", "Peterson Irish Flake"]

        penzance, flake = products
        assert penzance.price == Decimal("18.95")
        assert penzance.brand == "Esoterica"
        assert penzance.product_url == "https://www.smokingpipes.com/tobacco/esoterica-penzance"
        assert penzance.image_url == "https://www.smokingpipes.com/images/tobacco/penzance.jpg"
        assert penzance.availability == Availability.IN_STOCK
        assert penzance.category == Category.TINNED

        assert flake.brand == "Peterson"
        assert flake.availability == Availability.OUT_OF_STOCK
        assert flake.category == Category.VIRGINIA

    async def test_listing_navigation_failure_raises(self, smokingpipes, fake_session_cls, no_delay):
        url = smokingpipes.config.product_list_url
        session = fake_session_cls({}, failing=[url])
        scraper = self.make_scraper(smokingpipes, session, no_delay, max_attempts=2)

        with pytest.raises(NavigationError):
            async with scraper:
                await scraper.scrape_products()

        assert session.visited == [url, url]
        assert session.closed is True

    async def test_scrape_product_page(self, smokingpipes, fake_session_cls, no_delay):
        url = "https://www.smokingpipes.com/tobacco/esoterica-penzance"
        session = fake_session_cls({url: SMOKINGPIPES_PRODUCT})
        scraper = self.make_scraper(smokingpipes, session, no_delay)

        async with scraper:
            product = await scraper.scrape_product(url)

        assert product.name == "Esoterica Tobacco Penzance"
        assert product.price == Decimal("19.95")
        assert product.brand == "Esoterica"
        assert product.availability == Availability.OUT_OF_STOCK

    async def test_scrape_product_failure_returns_none(self, smokingpipes, fake_session_cls, no_delay):
        url = "https://www.smokingpipes.com/tobacco/gone"
        session = fake_session_cls({}, failing=[url])
        scraper = self.make_scraper(smokingpipes, session, no_delay, max_attempts=1)

        async with scraper:
            assert await scraper.scrape_product(url) is None

    async def test_navigate_requires_initialize(self, smokingpipes, fake_session_cls, no_delay):
        scraper = self.make_scraper(smokingpipes, fake_session_cls({}), no_delay)

        with pytest.raises(ScraperError):
            await scraper.navigate(smokingpipes.config.product_list_url)

    async def test_overlong_name_is_recovered(self, smokingpipes, fake_session_cls, no_delay):
        scraper = self.make_scraper(smokingpipes, fake_session_cls({}), no_delay)
        long_title = "Peterson Irish Flake 003-057-0003 " + "Dunhill Nightcap 50g " * 6
        html = f"""
        <article>
          <h3><a href="/tobacco/irish-flake">{long_title}</a></h3>
          <span class="price">$16.50</span>
        </article>
        """

        products = scraper.parse_listing_html(html)

        assert len(products) == 1
        assert products[0].name == "Peterson Irish Flake"


# ============================================================================
# TESTS: COUNTRY SQUIRE
# ============================================================================

class TestCountrySquireScraper:
    """Tests for the paginated Country Squire listing."""

    def make_scraper(self, retailer, session, no_delay, **kwargs):
        return CountrySquireScraper(
            retailer,
            delay=no_delay,
            session=session,
            max_attempts=1,
            retry_min_wait=0,
            retry_max_wait=0,
            **kwargs,
        )

    async def test_page_url(self, countrysquire, fake_session_cls, no_delay):
        scraper = self.make_scraper(countrysquire, fake_session_cls({}), no_delay)
        assert scraper.page_url(2) == "https://www.thecountrysquireonline.com/product-category/tobacco/?page=2"

    async def test_pagination_until_no_next_link(self, countrysquire, fake_session_cls, no_delay):
        url_builder = self.make_scraper(countrysquire, fake_session_cls({}), no_delay)
        pages = {url_builder.page_url(1): SQUIRE_PAGE_1, url_builder.page_url(2): SQUIRE_PAGE_2}
        session = fake_session_cls(pages)
        scraper = self.make_scraper(countrysquire, session, no_delay)

        async with scraper:
            products = await scraper.scrape_products()

        assert session.visited == [url_builder.page_url(1), url_builder.page_url(2)]
        by_name = {p.name: p for p in products}
        assert set(by_name) == {"Squire House Mixture", "Rattray Red Rapparee", "Vanilla Cream Cavendish"}

        assert by_name["Squire House Mixture"].brand == HOUSE_BRAND
        assert by_name["Squire House Mixture"].category == Category.BULK
        assert by_name["Rattray Red Rapparee"].brand == "Rattray"
        assert by_name["Vanilla Cream Cavendish"].brand == HOUSE_BRAND
        assert by_name["Vanilla Cream Cavendish"].category == Category.AROMATIC
        assert by_name["Vanilla Cream Cavendish"].availability == Availability.LIMITED

    async def test_later_page_failure_keeps_collected(self, countrysquire, fake_session_cls, no_delay):
        url_builder = self.make_scraper(countrysquire, fake_session_cls({}), no_delay)
        session = fake_session_cls({url_builder.page_url(1): SQUIRE_PAGE_1}, failing=[url_builder.page_url(2)])
        scraper = self.make_scraper(countrysquire, session, no_delay)

        async with scraper:
            products = await scraper.scrape_products()

        assert len(products) == 2

    async def test_empty_page_stops(self, countrysquire, fake_session_cls, no_delay):
        url_builder = self.make_scraper(countrysquire, fake_session_cls({}), no_delay)
        session = fake_session_cls({url_builder.page_url(1): "<html><body><p>No products</p></body></html>"})
        scraper = self.make_scraper(countrysquire, session, no_delay)

        async with scraper:
            products = await scraper.scrape_products()

        assert products == []
        assert session.visited == [url_builder.page_url(1)]

    async def test_max_pages_ceiling(self, countrysquire, fake_session_cls, no_delay):
        config = countrysquire.config.model_copy(update={"max_pages": 1})
        url_builder = self.make_scraper(countrysquire, fake_session_cls({}), no_delay, config=config)
        session = fake_session_cls({url_builder.page_url(1): SQUIRE_PAGE_1, url_builder.page_url(2): SQUIRE_PAGE_2})
        scraper = self.make_scraper(countrysquire, session, no_delay, config=config)

        async with scraper:
            products = await scraper.scrape_products()

        assert len(products) == 2
        assert session.visited == [url_builder.page_url(1)]


# ============================================================================
# TESTS: FACTORY
# ============================================================================

class TestScraperFactory:
    """Tests for ScraperFactory resolution."""

    async def test_resolve_by_slug(self, smokingpipes, countrysquire):
        factory = ScraperFactory()
        assert isinstance(factory.create_scraper(smokingpipes), SmokingpipesScraper)
        assert isinstance(factory.create_scraper(countrysquire), CountrySquireScraper)

    async def test_resolve_by_name(self, countrysquire):
        retailer = SimpleNamespace(
            id=uuid4(),
            name="The Country Squire",
            slug="squire-online",
            base_url=countrysquire.base_url,
            config=countrysquire.config,
        )
        assert ScraperFactory().resolve(retailer) is CountrySquireScraper

    def test_unknown_retailer(self):
        retailer = SimpleNamespace(id=uuid4(), name="Pipes and Cigars", slug="pipesandcigars")
        assert ScraperFactory().create_scraper(retailer) is None

    def test_register_rejects_non_scraper(self):
        with pytest.raises(ValueError):
            ScraperFactory().register_scraper("bogus", object)
