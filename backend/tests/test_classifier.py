"""Tests for the demand classifier."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from seek.models.enums import Availability, PriorityTier, ReleaseType
from seek.models.listing import RetailerListing
from seek.models.price_history import PriceHistoryEntry
from seek.models.product import CatalogProduct

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_catalog_product(history_availability=(), **kwargs) -> CatalogProduct:
    """Transient catalog product with one listing carrying the given history."""
    history = [
        PriceHistoryEntry(price=Decimal("10.00"), availability=availability, date=NOW - timedelta(days=30 - i))
        for i, availability in enumerate(history_availability)
    ]
    listing = RetailerListing(
        product_url="https://example.com/p",
        current_price=Decimal("10.00"),
        availability=Availability.IN_STOCK,
        last_scraped=NOW,
        price_history=history,
    )
    params = dict(
        name="Plain Mixture",
        match_key="plain mixture",
        brand="Acme",
        description=None,
        priority=PriorityTier.STANDARD,
        release_type=ReleaseType.REGULAR,
        popularity_score=0,
        search_count=0,
        price_volatility=0.0,
        last_stock_change=None,
        listings=[listing],
    )
    params.update(kwargs)
    return CatalogProduct(**params)


class TestClassify:
    """Tests for ProductClassifier.classify."""

    def test_always_limited_brand(self, classifier, scraped_factory):
        result = classifier.classify(scraped_factory(name="Esoterica Tobacco Penzance", price="18.95"))

        assert result.priority == PriorityTier.LIMITED_RELEASE
        assert result.release_type == ReleaseType.LIMITED
        assert result.popularity_score == 35

    def test_first_keyword_rule_wins(self, classifier, scraped_factory):
        product = scraped_factory(name="Christmas Anniversary Limited Edition", brand="Peterson", price="60.00")

        result = classifier.classify(product)

        assert result.priority == PriorityTier.LIMITED_RELEASE
        assert result.release_type == ReleaseType.ANNIVERSARY
        # anniversary 30 + popular brand 10 + price over 50 10
        assert result.popularity_score == 50

    def test_seasonal(self, classifier, scraped_factory):
        result = classifier.classify(scraped_factory(name="Winter Solstice", brand="Sutliff", price="10.00"))

        assert result.priority == PriorityTier.SEASONAL
        assert result.release_type == ReleaseType.SEASONAL
        assert result.popularity_score == 25

    def test_discontinued_short_circuits(self, classifier, scraped_factory):
        product = scraped_factory(availability=Availability.DISCONTINUED)

        result = classifier.classify(product)

        assert result.priority == PriorityTier.DISCONTINUED
        assert result.release_type == ReleaseType.REGULAR
        assert result.popularity_score == -10

    def test_discontinued_in_description(self, classifier, scraped_factory):
        product = scraped_factory(name="Generic Cherry Mix", brand="Acme", description="Discontinued by the maker")
        assert classifier.classify(product).priority == PriorityTier.DISCONTINUED

    def test_premium_price_and_limited_stock(self, classifier, scraped_factory):
        product = scraped_factory(
            name="Generic Cherry Mix",
            brand="Acme",
            price="120.00",
            availability=Availability.LIMITED,
        )

        result = classifier.classify(product)

        assert result.priority == PriorityTier.POPULAR
        assert result.release_type == ReleaseType.REGULAR
        assert result.popularity_score == 35

    @pytest.mark.parametrize(
        "price,priority,score",
        [
            ("75.00", PriorityTier.POPULAR, 10),
            ("40.00", PriorityTier.STANDARD, 0),
        ],
    )
    def test_price_tiers(self, classifier, scraped_factory, price, priority, score):
        result = classifier.classify(scraped_factory(name="Generic Cherry Mix", brand="Acme", price=price))

        assert result.priority == priority
        assert result.popularity_score == score

    def test_existing_history_adds_to_score(self, classifier, scraped_factory):
        existing = make_catalog_product(search_count=5)
        product = scraped_factory(name="Generic Cherry Mix", brand="Acme", price="10.00")

        assert classifier.classify(product, existing=existing).popularity_score == 10


class TestHistoricalScore:
    """Tests for calculate_historical_score and update_popularity_score."""

    def test_components(self, classifier):
        product = make_catalog_product(
            history_availability=(Availability.IN_STOCK, Availability.OUT_OF_STOCK, Availability.IN_STOCK),
            search_count=5,
            price_volatility=0.5,
            last_stock_change=NOW - timedelta(days=3),
        )

        # searches 10 + volatility 5 + recent change 15 + history 4 + flips 6
        assert classifier.calculate_historical_score(product, now=NOW) == 40

    def test_naive_timestamps_are_utc(self, classifier):
        product = make_catalog_product(last_stock_change=(NOW - timedelta(days=10)).replace(tzinfo=None))
        assert classifier.calculate_historical_score(product, now=NOW) == 10

    def test_capped_at_fifty(self, classifier):
        product = make_catalog_product(search_count=100, price_volatility=5.0, last_stock_change=NOW)
        assert classifier.calculate_historical_score(product, now=NOW) == 50

    def test_update_popularity_score(self, classifier):
        product = make_catalog_product(
            history_availability=(Availability.IN_STOCK, Availability.OUT_OF_STOCK, Availability.IN_STOCK),
            search_count=5,
            price_volatility=0.5,
            last_stock_change=NOW - timedelta(days=3),
        )
        assert classifier.update_popularity_score(product, now=NOW) == 40

    def test_update_popularity_score_clamped(self, classifier):
        product = make_catalog_product(
            name="Anniversary Blend",
            brand="Esoterica",
            search_count=100,
            price_volatility=5.0,
            last_stock_change=NOW,
        )
        assert classifier.update_popularity_score(product, now=NOW) == 100


class TestSchedulingHelpers:
    """Tests for frequency and prioritization helpers."""

    @pytest.mark.parametrize(
        "tier,minutes",
        [
            (PriorityTier.LIMITED_RELEASE, 15),
            ("seasonal", 30),
            (PriorityTier.POPULAR, 120),
            (PriorityTier.STANDARD, 1440),
            (PriorityTier.DISCONTINUED, 10080),
            ("bogus", 1440),
        ],
    )
    def test_frequency(self, classifier, tier, minutes):
        assert classifier.get_scraping_frequency_minutes(tier) == minutes

    def test_should_prioritize_scraping(self, classifier):
        assert classifier.should_prioritize_scraping(make_catalog_product(priority=PriorityTier.SEASONAL))
        assert classifier.should_prioritize_scraping(
            make_catalog_product(priority=PriorityTier.POPULAR, popularity_score=25)
        )
        assert not classifier.should_prioritize_scraping(
            make_catalog_product(priority=PriorityTier.POPULAR, popularity_score=20)
        )

    def test_identify_limited_releases(self, classifier, scraped_factory):
        esoterica = scraped_factory()
        generic = scraped_factory(name="Generic Cherry Mix", brand="Acme", url="https://example.com/g")

        assert classifier.identify_limited_releases([esoterica, generic]) == [esoterica]

    def test_detect_new_limited_release(self, classifier, scraped_factory):
        assert not classifier.detect_new_limited_release(
            scraped_factory(name="Generic Cherry Mix", brand="Acme", price="120.00")
        )
        assert classifier.detect_new_limited_release(
            scraped_factory(
                name="Generic Cherry Mix",
                brand="Dunhill",
                price="120.00",
                availability=Availability.LIMITED,
            )
        )
