"""Factory for creating scraper instances per retailer."""

import re
from typing import Dict, Optional, Type

import structlog

from seek.scrapers.base import BaseScraper
from seek.scrapers.adapters import CountrySquireScraper, SmokingpipesScraper


logger = structlog.get_logger(__name__)

DEFAULT_SCRAPERS: Dict[str, Type[BaseScraper]] = {
    "smokingpipes": SmokingpipesScraper,
    "countrysquire": CountrySquireScraper,
}


def _registry_key(value: str) -> str:
    """'The Country Squire' / 'country-squire' -> 'countrysquire'"""
    key = re.sub(r"[^a-z0-9]", "", (value or "").lower())
    return key[3:] if key.startswith("the") else key


class ScraperFactory:
    """Registry of scraper classes keyed by retailer slug.

    Retailers are resolved by slug first and then by a normalized form of
    their display name ("Smokingpipes.com" -> "smokingpipescom" matches the
    "smokingpipes" prefix).
    """

    def __init__(self, scrapers: Optional[Dict[str, Type[BaseScraper]]] = None, **scraper_kwargs):
        """Initialize the factory.

        Args:
            scrapers: slug -> scraper class, defaults to DEFAULT_SCRAPERS
            **scraper_kwargs: Passed to every scraper constructor (delay, retry settings)
        """
        self._registry: Dict[str, Type[BaseScraper]] = {}
        self._scraper_kwargs = scraper_kwargs
        for slug, scraper_class in (scrapers if scrapers is not None else DEFAULT_SCRAPERS).items():
            self.register_scraper(slug, scraper_class)

    def register_scraper(self, slug: str, scraper_class: Type[BaseScraper]) -> None:
        """Register a scraper class for a retailer.

        Args:
            slug: Retailer slug (e.g., "smokingpipes")
            scraper_class: Scraper class (must inherit from BaseScraper)
        """
        if not isinstance(scraper_class, type) or not issubclass(scraper_class, BaseScraper):
            raise ValueError(f"Scraper class must inherit from BaseScraper: {scraper_class}")

        self._registry[_registry_key(slug)] = scraper_class
        logger.debug("scraper_registered", slug=slug, scraper_class=scraper_class.__name__)

    def resolve(self, retailer) -> Optional[Type[BaseScraper]]:
        slug_key = _registry_key(getattr(retailer, "slug", "") or "")
        if slug_key in self._registry:
            return self._registry[slug_key]

        name_key = _registry_key(retailer.name)
        for key, scraper_class in self._registry.items():
            if name_key.startswith(key):
                return scraper_class
        return None

    def create_scraper(self, retailer) -> Optional[BaseScraper]:
        """Create a scraper for a retailer record.

        Args:
            retailer: Retailer with name, slug, base_url and scraping_config

        Returns:
            Scraper instance (not yet initialized), or None if no scraper is registered
        """
        scraper_class = self.resolve(retailer)
        if not scraper_class:
            logger.warning("scraper_not_found", retailer=retailer.name)
            return None

        scraper = scraper_class(retailer, **self._scraper_kwargs)
        logger.debug("scraper_created", retailer=retailer.name, scraper_class=scraper_class.__name__)
        return scraper
