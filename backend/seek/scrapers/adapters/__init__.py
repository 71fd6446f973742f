"""Retailer-specific scraper implementations.

Each adapter module implements a class that inherits from BaseScraper and
is registered with the ScraperFactory under the retailer slug.
"""

from .smokingpipes import SmokingpipesScraper
from .country_squire import CountrySquireScraper

__all__ = [
    "SmokingpipesScraper",
    "CountrySquireScraper",
]
