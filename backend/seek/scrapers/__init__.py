"""Scraper system for fetching tobacco listings from retailer sites.

This package provides:
- Base scraper class and the ScrapedProduct observation
- Utility modules for adaptive delays, browser sessions, retries and normalization
- Factory for creating scraper instances per retailer

The orchestration service and the scheduler live in scraper_service and
scheduler; import them from there.
"""

from .base import BaseScraper, ScrapedProduct
from .factory import ScraperFactory

__all__ = [
    # Base classes
    "BaseScraper",
    # Data structures
    "ScrapedProduct",
    # Factory
    "ScraperFactory",
]
