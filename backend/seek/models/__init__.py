"""SQLAlchemy models for the Seek catalog.

All models are imported here so Base.metadata knows every table.
"""

from seek.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from seek.models.enums import (
    AlertPriority,
    AlertType,
    Availability,
    Category,
    PriorityTier,
    ReleaseType,
)
from seek.models.retailer import Retailer
from seek.models.product import CatalogProduct, UNKNOWN_BRAND
from seek.models.listing import RetailerListing, MAX_PRICE_HISTORY
from seek.models.price_history import PriceHistoryEntry
from seek.models.alert import AlertRecord
from seek.models.scrape_run import ScrapeRun

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "AlertPriority",
    "AlertType",
    "Availability",
    "Category",
    "PriorityTier",
    "ReleaseType",
    "Retailer",
    "CatalogProduct",
    "UNKNOWN_BRAND",
    "RetailerListing",
    "MAX_PRICE_HISTORY",
    "PriceHistoryEntry",
    "AlertRecord",
    "ScrapeRun",
]
