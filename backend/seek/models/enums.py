"""Closed vocabularies shared by models, scrapers and services."""

from enum import Enum


class Availability(str, Enum):
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LIMITED = "limited"
    DISCONTINUED = "discontinued"


class Category(str, Enum):
    """Tobacco blend families plus the two packaging fallbacks."""

    AROMATIC = "aromatic"
    ENGLISH = "english"
    VIRGINIA = "virginia"
    BURLEY = "burley"
    LATAKIA = "latakia"
    ORIENTAL = "oriental"
    PERIQUE = "perique"
    CAVENDISH = "cavendish"
    BULK = "bulk"
    TINNED = "tinned"


class PriorityTier(str, Enum):
    STANDARD = "standard"
    POPULAR = "popular"
    LIMITED_RELEASE = "limited_release"
    SEASONAL = "seasonal"
    DISCONTINUED = "discontinued"


class ReleaseType(str, Enum):
    REGULAR = "regular"
    LIMITED = "limited"
    SEASONAL = "seasonal"
    ANNIVERSARY = "anniversary"
    EXCLUSIVE = "exclusive"
    SMALL_BATCH = "small_batch"


class AlertType(str, Enum):
    STOCK_CHANGE = "stock_change"
    PRICE_DROP = "price_drop"
    NEW_PRODUCT = "new_product"
    RESTOCK = "restock"
    LIMITED_RELEASE = "limited_release"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def enum_values(enum_cls) -> list:
    """values_callable for SQLAlchemy Enum columns (store .value, not .name)."""
    return [member.value for member in enum_cls]
