"""Pydantic schemas for the scraping pipeline."""

from seek.schemas.retailer import RetailerConfig

__all__ = [
    "RetailerConfig",
]
