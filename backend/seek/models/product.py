"""Catalog product model: the canonical entity for one distinct tobacco."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, DateTime, Enum as SAEnum, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from seek.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from seek.models.enums import Category, PriorityTier, ReleaseType, enum_values

if TYPE_CHECKING:
    from seek.models.listing import RetailerListing

UNKNOWN_BRAND = "Unknown"


class CatalogProduct(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Deduplicated product across retailers.

    Created only when reconciliation finds no match and never hard-deleted
    by the scraping pipeline; discontinued items stay, tagged by priority.
    Owns at most one RetailerListing per retailer.
    """

    __tablename__ = "catalog_products"

    # Identity
    name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    match_key: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        index=True,
        comment="Normalized name used for fuzzy retailer-scoped matching",
    )
    brand: Mapped[str] = mapped_column(String(200), nullable=False, default=UNKNOWN_BRAND, index=True)
    name_key: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        index=True,
        comment="Case-folded name for exact matching",
    )
    brand_key: Mapped[str] = mapped_column(String(200), nullable=False, default=UNKNOWN_BRAND.casefold(), index=True)

    # Descriptive
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Category] = mapped_column(
        SAEnum(Category, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
        default=Category.TINNED,
        index=True,
    )
    tobacco_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list, comment="Constituent leaf types")
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Classification
    priority: Mapped[PriorityTier] = mapped_column(
        SAEnum(PriorityTier, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
        default=PriorityTier.STANDARD,
        index=True,
    )
    release_type: Mapped[ReleaseType] = mapped_column(
        SAEnum(ReleaseType, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
        default=ReleaseType.REGULAR,
        index=True,
    )
    popularity_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)

    # Telemetry
    search_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Incremented by the API layer")
    price_volatility: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, comment="Coefficient of variation of price history")
    last_stock_change: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_catalog_products_name_brand", "name_key", "brand_key"),
    )

    # Relationships
    listings: Mapped[list["RetailerListing"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
    )

    def listing_for(self, retailer_id: uuid.UUID) -> Optional["RetailerListing"]:
        """Return this product's listing at a retailer, if any."""
        for listing in self.listings:
            if listing.retailer_id == retailer_id:
                return listing
        return None

    @validates("name", "brand")
    def _sync_keys(self, key: str, value: str) -> str:
        # Case folding happens here, not in SQL: SQLite lower() is ASCII-only
        if key == "name":
            self.name_key = (value or "").casefold()
        else:
            self.brand_key = (value or UNKNOWN_BRAND).casefold()
        return value

    @property
    def has_known_brand(self) -> bool:
        return bool(self.brand) and self.brand != UNKNOWN_BRAND

    def __repr__(self) -> str:
        return f"<CatalogProduct(id={self.id}, name='{self.name[:50]}', brand='{self.brand}')>"
