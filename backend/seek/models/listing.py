"""Retailer listing model: one retailer's offer of a catalog product."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from seek.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from seek.models.enums import Availability, enum_values

if TYPE_CHECKING:
    from seek.models.price_history import PriceHistoryEntry
    from seek.models.product import CatalogProduct
    from seek.models.retailer import Retailer

MAX_PRICE_HISTORY = 100


class RetailerListing(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Current price/availability of a product at one retailer.

    The live value is kept on the listing itself; price_history only holds
    values that were superseded, oldest first, capped at MAX_PRICE_HISTORY.
    """

    __tablename__ = "retailer_listings"

    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("catalog_products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    retailer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("retailers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    current_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    availability: Mapped[Availability] = mapped_column(
        SAEnum(Availability, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
        default=Availability.IN_STOCK,
        index=True,
    )
    last_scraped: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("product_id", "retailer_id", name="uq_listing_product_retailer"),
    )

    # Relationships
    product: Mapped["CatalogProduct"] = relationship(back_populates="listings")
    retailer: Mapped["Retailer"] = relationship(back_populates="listings")
    price_history: Mapped[list["PriceHistoryEntry"]] = relationship(
        back_populates="listing",
        cascade="all, delete-orphan",
        order_by="PriceHistoryEntry.date",
    )

    def __repr__(self) -> str:
        return (
            f"<RetailerListing(product_id={self.product_id}, retailer_id={self.retailer_id}, "
            f"price={self.current_price}, availability={self.availability})>"
        )
