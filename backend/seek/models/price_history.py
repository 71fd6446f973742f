"""Price history tracking for retailer listings."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from seek.models.base import Base, UUIDPrimaryKeyMixin
from seek.models.enums import Availability, enum_values

if TYPE_CHECKING:
    from seek.models.listing import RetailerListing


class PriceHistoryEntry(UUIDPrimaryKeyMixin, Base):
    """A superseded (price, availability) observation of a listing.

    `date` is when that value was last observed, i.e. the listing's
    previous last_scraped at the time the change was detected.
    """

    __tablename__ = "price_history"

    listing_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("retailer_listings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    availability: Mapped[Availability] = mapped_column(
        SAEnum(Availability, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_price_history_listing_date", "listing_id", "date"),
    )

    listing: Mapped["RetailerListing"] = relationship(back_populates="price_history")

    def __repr__(self) -> str:
        return f"<PriceHistoryEntry(listing_id={self.listing_id}, price={self.price}, availability={self.availability}, date={self.date})>"
