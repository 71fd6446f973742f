"""Retailer model representing a tobacco shop we crawl."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from seek.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from seek.schemas.retailer import RetailerConfig

if TYPE_CHECKING:
    from seek.models.listing import RetailerListing
    from seek.models.scrape_run import ScrapeRun


class Retailer(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Retailer (online tobacconist) with its site-specific scraping recipe.

    The recipe is provisioned by the seeding step and treated as read-only
    input; this subsystem only updates last_scraped.
    """

    __tablename__ = "retailers"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, comment="Display name (e.g., 'Smokingpipes.com')")
    slug: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False, comment="Scraper registry key")
    base_url: Mapped[str] = mapped_column(String(500), nullable=False, comment="Site root used to absolutize links")
    logo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True, comment="Whether scraping is enabled")
    last_scraped: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the last full crawl",
    )

    scraping_config: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Selectors, listing URL and crawl delay",
    )

    # Relationships
    listings: Mapped[list["RetailerListing"]] = relationship(back_populates="retailer", cascade="all, delete-orphan")
    scrape_runs: Mapped[list["ScrapeRun"]] = relationship(back_populates="retailer", cascade="all, delete-orphan")

    @property
    def config(self) -> RetailerConfig:
        """Validated, immutable view of scraping_config."""
        return RetailerConfig.model_validate(self.scraping_config)

    def __repr__(self) -> str:
        return f"<Retailer(id={self.id}, slug='{self.slug}', name='{self.name}')>"
