"""Scrape run tracking and monitoring."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from seek.models.base import Base, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from seek.models.retailer import Retailer


class ScrapeRun(UUIDPrimaryKeyMixin, Base):
    """Tracks one execution of a retailer crawl.

    Manual crawls, scheduler task executions and limited-release scans each
    create a ScrapeRun to record status, counts and errors.
    """

    __tablename__ = "scrape_runs"

    retailer_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("retailers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    trigger: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        default="manual",
        comment="'manual', 'limited' or 'scheduler:<tier>'",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="running",
        index=True,
        comment="Status: 'running', 'completed', 'failed'",
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)

    # Metrics
    items_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Error tracking
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_traceback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    retailer: Mapped["Retailer"] = relationship(back_populates="scrape_runs")

    def __repr__(self) -> str:
        return f"<ScrapeRun(id={self.id}, retailer_id={self.retailer_id}, trigger='{self.trigger}', status='{self.status}')>"
