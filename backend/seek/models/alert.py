"""Persisted alerts written by the persistence alert sink."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Enum as SAEnum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from seek.models.base import Base, UUIDPrimaryKeyMixin
from seek.models.enums import AlertPriority, AlertType, enum_values


class AlertRecord(UUIDPrimaryKeyMixin, Base):
    """Durable copy of an in-memory Alert (best-effort)."""

    __tablename__ = "alerts"

    alert_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True, comment="In-memory alert id")
    type: Mapped[AlertType] = mapped_column(
        SAEnum(AlertType, native_enum=False, values_callable=enum_values, length=20),
        nullable=False,
        index=True,
    )
    priority: Mapped[AlertPriority] = mapped_column(
        SAEnum(AlertPriority, native_enum=False, values_callable=enum_values, length=10),
        nullable=False,
    )
    product_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    product_name: Mapped[str] = mapped_column(String(500), nullable=False)
    brand: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    retailers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    rule_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AlertRecord(alert_id='{self.alert_id}', type='{self.type}', priority='{self.priority}')>"
