"""Alert and alert history tables.

``target``, ``conditions`` and ``notification`` are JSON documents written
by the dashboard API. ``alert_history`` is append-only: the worker inserts
one row per trigger and never updates or deletes it.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class AlertRecord(TimestampMixin, Base):
    __tablename__ = "alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="active")
    target: Mapped[Any] = mapped_column(JsonDocument, nullable=False)
    conditions: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    notification: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    trigger_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_alerts_status", "status"),
        Index("ix_alerts_last_triggered_at", "last_triggered_at"),
    )


class AlertHistoryRecord(Base):
    __tablename__ = "alert_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    alert_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False
    )
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    conditions_snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JsonDocument, nullable=True
    )
    triggered_value: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JsonDocument, nullable=True
    )
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("ix_alert_history_alert_id", "alert_id"),)
