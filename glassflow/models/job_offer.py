"""Job offer model: a price/schedule offer extended to exactly one shop."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Numeric, ForeignKey, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from glassflow.models.base import Base, utcnow


class JobOffer(Base):
    __tablename__ = "job_offers"

    # The shop dashboard addresses offers by uuid
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    appointment_id: Mapped[str] = mapped_column(String(26), ForeignKey("appointments.id"), index=True)
    shop_id: Mapped[str] = mapped_column(String(26), ForeignKey("shops.id"), index=True)
    offered_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    status: Mapped[str] = mapped_column(String(20), default="offered")  # offered | accepted | declined | expired
    source: Mapped[str] = mapped_column(String(20), default="allocation")  # selection | allocation
    offered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    decline_reason: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
