from __future__ import annotations

import datetime as dt

from sqlalchemy import String, Boolean, Date, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from glassflow.models.base import Base, ULIDMixin


class ShopAvailability(Base, ULIDMixin):
    __tablename__ = "shop_availability"
    __table_args__ = (
        UniqueConstraint("shop_id", "date", "time_slot", name="uq_availability_slot"),
    )

    shop_id: Mapped[str] = mapped_column(String(26), ForeignKey("shops.id"), index=True)
    date: Mapped[dt.date] = mapped_column(Date)
    time_slot: Mapped[str] = mapped_column(String(8))  # HH:MM:SS
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    appointment_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("appointments.id"), nullable=True, default=None)
