"""Insurer shortlist entry: one candidate shop for one appointment."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import String, Integer, Float, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from glassflow.models.base import Base, ULIDMixin


class ShopSelection(Base, ULIDMixin):
    __tablename__ = "insurer_shop_selections"
    __table_args__ = (
        UniqueConstraint("appointment_id", "shop_id", name="uq_selection_shop"),
        UniqueConstraint("appointment_id", "priority_order", name="uq_selection_priority"),
    )

    appointment_id: Mapped[str] = mapped_column(String(26), ForeignKey("appointments.id"), index=True)
    shop_id: Mapped[str] = mapped_column(String(26), ForeignKey("shops.id"))
    priority_order: Mapped[int] = mapped_column(Integer)
    estimated_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    distance_km: Mapped[float | None] = mapped_column(Float, nullable=True, default=None)

    shop = relationship("Shop", lazy="selectin")
