from __future__ import annotations

from decimal import Decimal

from sqlalchemy import String, Numeric, ForeignKey, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from glassflow.models.base import Base, ULIDMixin


class CostEstimate(Base, ULIDMixin):
    __tablename__ = "insurer_cost_estimates"

    appointment_id: Mapped[str] = mapped_column(String(26), ForeignKey("appointments.id"), index=True)
    line_items: Mapped[list] = mapped_column(JSON, default=list)
    labor_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    parts_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    notes: Mapped[str] = mapped_column(Text, default="")
    submitted_by: Mapped[str] = mapped_column(String(20), default="shop")  # shop | insurer
