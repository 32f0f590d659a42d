"""Shop model: repair shops and their response metrics."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Boolean, Integer, Float, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from glassflow.models.base import Base, ULIDMixin


class Shop(Base, ULIDMixin):
    __tablename__ = "shops"

    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(50), default="")
    address: Mapped[str] = mapped_column(String(255), default="")
    city: Mapped[str] = mapped_column(String(100), default="")
    postal_code: Mapped[str] = mapped_column(String(20), default="")
    rating: Mapped[float | None] = mapped_column(Float, nullable=True, default=None)

    mobile_service: Mapped[bool] = mapped_column(Boolean, default=False)
    adas_calibration_capability: Mapped[bool] = mapped_column(Boolean, default=False)
    service_capability: Mapped[str] = mapped_column(String(20), default="both")  # repair_only | replacement_only | both

    jobs_offered_count: Mapped[int] = mapped_column(Integer, default=0)
    jobs_accepted_count: Mapped[int] = mapped_column(Integer, default=0)
    jobs_declined_count: Mapped[int] = mapped_column(Integer, default=0)
    acceptance_rate: Mapped[float] = mapped_column(Float, default=0.0)
    response_time_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    quality_score: Mapped[float] = mapped_column(Float, default=3.0)
    performance_tier: Mapped[str] = mapped_column(String(20), default="standard")  # standard | gold | premium
    last_job_offered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
