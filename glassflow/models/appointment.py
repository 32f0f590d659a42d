"""Appointment model: one repair job from damage report to completion."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, Integer, Boolean, Date, DateTime, Numeric, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from glassflow.models.base import Base, ULIDMixin, utcnow
from glassflow.models.encrypted_type import EncryptedString


class Appointment(Base, ULIDMixin):
    __tablename__ = "appointments"

    short_code: Mapped[str] = mapped_column(String(8), unique=True, index=True)
    tracking_token: Mapped[str] = mapped_column(String(32), unique=True, index=True)

    customer_name: Mapped[str] = mapped_column(String(200))
    customer_email: Mapped[str] = mapped_column(EncryptedString(500))
    customer_phone: Mapped[str] = mapped_column(EncryptedString(500), default="")

    vehicle_make: Mapped[str] = mapped_column(String(100), default="")
    vehicle_model: Mapped[str] = mapped_column(String(100), default="")
    vehicle_year: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    license_plate: Mapped[str] = mapped_column(String(20), default="")

    service_type: Mapped[str] = mapped_column(String(50))  # windshield | rear_window | side_window ...
    damage_type: Mapped[str] = mapped_column(String(50))  # chip | crack | shattered
    additional_notes: Mapped[str] = mapped_column(Text, default="")
    insurer_name: Mapped[str] = mapped_column(String(200), default="")
    requires_adas_calibration: Mapped[bool] = mapped_column(Boolean, default=False)

    # workflow_stage is authoritative; job_status and status are derived from it
    workflow_stage: Mapped[str] = mapped_column(String(30), default="new", index=True)
    job_status: Mapped[str | None] = mapped_column(String(20), nullable=True, default=None)
    status: Mapped[str] = mapped_column(String(20), default="pending")

    total_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True, default=None)
    shop_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("shops.id"), nullable=True, default=None)
    shop_name: Mapped[str] = mapped_column(String(200), default="")

    appointment_date: Mapped[date | None] = mapped_column(Date, nullable=True, default=None)
    appointment_time: Mapped[str | None] = mapped_column(String(8), nullable=True, default=None)

    shop_selected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    customer_shop_selection: Mapped[str | None] = mapped_column(String(26), nullable=True, default=None)
    customer_shop_selected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    customer_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    price_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    cost_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    customer_cost_approved: Mapped[bool] = mapped_column(Boolean, default=False)
    customer_cost_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    job_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    job_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    estimated_completion: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    cancellation_reason: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    shop = relationship("Shop", lazy="selectin")
