"""Audit trail of workflow stage changes, one row per transition."""

from __future__ import annotations

from sqlalchemy import String, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from glassflow.models.base import Base, ULIDMixin


class StatusAuditEntry(Base, ULIDMixin):
    __tablename__ = "job_status_audit"

    appointment_id: Mapped[str] = mapped_column(String(26), ForeignKey("appointments.id"), index=True)
    old_stage: Mapped[str | None] = mapped_column(String(30), nullable=True)
    new_stage: Mapped[str] = mapped_column(String(30))
    actor: Mapped[str] = mapped_column(String(20))  # customer | insurer | shop | system
    actor_id: Mapped[str] = mapped_column(String(26), default="")
    notes: Mapped[str] = mapped_column(Text, default="")
