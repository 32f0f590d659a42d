from __future__ import annotations
import re
from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class DamageReportCreate(BaseModel):
    customer_name: str = Field(min_length=1, max_length=200)
    customer_email: str
    customer_phone: str = ""
    vehicle_make: str = ""
    vehicle_model: str = ""
    vehicle_year: int | None = Field(default=None, ge=1950, le=2100)
    license_plate: str = ""
    service_type: str = Field(min_length=1, max_length=50)  # windshield_repair | windshield_replacement ...
    damage_type: str = Field(min_length=1, max_length=50)  # chip | crack | shattered
    additional_notes: str = ""
    insurer_name: str = ""
    requires_adas_calibration: bool = False

    @field_validator("customer_email")
    @classmethod
    def _email_shape(cls, v: str) -> str:
        v = v.strip()
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid e-mail address")
        return v


class DamageReportCreated(BaseModel):
    id: str
    short_code: str
    tracking_token: str
    workflow_stage: str


class AppointmentRead(BaseModel):
    id: str
    short_code: str
    customer_name: str
    customer_email: str
    customer_phone: str
    vehicle_make: str
    vehicle_model: str
    vehicle_year: int | None = None
    license_plate: str
    service_type: str
    damage_type: str
    additional_notes: str
    insurer_name: str
    requires_adas_calibration: bool
    workflow_stage: str
    job_status: str | None = None
    status: str
    total_cost: Decimal | None = None
    shop_id: str | None = None
    shop_name: str
    appointment_date: date | None = None
    appointment_time: str | None = None
    customer_cost_approved: bool
    cancellation_reason: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class StageResponse(BaseModel):
    success: bool = True
    message: str
    next_stage: str


class TrackingRequest(BaseModel):
    tracking_token: str | None = None
    job_code: str | None = None
