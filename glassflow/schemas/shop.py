from __future__ import annotations
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field


class ShopCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    mobile_service: bool = False
    adas_calibration_capability: bool = False
    service_capability: Literal["repair_only", "replacement_only", "both"] = "both"


class ShopRead(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    address: str
    city: str
    postal_code: str
    rating: float | None = None
    mobile_service: bool
    adas_calibration_capability: bool
    service_capability: str
    acceptance_rate: float | None = None
    response_time_minutes: float | None = None
    performance_tier: str

    model_config = {"from_attributes": True}


class SlotRead(BaseModel):
    time_slot: str
    is_available: bool


class AuditEntryRead(BaseModel):
    old_stage: str | None = None
    new_stage: str
    actor: str
    notes: str
    created_at: datetime

    model_config = {"from_attributes": True}
