from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID
from pydantic import BaseModel, Field


class JobResponseRequest(BaseModel):
    jobOfferId: UUID
    response: Literal["accept", "decline"]
    declineReason: str | None = None
    counterOffer: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class JobResponseResult(BaseModel):
    success: bool = True
    response: str
    jobOfferId: str
    responseTimeMinutes: float
    newAcceptanceRate: float
    newPerformanceTier: str
    message: str


class OfferCreate(BaseModel):
    shop_id: str
    offered_price: Decimal = Field(ge=0)
    ttl_hours: int | None = Field(default=None, gt=0)


class JobOfferRead(BaseModel):
    id: str
    appointment_id: str
    shop_id: str
    offered_price: Decimal
    status: str
    source: str
    offered_at: datetime
    expires_at: datetime
    responded_at: datetime | None = None
    decline_reason: str | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}
