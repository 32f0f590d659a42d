from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any
from pydantic import BaseModel, Field


class LineItemIn(BaseModel):
    name: str
    description: str = ""
    quantity: int = 1
    unit_price: Decimal


class CostEstimateCreate(BaseModel):
    labor_cost: Decimal
    parts_cost: Decimal | None = None
    total_cost: Decimal | None = None
    line_items: list[LineItemIn] = Field(default_factory=list)
    notes: str = ""


class CostEstimateRead(BaseModel):
    id: str
    appointment_id: str
    line_items: list[dict[str, Any]]
    labor_cost: Decimal
    parts_cost: Decimal
    total_cost: Decimal
    notes: str
    submitted_by: str
    created_at: datetime

    model_config = {"from_attributes": True}


class PriceDecision(BaseModel):
    reason: str = ""


class JobProgress(BaseModel):
    estimated_completion: datetime | None = None
    notes: str = ""


class CancelRequest(BaseModel):
    reason: str = ""
