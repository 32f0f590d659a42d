"""Pydantic request/response schemas."""

from glassflow.schemas.appointment import (
    DamageReportCreate, DamageReportCreated, AppointmentRead, StageResponse, TrackingRequest,
)
from glassflow.schemas.selection import ShopPickIn, ShopSelectionCreate, ShopSelectionRead, SelectionRequest
from glassflow.schemas.job_offer import JobResponseRequest, JobResponseResult, OfferCreate, JobOfferRead
from glassflow.schemas.cost_estimate import (
    LineItemIn, CostEstimateCreate, CostEstimateRead, PriceDecision, JobProgress, CancelRequest,
)
from glassflow.schemas.shop import ShopCreate, ShopRead, SlotRead, AuditEntryRead
from glassflow.schemas.ws_messages import WSMessage

__all__ = [
    "DamageReportCreate", "DamageReportCreated", "AppointmentRead", "StageResponse", "TrackingRequest",
    "ShopPickIn", "ShopSelectionCreate", "ShopSelectionRead", "SelectionRequest",
    "JobResponseRequest", "JobResponseResult", "OfferCreate", "JobOfferRead",
    "LineItemIn", "CostEstimateCreate", "CostEstimateRead", "PriceDecision", "JobProgress", "CancelRequest",
    "ShopCreate", "ShopRead", "SlotRead", "AuditEntryRead",
    "WSMessage",
]
