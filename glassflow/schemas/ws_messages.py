from __future__ import annotations
from typing import Any
from pydantic import BaseModel


class WSMessage(BaseModel):
    event: str  # JobOfferAccepted | PriceApproved | AppointmentCancelled ...
    appointment_id: str
    workflow_stage: str = ""
    data: dict[str, Any] = {}
