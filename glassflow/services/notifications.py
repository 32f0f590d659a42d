"""Fire-and-forget delivery of workflow events.

The engine emits an event after its transaction commits. Delivery (realtime
push to the appointment channel, then e-mail to whoever the event concerns)
runs as a background task; a failure is logged and never reaches the request
that caused the transition.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from glassflow.schemas.ws_messages import WSMessage
from glassflow.services import email
from glassflow.services.ws_manager import ws_manager

logger = logging.getLogger(__name__)


@dataclass
class WorkflowEvent:
    name: str
    appointment_id: str
    workflow_stage: str
    payload: dict[str, Any] = field(default_factory=dict)


# event name -> (audience, subject, body)
_MESSAGES: dict[str, tuple[str, str, str]] = {
    "DamageReportSubmitted": ("customer", "We received your damage report",
                              "Your insurer will propose repair shops shortly."),
    "ShopSelectionCreated": ("customer", "Choose your repair shop",
                             "Your insurer has selected repair shops for you. Pick one and book a time."),
    "CustomerShopSelected": ("shop", "New job request",
                             "A customer picked your shop and booked a time slot. Please accept or decline."),
    "JobOfferCreated": ("shop", "New job offer",
                        "You have a new job offer waiting in your dashboard."),
    "JobOfferAccepted": ("customer", "Your repair shop confirmed",
                         "The shop accepted your job."),
    "JobOfferDeclined": ("customer", "Please choose another shop",
                         "The shop you picked is unable to take the job."),
    "JobOfferExpired": ("customer", "Please choose another shop",
                        "The shop you picked did not respond in time."),
    "PriceApproved": ("customer", "Please approve your repair cost",
                      "Your insurer approved the repair price. Please review and approve the cost."),
    "PriceRejected": ("shop", "Price offer rejected",
                      "The insurer rejected your price offer. Please submit a new one."),
    "PriceReset": ("shop", "Price offer reset",
                   "The insurer reset the price for this job. Please submit a new one."),
    "CostApproved": ("shop", "Job scheduled",
                     "The customer approved the cost. The job is scheduled."),
    "AppointmentRescheduled": ("shop", "Appointment rescheduled",
                               "The customer moved their appointment to a new time."),
    "JobStarted": ("customer", "Your repair has started", "The shop has started working on your vehicle."),
    "JobCompleted": ("customer", "Your repair is complete", "The shop has completed your repair."),
    "AppointmentCancelled": ("customer", "Appointment cancelled", "Your appointment has been cancelled."),
}


class NotificationDispatcher:
    def __init__(self, broadcaster=ws_manager):
        self._broadcaster = broadcaster
        self._tasks: set[asyncio.Task] = set()

    def emit(self, event: WorkflowEvent) -> None:
        """Schedule delivery without waiting for it."""
        try:
            task = asyncio.get_running_loop().create_task(self.deliver(event))
        except RuntimeError:
            logger.warning("No running loop; dropping %s for %s", event.name, event.appointment_id)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def deliver(self, event: WorkflowEvent) -> None:
        try:
            message = WSMessage(
                event=event.name,
                appointment_id=event.appointment_id,
                workflow_stage=event.workflow_stage,
                data={k: v for k, v in event.payload.items() if not k.startswith("_")},
            )
            await self._broadcaster.broadcast(event.appointment_id, message.model_dump())
            await self._send_email(event)
        except Exception:
            logger.exception("Notification %s for appointment %s failed", event.name, event.appointment_id)

    async def _send_email(self, event: WorkflowEvent) -> None:
        audience, subject, body = _MESSAGES.get(event.name, ("", "", ""))
        p = event.payload
        if audience == "customer" and p.get("_customer_email"):
            await asyncio.to_thread(
                email.send_customer_update,
                p["_customer_email"], p.get("_tracking_token", ""), p.get("short_code", ""),
                subject, body,
            )
        elif audience == "shop" and p.get("_shop_email"):
            await asyncio.to_thread(email.send_shop_update, p["_shop_email"], subject, body)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


dispatcher = NotificationDispatcher()
