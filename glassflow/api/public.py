"""Customer-facing endpoints: damage reports, shop selection by tracking token, tracking lookups."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.db import crud
from glassflow.db.engine import get_db
from glassflow.dependencies import get_engine, get_settings_dep, limit_lookups, limit_mutations
from glassflow.errors import NotFoundError, ValidationError
from glassflow.schemas import (
    DamageReportCreate, DamageReportCreated, SelectionRequest, ShopSelectionRead, SlotRead, StageResponse,
    TrackingRequest,
)
from glassflow.services import stages
from glassflow.services.appointment_store import AppointmentStore
from glassflow.services.scheduling import parse_date, time_slots
from glassflow.services.tracking import (
    redact_email, redact_phone, validate_job_code, validate_tracking_token,
)
from glassflow.services.workflow import CUSTOMER, WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["customer"])


@router.post("/damage-reports", status_code=201, dependencies=[Depends(limit_mutations)])
async def submit_damage_report(
    body: DamageReportCreate,
    engine: WorkflowEngine = Depends(get_engine),
) -> DamageReportCreated:
    appointment = await engine.submit_damage_report(**body.model_dump())
    return DamageReportCreated(
        id=appointment.id,
        short_code=appointment.short_code,
        tracking_token=appointment.tracking_token,
        workflow_stage=appointment.workflow_stage,
    )


@router.post("/selection", dependencies=[Depends(limit_mutations)])
async def selection_action(
    body: SelectionRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> StageResponse:
    """Single entry point for every action a customer takes with their tracking token."""
    if body.action == "select_shop_and_schedule":
        result = await engine.customer_select_shop_and_schedule(
            body.tracking_token, body.shop_id, body.appointment_date, body.appointment_time,
        )
        return StageResponse(
            message="Shop selected and appointment scheduled. The shop will confirm shortly.",
            next_stage=result.appointment.workflow_stage,
        )
    if body.action == "approve_cost":
        appointment = await engine.customer_approve_cost(body.tracking_token)
        return StageResponse(message="Cost approved. Your repair is scheduled.", next_stage=appointment.workflow_stage)
    if body.action == "reschedule":
        appointment = await engine.customer_reschedule(
            body.tracking_token, body.appointment_date, body.appointment_time,
        )
        return StageResponse(message="Appointment rescheduled.", next_stage=appointment.workflow_stage)
    if body.action == "cancel":
        token = validate_tracking_token(body.tracking_token)
        appointment = await engine.cancel(token, CUSTOMER, body.reason)
        return StageResponse(message="Appointment cancelled.", next_stage=appointment.workflow_stage)
    raise ValidationError(f"Unknown action: {body.action}", "invalid_action")


@router.get("/selection/{tracking_token}/shops", dependencies=[Depends(limit_lookups)])
async def selection_shops(tracking_token: str, engine: WorkflowEngine = Depends(get_engine)):
    """The insurer's shortlist as the customer sees it."""
    token = validate_tracking_token(tracking_token)
    appointment = await engine.store.get_by_token(token)
    if appointment is None:
        raise NotFoundError("Appointment not found", "appointment_not_found")
    if await engine.sweep_expired_offers(appointment_id=appointment.id):
        appointment = await engine.store.get_by_id(appointment.id)

    rows = await engine.selections.get_for_customer(appointment.id)
    return {
        "workflow_stage": appointment.workflow_stage,
        "can_select": appointment.workflow_stage == stages.SHOP_SELECTION and not appointment.customer_shop_selection,
        "shops": [ShopSelectionRead.from_row(r) for r in rows],
    }


@router.get("/shops/{shop_id}/availability", dependencies=[Depends(limit_lookups)])
async def shop_availability(
    shop_id: str,
    date: str = Query(...),
    db: AsyncSession = Depends(get_db),
    settings=Depends(get_settings_dep),
):
    day = parse_date(date)
    if await crud.get_shop(db, shop_id) is None:
        raise NotFoundError("Shop not found", "shop_not_found")

    taken = {s.time_slot for s in await crud.list_slots(db, shop_id, day) if not s.is_available}
    return {
        "shop_id": shop_id,
        "date": day.isoformat(),
        "slots": [SlotRead(time_slot=slot, is_available=slot not in taken) for slot in time_slots(settings.workflow)],
    }


@router.post("/tracking", dependencies=[Depends(limit_lookups)])
async def track_job(body: TrackingRequest, db: AsyncSession = Depends(get_db)):
    """Look up an appointment by tracking token or job code. Contact details come back redacted."""
    store = AppointmentStore(db)
    if body.tracking_token:
        appointment = await store.get_by_token(validate_tracking_token(body.tracking_token))
    elif body.job_code:
        appointment = await store.get_by_short_code(validate_job_code(body.job_code))
    else:
        raise ValidationError("Tracking token or job code is required", "missing_lookup_key")
    if appointment is None:
        raise NotFoundError("Job not found", "appointment_not_found")

    shop = appointment.shop
    history = await crud.list_audit_entries(db, appointment.id)
    return {
        "job": {
            "short_code": appointment.short_code,
            "workflow_stage": appointment.workflow_stage,
            "status": appointment.status,
            "job_status": appointment.job_status,
            "customer_name": appointment.customer_name,
            "customer_email": redact_email(appointment.customer_email),
            "customer_phone": redact_phone(appointment.customer_phone),
            "vehicle_make": appointment.vehicle_make,
            "vehicle_model": appointment.vehicle_model,
            "vehicle_year": appointment.vehicle_year,
            "service_type": appointment.service_type,
            "damage_type": appointment.damage_type,
            "appointment_date": appointment.appointment_date,
            "appointment_time": appointment.appointment_time,
            "total_cost": appointment.total_cost,
            "customer_cost_approved": appointment.customer_cost_approved,
            "created_at": appointment.created_at,
        },
        "shop": None if shop is None else {
            "name": shop.name,
            "phone": shop.phone,
            "address": shop.address,
            "city": shop.city,
            "rating": shop.rating,
        },
        "status_history": [
            {"stage": e.new_stage, "previous_stage": e.old_stage, "actor": e.actor, "notes": e.notes, "changed_at": e.created_at}
            for e in history
        ],
    }
