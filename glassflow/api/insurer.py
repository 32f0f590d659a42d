"""Insurer dashboard API: shortlist shops, route offers, review prices."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.db import crud
from glassflow.db.engine import get_db
from glassflow.dependencies import actor_for, get_engine, require_insurer
from glassflow.errors import NotFoundError
from glassflow.models import Appointment
from glassflow.schemas import (
    AppointmentRead, AuditEntryRead, CancelRequest, CostEstimateCreate, CostEstimateRead,
    JobOfferRead, OfferCreate, PriceDecision, ShopRead, ShopSelectionCreate, ShopSelectionRead,
)
from glassflow.services.auth import AuthContext
from glassflow.services.workflow import WorkflowEngine, picks_from_payload

router = APIRouter(prefix="/api/insurer", tags=["insurer"])


async def _scoped(engine: WorkflowEngine, key: str, auth: AuthContext) -> Appointment:
    """Load an appointment the insurer user may see."""
    appointment = await engine.store.get(key)
    if auth.role == "insurer" and auth.insurer_name and appointment.insurer_name != auth.insurer_name:
        raise NotFoundError("Appointment not found", "appointment_not_found")
    return appointment


def _selection_rows(rows) -> list[ShopSelectionRead]:
    return [ShopSelectionRead.from_row(r) for r in rows]


@router.get("/appointments")
async def list_appointments(
    stage: str | None = Query(default=None),
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
):
    insurer = auth.insurer_name if auth.role == "insurer" else None
    rows = await engine.store.list_appointments(stage=stage, insurer_name=insurer or None)
    return [AppointmentRead.model_validate(a) for a in rows]


@router.get("/appointments/{key}")
async def get_appointment(
    key: str,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db),
):
    appointment = await _scoped(engine, key, auth)
    if await engine.sweep_expired_offers(appointment_id=appointment.id):
        appointment = await engine.store.get_by_id(appointment.id)
    estimate = await crud.get_cost_estimate(db, appointment.id)
    return {
        "appointment": AppointmentRead.model_validate(appointment),
        "selections": _selection_rows(await engine.selections.get_for_customer(appointment.id)),
        "offers": [JobOfferRead.model_validate(o) for o in await engine.offers.list_for_appointment(appointment.id)],
        "cost_estimate": CostEstimateRead.model_validate(estimate) if estimate else None,
        "history": [AuditEntryRead.model_validate(e) for e in await crud.list_audit_entries(db, appointment.id)],
    }


@router.get("/shops")
async def list_shops(
    mobile_service: bool | None = Query(default=None),
    adas_calibration: bool | None = Query(default=None),
    auth: AuthContext = Depends(require_insurer),
    db: AsyncSession = Depends(get_db),
):
    shops = await crud.list_shops(db, mobile_service=mobile_service, adas_calibration=adas_calibration)
    return [ShopRead.model_validate(s) for s in shops]


# ── Shortlist ────────────────────────────────────────────

@router.post("/appointments/{key}/selections", status_code=201)
async def select_shops(
    key: str,
    body: ShopSelectionCreate,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
):
    appointment = await _scoped(engine, key, auth)
    picks = picks_from_payload([p.model_dump() for p in body.shops])
    rows = await engine.insurer_select_shops(appointment.id, picks, actor_for(auth))
    return {"workflow_stage": "shop_selection", "selections": _selection_rows(rows)}


@router.delete("/appointments/{key}/selections/{shop_id}")
async def remove_shop(
    key: str,
    shop_id: str,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
):
    appointment = await _scoped(engine, key, auth)
    rows = await engine.insurer_remove_shop(appointment.id, shop_id, actor_for(auth))
    refreshed = await engine.store.get_by_id(appointment.id)
    return {"workflow_stage": refreshed.workflow_stage, "selections": _selection_rows(rows)}


# ── Platform routing ─────────────────────────────────────

@router.post("/appointments/{key}/offers", status_code=201)
async def create_offer(
    key: str,
    body: OfferCreate,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
) -> JobOfferRead:
    appointment = await _scoped(engine, key, auth)
    offer = await engine.insurer_create_offer(
        appointment.id, body.shop_id, body.offered_price, actor_for(auth), ttl_hours=body.ttl_hours,
    )
    return JobOfferRead.model_validate(offer)


@router.post("/appointments/{key}/allocate")
async def allocate(
    key: str,
    count: int | None = Query(default=None, ge=1, le=10),
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
):
    appointment = await _scoped(engine, key, auth)
    offers = await engine.allocate_job(appointment.id, actor_for(auth), count=count)
    return {"offers": [JobOfferRead.model_validate(o) for o in offers]}


# ── Price review ─────────────────────────────────────────

@router.post("/appointments/{key}/estimate", status_code=201)
async def submit_estimate(
    key: str,
    body: CostEstimateCreate,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    """Insurer enters the price on the shop's behalf."""
    appointment = await _scoped(engine, key, auth)
    updated = await engine.submit_price(
        appointment.id, actor_for(auth),
        labor_cost=body.labor_cost,
        parts_cost=body.parts_cost,
        total_cost=body.total_cost,
        line_items=[i.model_dump() for i in body.line_items],
        notes=body.notes,
    )
    return AppointmentRead.model_validate(updated)


@router.post("/appointments/{key}/price/approve")
async def approve_price(
    key: str,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    appointment = await _scoped(engine, key, auth)
    return AppointmentRead.model_validate(await engine.insurer_approve_price(appointment.id, actor_for(auth)))


@router.post("/appointments/{key}/price/reject")
async def reject_price(
    key: str,
    body: PriceDecision,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    appointment = await _scoped(engine, key, auth)
    updated = await engine.insurer_reject_price(appointment.id, actor_for(auth), reason=body.reason)
    return AppointmentRead.model_validate(updated)


@router.post("/appointments/{key}/price/reset")
async def reset_price(
    key: str,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    appointment = await _scoped(engine, key, auth)
    return AppointmentRead.model_validate(await engine.insurer_reset_price(appointment.id, actor_for(auth)))


@router.post("/appointments/{key}/cancel")
async def cancel(
    key: str,
    body: CancelRequest,
    auth: AuthContext = Depends(require_insurer),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    appointment = await _scoped(engine, key, auth)
    return AppointmentRead.model_validate(await engine.cancel(appointment.id, actor_for(auth), body.reason))
