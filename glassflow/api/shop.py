"""Shop dashboard API: open offers, assigned jobs, price submission and job progress."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from glassflow.dependencies import actor_for, get_engine, limit_mutations, require_shop
from glassflow.schemas import (
    AppointmentRead, CancelRequest, CostEstimateCreate, JobOfferRead, JobProgress,
)
from glassflow.services.auth import AuthContext
from glassflow.services.workflow import WorkflowEngine

router = APIRouter(prefix="/api/shop", tags=["shop"])


@router.get("/offers")
async def list_offers(
    include_closed: bool = Query(default=False),
    auth: AuthContext = Depends(require_shop),
    engine: WorkflowEngine = Depends(get_engine),
):
    actor = actor_for(auth)
    await engine.sweep_expired_offers(shop_id=actor.id)
    offers = await engine.offers.list_for_shop(actor.id, include_closed=include_closed)
    return [JobOfferRead.model_validate(o) for o in offers]


@router.get("/appointments")
async def list_jobs(
    stage: str | None = Query(default=None),
    auth: AuthContext = Depends(require_shop),
    engine: WorkflowEngine = Depends(get_engine),
):
    actor = actor_for(auth)
    rows = await engine.store.list_appointments(stage=stage, shop_id=actor.id)
    return [AppointmentRead.model_validate(a) for a in rows]


@router.post("/appointments/{appointment_id}/price", status_code=201, dependencies=[Depends(limit_mutations)])
async def submit_price(
    appointment_id: str,
    body: CostEstimateCreate,
    auth: AuthContext = Depends(require_shop),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    updated = await engine.submit_price(
        appointment_id, actor_for(auth),
        labor_cost=body.labor_cost,
        parts_cost=body.parts_cost,
        total_cost=body.total_cost,
        line_items=[i.model_dump() for i in body.line_items],
        notes=body.notes,
    )
    return AppointmentRead.model_validate(updated)


@router.post("/appointments/{appointment_id}/start")
async def start_job(
    appointment_id: str,
    body: JobProgress,
    auth: AuthContext = Depends(require_shop),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    updated = await engine.job_started(
        appointment_id, actor_for(auth),
        estimated_completion=body.estimated_completion, notes=body.notes,
    )
    return AppointmentRead.model_validate(updated)


@router.post("/appointments/{appointment_id}/complete")
async def complete_job(
    appointment_id: str,
    body: JobProgress,
    auth: AuthContext = Depends(require_shop),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    updated = await engine.job_completed(appointment_id, actor_for(auth), notes=body.notes)
    return AppointmentRead.model_validate(updated)


@router.post("/appointments/{appointment_id}/cancel")
async def cancel_job(
    appointment_id: str,
    body: CancelRequest,
    auth: AuthContext = Depends(require_shop),
    engine: WorkflowEngine = Depends(get_engine),
) -> AppointmentRead:
    return AppointmentRead.model_validate(await engine.cancel(appointment_id, actor_for(auth), body.reason))
