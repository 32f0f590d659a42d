"""Privileged maintenance endpoints, guarded by the service-role key."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from glassflow.dependencies import get_engine, require_service_role
from glassflow.services.workflow import WorkflowEngine

router = APIRouter(prefix="/api/internal", tags=["internal"], dependencies=[Depends(require_service_role)])


@router.post("/sweep-offers")
async def sweep_offers(engine: WorkflowEngine = Depends(get_engine)):
    expired = await engine.sweep_expired_offers()
    return {"expired": expired}
