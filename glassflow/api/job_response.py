"""Shop answer to a job offer."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from glassflow.dependencies import actor_for, get_engine, limit_mutations, require_shop
from glassflow.schemas import JobResponseRequest, JobResponseResult
from glassflow.services.auth import AuthContext
from glassflow.services.workflow import WorkflowEngine

router = APIRouter(tags=["job_response"])


@router.post("/job-response", dependencies=[Depends(limit_mutations)])
async def job_response(
    body: JobResponseRequest,
    auth: AuthContext = Depends(require_shop),
    engine: WorkflowEngine = Depends(get_engine),
) -> JobResponseResult:
    result = await engine.shop_respond(
        str(body.jobOfferId),
        body.response,
        actor_for(auth),
        reason=body.declineReason,
        counter_offer=body.counterOffer,
        notes=body.notes,
    )
    if body.response == "accept":
        message = "Job accepted successfully"
    else:
        message = "Job declined"
    return JobResponseResult(
        response=body.response,
        jobOfferId=result.offer.id,
        responseTimeMinutes=result.metrics.response_time_minutes,
        newAcceptanceRate=result.metrics.acceptance_rate,
        newPerformanceTier=result.metrics.performance_tier,
        message=message,
    )
