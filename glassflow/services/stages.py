"""Workflow stages, the legal edges between them, and the statuses derived from a stage."""

from __future__ import annotations

NEW = "new"
SHOP_SELECTION = "shop_selection"
AWAITING_SHOP_RESPONSE = "awaiting_shop_response"
CUSTOMER_HANDOVER = "customer_handover"
DAMAGE_REPORT = "damage_report"
COST_APPROVAL = "cost_approval"
SCHEDULED = "scheduled"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"

STAGES = (
    NEW, SHOP_SELECTION, AWAITING_SHOP_RESPONSE, CUSTOMER_HANDOVER,
    DAMAGE_REPORT, COST_APPROVAL, SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED,
)

TERMINAL = frozenset({COMPLETED, CANCELLED})

EDGES: dict[str, frozenset[str]] = {
    NEW: frozenset({SHOP_SELECTION, CUSTOMER_HANDOVER, CANCELLED}),
    SHOP_SELECTION: frozenset({AWAITING_SHOP_RESPONSE, NEW, CANCELLED}),
    AWAITING_SHOP_RESPONSE: frozenset({DAMAGE_REPORT, SHOP_SELECTION, NEW, CANCELLED}),
    CUSTOMER_HANDOVER: frozenset({COST_APPROVAL, CANCELLED}),
    DAMAGE_REPORT: frozenset({COST_APPROVAL, CUSTOMER_HANDOVER, CANCELLED}),
    COST_APPROVAL: frozenset({SCHEDULED, CUSTOMER_HANDOVER, CANCELLED}),
    SCHEDULED: frozenset({IN_PROGRESS, CANCELLED}),
    IN_PROGRESS: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}

# Stages at which no shop is assigned yet
UNASSIGNED = frozenset({NEW, SHOP_SELECTION})

PRICE_SUBMISSION_STAGES = frozenset({CUSTOMER_HANDOVER, DAMAGE_REPORT})
PRICE_REVIEW_STAGES = frozenset({CUSTOMER_HANDOVER, DAMAGE_REPORT})
PRICE_RESET_STAGES = frozenset({CUSTOMER_HANDOVER, DAMAGE_REPORT, COST_APPROVAL})
RESCHEDULE_STAGES = frozenset({
    AWAITING_SHOP_RESPONSE, CUSTOMER_HANDOVER, DAMAGE_REPORT, COST_APPROVAL, SCHEDULED,
})


def is_legal(old: str, new: str) -> bool:
    return new in EDGES.get(old, frozenset())


def job_status_for(stage: str) -> str | None:
    """Coarse job status shown to shops. None until the job is scheduled."""
    if stage in (SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED):
        return stage
    return None


def booking_status_for(stage: str) -> str:
    if stage in (NEW, SHOP_SELECTION, AWAITING_SHOP_RESPONSE):
        return "pending"
    if stage == COMPLETED:
        return "completed"
    if stage == CANCELLED:
        return "cancelled"
    return "confirmed"


def stage_fields(stage: str) -> dict:
    """Column values that must be written together with a new stage."""
    return {
        "workflow_stage": stage,
        "job_status": job_status_for(stage),
        "status": booking_status_for(stage),
    }
