from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from glassflow.db import crud
from glassflow.errors import ConflictError, ExpiredOfferError, NotFoundError, ValidationError
from glassflow.models import JobOffer, ShopAvailability
from glassflow.models.base import as_utc
from glassflow.services import stages
from glassflow.services.selection_registry import ShopPick
from glassflow.services.workflow import Actor

INSURER = Actor("insurer", "01INSURERUSER0000000000000")
DAY = "2025-03-10"


def shop_actor(shop):
    return Actor("shop", shop.id)


@pytest.fixture
def shortlisted(workflow, make_shop, make_appointment):
    """Appointment X with shops A (prio 1, 300) and B (prio 2, 320) shortlisted."""
    async def _build():
        a = await make_shop("Shop A")
        b = await make_shop("Shop B")
        appt = await make_appointment()
        await workflow.insurer_select_shops(
            appt.id, [ShopPick(a.id, Decimal("300")), ShopPick(b.id, Decimal("320"))], INSURER,
        )
        return appt, a, b
    return _build


@pytest.fixture
def booked(workflow, shortlisted):
    """Customer picked shop A for 2025-03-10 09:00."""
    async def _build():
        appt, a, b = await shortlisted()
        result = await workflow.customer_select_shop_and_schedule(appt.tracking_token, a.id, DAY, "09:00:00")
        return result.appointment, result.offer, a, b
    return _build


@pytest.fixture
def priced(workflow, booked):
    """Shop A accepted, price reset, then itemized at parts 50 + labor 75."""
    async def _build():
        appt, offer, a, b = await booked()
        await workflow.shop_respond(offer.id, "accept", shop_actor(a))
        await workflow.insurer_reset_price(appt.id, INSURER)
        appt = await workflow.submit_price(appt.id, shop_actor(a), labor_cost=75, parts_cost=50)
        return appt, a
    return _build


async def _offers(db, appointment_id):
    result = await db.execute(select(JobOffer).where(JobOffer.appointment_id == appointment_id).execution_options(populate_existing=True))
    return list(result.scalars().all())


async def _slots(db, appointment_id):
    result = await db.execute(select(ShopAvailability).where(ShopAvailability.appointment_id == appointment_id).execution_options(populate_existing=True))
    return list(result.scalars().all())


# ── Damage report ────────────────────────────────────────

async def test_damage_report_starts_unassigned(db, workflow, recorder, make_appointment):
    appt = await make_appointment()

    assert appt.workflow_stage == "new"
    assert appt.shop_id is None
    assert appt.status == "pending"
    assert appt.job_status is None
    assert len(appt.tracking_token) == 32
    assert len(appt.short_code) == 8
    assert recorder.names() == ["DamageReportSubmitted"]
    history = await crud.list_audit_entries(db, appt.id)
    assert [(h.old_stage, h.new_stage) for h in history] == [(None, "new")]


async def test_appointment_resolves_by_any_key(workflow, make_appointment):
    appt = await make_appointment()
    assert (await workflow.store.get(appt.tracking_token)).id == appt.id
    assert (await workflow.store.get(appt.short_code.lower())).id == appt.id
    assert (await workflow.store.get(appt.id)).id == appt.id
    with pytest.raises(NotFoundError):
        await workflow.store.get("nope")


# ── Scenario 1: insurer shortlist ────────────────────────

async def test_insurer_shortlist_moves_to_shop_selection(workflow, recorder, shortlisted):
    appt, a, b = await shortlisted()

    refreshed = await workflow.store.get_by_id(appt.id)
    assert refreshed.workflow_stage == "shop_selection"
    assert refreshed.shop_selected_at is not None
    rows = await workflow.selections.get_for_customer(appt.id)
    assert [(r.shop_id, r.priority_order, r.estimated_price) for r in rows] == [
        (a.id, 1, Decimal("300.00")), (b.id, 2, Decimal("320.00")),
    ]
    assert "ShopSelectionCreated" in recorder.names()


async def test_shortlist_only_for_new_appointments(workflow, shortlisted):
    appt, a, b = await shortlisted()
    with pytest.raises(ConflictError):
        await workflow.insurer_select_shops(appt.id, [ShopPick(a.id, Decimal("1"))], INSURER)


async def test_removing_last_shop_returns_to_new(workflow, shortlisted):
    appt, a, b = await shortlisted()
    await workflow.insurer_remove_shop(appt.id, a.id, INSURER)
    rows = await workflow.insurer_remove_shop(appt.id, b.id, INSURER)

    assert rows == []
    assert (await workflow.store.get_by_id(appt.id)).workflow_stage == "new"


async def test_remove_shop_after_customer_choice_conflicts(workflow, booked):
    appt, offer, a, b = await booked()
    with pytest.raises(ConflictError) as exc:
        await workflow.insurer_remove_shop(appt.id, b.id, INSURER)
    assert exc.value.reason == "shop_already_selected"


# ── Scenario 2: customer picks a shop ────────────────────

async def test_customer_selection_creates_offer_and_books_slot(db, workflow, recorder, booked):
    appt, offer, a, b = await booked()

    assert appt.workflow_stage == "awaiting_shop_response"
    assert appt.shop_id == a.id
    assert appt.shop_name == "Shop A"
    assert appt.appointment_date == date(2025, 3, 10)
    assert appt.appointment_time == "09:00:00"
    assert appt.customer_confirmed_at is not None

    assert offer.shop_id == a.id
    assert offer.status == "offered"
    assert offer.source == "selection"
    assert offer.offered_price == Decimal("300.00")
    assert as_utc(offer.expires_at) - as_utc(offer.offered_at) == timedelta(hours=24)

    slots = await _slots(db, appt.id)
    assert [(s.shop_id, s.time_slot, s.is_available) for s in slots] == [(a.id, "09:00:00", False)]
    assert recorder.names()[-1] == "CustomerShopSelected"


async def test_second_selection_conflicts_without_double_booking(db, workflow, booked):
    appt, offer, a, b = await booked()
    appt_id = appt.id

    with pytest.raises(ConflictError) as exc:
        await workflow.customer_select_shop_and_schedule(appt.tracking_token, a.id, DAY, "09:00:00")
    assert exc.value.message == "Shop has already been selected"
    assert exc.value.reason == "shop_already_selected"
    assert len(await _offers(db, appt_id)) == 1
    assert len(await _slots(db, appt_id)) == 1


async def test_shop_outside_shortlist_rejected(workflow, shortlisted, make_shop):
    appt, a, b = await shortlisted()
    elsewhere = await make_shop("Shop C")
    appt_id = appt.id

    with pytest.raises(ValidationError) as exc:
        await workflow.customer_select_shop_and_schedule(appt.tracking_token, elsewhere.id, DAY, "09:00:00")
    assert exc.value.message == "Selected shop is not one of the available options"
    assert (await workflow.store.get_by_id(appt_id)).workflow_stage == "shop_selection"


@pytest.mark.parametrize("token,day,time,reason", [
    ("bad-token", DAY, "09:00:00", "invalid_tracking_token"),
    (None, DAY, "09:00:00", "missing_tracking_token"),
    ("x" * 32, "10-03-2025", "09:00:00", "invalid_date"),
    ("x" * 32, "2025-02-30", "09:00:00", "invalid_date"),
    ("x" * 32, DAY, "9am", "invalid_time"),
    ("x" * 32, DAY, "18:00:00", "invalid_time_slot"),
])
async def test_malformed_selection_input(workflow, shortlisted, token, day, time, reason):
    appt, a, b = await shortlisted()
    with pytest.raises(ValidationError) as exc:
        await workflow.customer_select_shop_and_schedule(token, a.id, day, time)
    assert exc.value.reason == reason


async def test_unknown_token_not_found(workflow, shortlisted):
    appt, a, b = await shortlisted()
    with pytest.raises(NotFoundError):
        await workflow.customer_select_shop_and_schedule("y" * 32, a.id, DAY, "09:00:00")


async def test_taken_slot_rolls_back_whole_selection(db, workflow, recorder, shortlisted, make_appointment):
    appt, a, b = await shortlisted()
    other = await make_appointment(customer_email="other@example.com")
    await crud.book_slot(db, a.id, date(2025, 3, 10), "09:00:00", other.id)
    await db.commit()
    emitted = len(recorder.events)
    appt_id = appt.id

    with pytest.raises(ConflictError) as exc:
        await workflow.customer_select_shop_and_schedule(appt.tracking_token, a.id, DAY, "09:00:00")
    assert exc.value.reason == "slot_unavailable"

    refreshed = await workflow.store.get_by_id(appt_id)
    assert refreshed.workflow_stage == "shop_selection"
    assert refreshed.customer_shop_selection is None
    assert await _offers(db, appt_id) == []
    assert len(recorder.events) == emitted


# ── Scenario 3: shop responds ────────────────────────────

async def test_shop_accept_confirms_booking(workflow, recorder, booked):
    appt, offer, a, b = await booked()

    result = await workflow.shop_respond(offer.id, "accept", shop_actor(a))

    assert result.offer.status == "accepted"
    assert result.appointment.workflow_stage == "damage_report"
    assert result.appointment.status == "confirmed"
    assert result.appointment.total_cost == Decimal("300.00")
    assert result.metrics.acceptance_rate == 100.0
    assert recorder.names()[-1] == "JobOfferAccepted"


async def test_shop_cannot_answer_another_shops_offer(workflow, booked):
    appt, offer, a, b = await booked()
    with pytest.raises(NotFoundError):
        await workflow.shop_respond(offer.id, "accept", shop_actor(b))


async def test_accept_expires_siblings_only(db, workflow, make_shop, make_appointment):
    a, b = await make_shop("Shop A"), await make_shop("Shop B")
    x = await make_appointment()
    y = await make_appointment(customer_email="y@example.com")
    offer_a = await workflow.insurer_create_offer(x.id, a.id, 280, INSURER)
    offer_b = await workflow.insurer_create_offer(x.id, b.id, 290, INSURER)
    offer_y = await workflow.insurer_create_offer(y.id, b.id, 300, INSURER)

    result = await workflow.shop_respond(offer_a.id, "accept", shop_actor(a))

    assert result.appointment.workflow_stage == "customer_handover"
    assert result.appointment.shop_id == a.id
    assert (await workflow.offers.get(offer_b.id)).status == "expired"
    assert (await workflow.offers.get(offer_y.id)).status == "offered"
    assert (await workflow.store.get_by_id(y.id)).workflow_stage == "new"


async def test_counter_offer_becomes_total(workflow, booked):
    appt, offer, a, b = await booked()
    result = await workflow.shop_respond(offer.id, "accept", shop_actor(a), counter_offer="275.00")
    assert result.appointment.total_cost == Decimal("275.00")


async def test_decline_returns_to_shop_selection_without_that_shop(db, workflow, recorder, booked):
    appt, offer, a, b = await booked()

    result = await workflow.shop_respond(offer.id, "decline", shop_actor(a), reason="Fully booked")

    assert result.offer.status == "declined"
    assert result.appointment.workflow_stage == "shop_selection"
    assert result.appointment.shop_id is None
    assert result.appointment.customer_shop_selection is None
    assert result.appointment.appointment_date is None
    assert [r.shop_id for r in await workflow.selections.get_for_customer(appt.id)] == [b.id]
    assert all(s.is_available for s in await crud.list_slots(db, a.id, date(2025, 3, 10)))
    assert recorder.names()[-1] == "JobOfferDeclined"

    # The customer can pick the remaining shop, even the freed slot
    again = await workflow.customer_select_shop_and_schedule(appt.tracking_token, b.id, DAY, "09:00:00")
    assert again.appointment.shop_id == b.id


async def test_declining_last_shortlisted_shop_returns_to_new(workflow, make_shop, make_appointment):
    a = await make_shop("Shop A")
    appt = await make_appointment()
    await workflow.insurer_select_shops(appt.id, [ShopPick(a.id, Decimal("300"))], INSURER)
    result = await workflow.customer_select_shop_and_schedule(appt.tracking_token, a.id, DAY, "10:30:00")

    declined = await workflow.shop_respond(result.offer.id, "decline", shop_actor(a))
    assert declined.appointment.workflow_stage == "new"


async def test_declined_allocation_offer_leaves_appointment(workflow, make_shop, make_appointment):
    a = await make_shop("Shop A")
    appt = await make_appointment()
    offer = await workflow.insurer_create_offer(appt.id, a.id, 280, INSURER)

    result = await workflow.shop_respond(offer.id, "decline", shop_actor(a), reason="No glass in stock")
    assert result.appointment.workflow_stage == "new"
    assert result.offer.decline_reason == "No glass in stock"


# ── Scenarios 4-6: price and cost approval ──────────────

async def test_price_submission_requires_null_total(workflow, booked):
    appt, offer, a, b = await booked()
    await workflow.shop_respond(offer.id, "accept", shop_actor(a))

    with pytest.raises(ConflictError) as exc:
        await workflow.submit_price(appt.id, shop_actor(a), labor_cost=75, parts_cost=50)
    assert exc.value.reason == "price_already_submitted"


async def test_submit_price_keeps_stage(db, workflow, priced):
    appt, a = await priced()

    assert appt.workflow_stage == "customer_handover"
    assert appt.total_cost == Decimal("125.00")
    estimate = await crud.get_cost_estimate(db, appt.id)
    assert estimate.total_cost == Decimal("125.00")
    assert estimate.parts_cost + estimate.labor_cost == estimate.total_cost
    assert estimate.submitted_by == "shop"


async def test_insurer_approval_moves_to_cost_approval(workflow, recorder, priced):
    appt, a = await priced()
    approved = await workflow.insurer_approve_price(appt.id, INSURER)
    assert approved.workflow_stage == "cost_approval"
    assert approved.cost_approved_at is not None
    assert recorder.names()[-1] == "PriceApproved"


async def test_approval_without_estimate_conflicts(workflow, booked):
    appt, offer, a, b = await booked()
    await workflow.shop_respond(offer.id, "accept", shop_actor(a))
    with pytest.raises(ConflictError) as exc:
        await workflow.insurer_approve_price(appt.id, INSURER)
    assert exc.value.reason == "no_price_submitted"


async def test_reject_price_clears_estimate(db, workflow, recorder, priced):
    appt, a = await priced()
    rejected = await workflow.insurer_reject_price(appt.id, INSURER, reason="Too high")

    assert rejected.workflow_stage == "customer_handover"
    assert rejected.total_cost is None
    assert await crud.get_cost_estimate(db, appt.id) is None
    assert recorder.names()[-1] == "PriceRejected"
    # A new offer is accepted afterwards
    resubmitted = await workflow.submit_price(appt.id, shop_actor(a), labor_cost=60, parts_cost=50)
    assert resubmitted.total_cost == Decimal("110.00")


async def test_customer_cost_approval_is_once_only(workflow, recorder, priced):
    appt, a = await priced()
    await workflow.insurer_approve_price(appt.id, INSURER)

    scheduled = await workflow.customer_approve_cost(appt.tracking_token)
    assert scheduled.workflow_stage == "scheduled"
    assert scheduled.job_status == "scheduled"
    assert scheduled.customer_cost_approved is True
    emitted = len(recorder.events)
    appt_id = appt.id
    approved_at = scheduled.customer_cost_approved_at

    with pytest.raises(ConflictError) as exc:
        await workflow.customer_approve_cost(appt.tracking_token)
    assert exc.value.message == "Cost has already been approved"
    after = await workflow.store.get_by_id(appt_id)
    assert after.workflow_stage == "scheduled"
    assert after.customer_cost_approved_at == approved_at
    assert len(recorder.events) == emitted


async def test_cost_approval_before_insurer_review_conflicts(workflow, priced):
    appt, a = await priced()
    with pytest.raises(ConflictError) as exc:
        await workflow.customer_approve_cost(appt.tracking_token)
    assert exc.value.reason == "stage_mismatch"


async def test_price_reset_blocked_after_customer_approval(workflow, priced):
    appt, a = await priced()
    await workflow.insurer_approve_price(appt.id, INSURER)
    await workflow.customer_approve_cost(appt.tracking_token)
    with pytest.raises(ConflictError):
        await workflow.insurer_reset_price(appt.id, INSURER)


# ── Job progress, rescheduling, cancellation ────────────

async def test_job_runs_to_completion(db, workflow, priced):
    appt, a = await priced()
    await workflow.insurer_approve_price(appt.id, INSURER)
    await workflow.customer_approve_cost(appt.tracking_token)

    started = await workflow.job_started(appt.id, shop_actor(a))
    assert started.workflow_stage == "in_progress"
    assert started.job_started_at is not None
    done = await workflow.job_completed(appt.id, shop_actor(a))
    assert done.workflow_stage == "completed"
    assert done.status == "completed"

    history = await crud.list_audit_entries(db, appt.id)
    for entry in history[1:]:
        assert stages.is_legal(entry.old_stage, entry.new_stage), (entry.old_stage, entry.new_stage)


async def test_job_cannot_start_before_scheduled(workflow, priced):
    appt, a = await priced()
    with pytest.raises(ConflictError) as exc:
        await workflow.job_started(appt.id, shop_actor(a))
    assert exc.value.reason == "invalid_status_transition"


async def test_job_completion_requires_in_progress(workflow, priced):
    appt, a = await priced()
    await workflow.insurer_approve_price(appt.id, INSURER)
    await workflow.customer_approve_cost(appt.tracking_token)
    with pytest.raises(ConflictError):
        await workflow.job_completed(appt.id, shop_actor(a))


async def test_other_shop_cannot_progress_job(workflow, priced, make_shop):
    appt, a = await priced()
    stranger = await make_shop("Shop Z")
    with pytest.raises(NotFoundError):
        await workflow.submit_price(appt.id, shop_actor(stranger), labor_cost=1, parts_cost=1)


async def test_reschedule_moves_slot(db, workflow, booked):
    appt, offer, a, b = await booked()
    moved = await workflow.customer_reschedule(appt.tracking_token, "2025-03-11", "14:00:00")

    assert moved.appointment_date == date(2025, 3, 11)
    assert moved.appointment_time == "14:00:00"
    slots = await _slots(db, appt.id)
    assert [(s.date, s.time_slot) for s in slots] == [(date(2025, 3, 11), "14:00:00")]
    assert all(s.is_available for s in await crud.list_slots(db, a.id, date(2025, 3, 10)))


async def test_cancel_releases_slot_and_expires_offers(db, workflow, recorder, booked):
    appt, offer, a, b = await booked()
    cancelled = await workflow.cancel(appt.tracking_token, Actor("customer"), "Fixed it myself")

    assert cancelled.workflow_stage == "cancelled"
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Fixed it myself"
    assert (await workflow.offers.get(offer.id)).status == "expired"
    assert await _slots(db, appt.id) == []
    assert recorder.names()[-1] == "AppointmentCancelled"

    with pytest.raises(ConflictError) as exc:
        await workflow.cancel(appt.id, INSURER)
    assert exc.value.reason == "already_cancelled"


async def test_completed_job_cannot_be_cancelled(workflow, priced):
    appt, a = await priced()
    await workflow.insurer_approve_price(appt.id, INSURER)
    await workflow.customer_approve_cost(appt.tracking_token)
    await workflow.job_started(appt.id, shop_actor(a))
    await workflow.job_completed(appt.id, shop_actor(a))
    with pytest.raises(ConflictError) as exc:
        await workflow.cancel(appt.id, INSURER)
    assert exc.value.reason == "already_completed"


# ── Platform allocation ──────────────────────────────────

async def test_allocation_offers_only_capable_shops(workflow, make_shop, make_appointment):
    adas = await make_shop("Calibrators", adas_calibration_capability=True, service_capability="replacement_only")
    await make_shop("Chip Fixers", service_capability="repair_only")
    await make_shop("No ADAS", service_capability="both")
    appt = await make_appointment(
        service_type="windshield_replacement", damage_type="crack", requires_adas_calibration=True,
    )

    offers = await workflow.allocate_job(appt.id, INSURER)

    assert [o.shop_id for o in offers] == [adas.id]
    assert offers[0].offered_price == Decimal("350.00")
    assert offers[0].source == "allocation"


async def test_allocation_respects_count(workflow, make_shop, make_appointment):
    for i in range(4):
        await make_shop(f"Shop {i}")
    appt = await make_appointment()
    offers = await workflow.allocate_job(appt.id, INSURER, count=2)
    assert len(offers) == 2
    assert all(o.offered_price == Decimal("89.00") for o in offers)


async def test_sweep_expires_stale_offers(db, workflow, make_shop, make_appointment):
    a = await make_shop()
    appt = await make_appointment()
    offer = await workflow.insurer_create_offer(appt.id, a.id, 280, INSURER, ttl_hours=1)
    await db.execute(
        JobOffer.__table__.update()
        .where(JobOffer.id == offer.id)
        .values(expires_at=as_utc(offer.offered_at) - timedelta(minutes=5))
    )
    await db.commit()

    assert await workflow.sweep_expired_offers() == 1
    assert (await workflow.offers.get(offer.id)).status == "expired"


async def test_failed_operation_emits_nothing(workflow, recorder, make_appointment):
    appt = await make_appointment()
    emitted = len(recorder.events)
    with pytest.raises(ConflictError):
        await workflow.insurer_approve_price(appt.id, INSURER)
    assert len(recorder.events) == emitted


# ── Offer expiry ─────────────────────────────────────────

async def _let_offer_lapse(db, offer_id):
    await db.execute(
        JobOffer.__table__.update()
        .where(JobOffer.id == offer_id)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    )
    await db.commit()


async def test_sweep_hands_lapsed_pick_back_to_customer(db, workflow, recorder, booked):
    appt, offer, a, b = await booked()
    appt_id, token, offer_id = appt.id, appt.tracking_token, offer.id
    await _let_offer_lapse(db, offer_id)

    assert await workflow.sweep_expired_offers() == 1

    refreshed = await workflow.store.get_by_id(appt_id)
    assert refreshed.workflow_stage == "shop_selection"
    assert refreshed.shop_id is None
    assert refreshed.customer_shop_selection is None
    assert refreshed.appointment_date is None
    assert await _slots(db, appt_id) == []
    assert [r.shop_id for r in await workflow.selections.get_for_customer(appt_id)] == [b.id]
    assert recorder.names()[-1] == "JobOfferExpired"
    history = await crud.list_audit_entries(db, appt_id)
    assert (history[-1].old_stage, history[-1].new_stage, history[-1].actor) == (
        "awaiting_shop_response", "shop_selection", "system",
    )

    # The customer can move on to the next shop
    result = await workflow.customer_select_shop_and_schedule(token, b.id, DAY, "09:00:00")
    assert result.appointment.workflow_stage == "awaiting_shop_response"
    assert result.appointment.shop_id == b.id


async def test_late_answer_expires_offer_and_frees_slot(db, workflow, booked):
    appt, offer, a, b = await booked()
    appt_id, offer_id = appt.id, offer.id
    await _let_offer_lapse(db, offer_id)

    with pytest.raises(ExpiredOfferError):
        await workflow.shop_respond(offer_id, "accept", shop_actor(a))

    assert (await workflow.offers.get(offer_id)).status == "expired"
    refreshed = await workflow.store.get_by_id(appt_id)
    assert refreshed.workflow_stage == "shop_selection"
    assert refreshed.customer_shop_selection is None
    assert await _slots(db, appt_id) == []

    # Nothing left for the sweeper, and a second answer still reads as expired
    assert await workflow.sweep_expired_offers() == 0
    with pytest.raises(ExpiredOfferError):
        await workflow.shop_respond(offer_id, "accept", shop_actor(a))


async def test_lapsed_routed_offer_leaves_appointment_open(db, workflow, make_shop, make_appointment):
    a = await make_shop()
    appt = await make_appointment()
    appt_id = appt.id
    offer = await workflow.insurer_create_offer(appt_id, a.id, 280, INSURER, ttl_hours=1)
    await _let_offer_lapse(db, offer.id)

    assert await workflow.sweep_expired_offers(appointment_id=appt_id) == 1
    assert (await workflow.store.get_by_id(appt_id)).workflow_stage == "new"
    # The insurer can route the job again
    again = await workflow.insurer_create_offer(appt_id, a.id, 280, INSURER)
    assert again.status == "offered"
