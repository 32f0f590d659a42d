"""Job workflow engine.

Owns every stage transition of an appointment. Each operation checks its
precondition, performs the writes inside one transaction, guards the
appointment row with a compare-and-swap on the stage it expects, records an
audit row, and hands the resulting events to the notification dispatcher
only after the commit succeeded.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.config import WorkflowConfig, get_settings
from glassflow.db import crud
from glassflow.errors import (
    ConflictError, ExpiredOfferError, InternalError, NotFoundError, ValidationError, WorkflowError,
)
from glassflow.models import Appointment, JobOffer, Shop, ShopSelection
from glassflow.services import stages
from glassflow.services.appointment_store import AppointmentStore
from glassflow.services.notifications import NotificationDispatcher, WorkflowEvent, dispatcher as default_dispatcher
from glassflow.services.offer_ledger import OfferLedger
from glassflow.services.pricing import build_cost_breakdown, to_money
from glassflow.services.scheduling import parse_date, parse_time_slot
from glassflow.services.selection_registry import SelectionRegistry, ShopPick
from glassflow.services.shop_directory import (
    ResponseMetrics, eligible_shops, is_repair, rank_shops, record_offer, record_response,
)
from glassflow.services.tracking import validate_tracking_token

logger = logging.getLogger(__name__)

# Base prices used when the platform routes a job without an insurer estimate
_REPAIR_BASE_PRICE = Decimal("89.00")
_REPLACEMENT_BASE_PRICE = Decimal("350.00")


@dataclass
class Actor:
    kind: str  # customer | insurer | shop | system
    id: str = ""


CUSTOMER = Actor("customer")
SYSTEM = Actor("system")


@dataclass
class ShopResponse:
    offer: JobOffer
    appointment: Appointment
    metrics: ResponseMetrics


@dataclass
class SelectionResult:
    appointment: Appointment
    offer: JobOffer


@dataclass
class _Pending:
    events: list[WorkflowEvent] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowEngine:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        config: WorkflowConfig | None = None,
    ):
        self.db = db
        self.config = config or get_settings().workflow
        self.store = AppointmentStore(db)
        self.selections = SelectionRegistry(db, max_shops=self.config.max_shop_selections)
        self.offers = OfferLedger(db)
        self.dispatcher = dispatcher or default_dispatcher
        self._pending = _Pending()

    # ── Plumbing ─────────────────────────────────────────

    @asynccontextmanager
    async def _transaction(self):
        """Commit everything or nothing; release queued events only after commit."""
        try:
            yield
            await self.db.commit()
        except WorkflowError as exc:
            await self.db.rollback()
            self._pending.events.clear()
            logger.info("Workflow operation rejected (%s): %s", exc.reason, exc.message)
            raise
        except SQLAlchemyError as exc:
            await self.db.rollback()
            self._pending.events.clear()
            logger.exception("Persistence failure during workflow transition")
            raise InternalError("Failed to save changes. Please try again.") from exc

        events, self._pending.events = self._pending.events, []
        for event in events:
            self.dispatcher.emit(event)

    async def _transition(
        self,
        appointment: Appointment,
        new_stage: str,
        actor: Actor,
        guards: dict | None = None,
        conflict: ConflictError | None = None,
        notes: str = "",
        **fields,
    ) -> None:
        old_stage = appointment.workflow_stage
        if not stages.is_legal(old_stage, new_stage):
            raise ConflictError(
                f"Cannot move this appointment from {old_stage} to {new_stage}",
                "illegal_transition",
            )
        await self.store.update(
            appointment.id,
            expected_stage=old_stage,
            guards=guards,
            conflict=conflict,
            **stages.stage_fields(new_stage),
            **fields,
        )
        await crud.add_audit_entry(
            self.db, appointment.id, old_stage, new_stage,
            actor=actor.kind, actor_id=actor.id, notes=notes,
        )
        logger.info("Appointment %s: %s -> %s by %s", appointment.id, old_stage, new_stage, actor.kind)

    def _queue(self, name: str, appointment: Appointment, stage: str, shop: Shop | None = None, **data) -> None:
        payload = {
            "short_code": appointment.short_code,
            "_customer_email": appointment.customer_email,
            "_tracking_token": appointment.tracking_token,
            **data,
        }
        if shop is not None:
            payload["shop_id"] = shop.id
            payload["shop_name"] = shop.name
            payload["_shop_email"] = shop.email
        self._pending.events.append(WorkflowEvent(name, appointment.id, stage, payload))

    async def _shop(self, shop_id: str | None) -> Shop | None:
        return await crud.get_shop(self.db, shop_id) if shop_id else None

    async def _require_assigned_shop(self, appointment: Appointment, actor: Actor) -> None:
        if actor.kind == "shop" and appointment.shop_id != actor.id:
            raise NotFoundError("Appointment not found or access denied", "appointment_not_found")

    # ── Customer: damage report ──────────────────────────

    async def submit_damage_report(self, **fields) -> Appointment:
        async with self._transaction():
            appointment = await self.store.create(**fields)
            await crud.add_audit_entry(
                self.db, appointment.id, None, stages.NEW, actor="customer",
                notes="Damage report submitted",
            )
            self._queue("DamageReportSubmitted", appointment, stages.NEW)
        logger.info("Damage report %s submitted (code %s)", appointment.id, appointment.short_code)
        return await self.store.get_by_id(appointment.id)

    # ── Insurer: shortlist ───────────────────────────────

    async def insurer_select_shops(
        self, appointment_id: str, picks: list[ShopPick], actor: Actor,
    ) -> list[ShopSelection]:
        async with self._transaction():
            appointment = await self.store.get(appointment_id)
            if appointment.workflow_stage == stages.SHOP_SELECTION:
                raise ConflictError("Shops have already been selected for this appointment", "shops_already_selected")
            if appointment.workflow_stage != stages.NEW:
                raise ConflictError("Shop selection is only possible for new appointments", "stage_mismatch")

            rows = await self.selections.propose(appointment.id, picks)
            # Platform-routed offers are superseded by the insurer's shortlist
            await self.offers.expire_open_for_appointment(appointment.id)
            await self._transition(
                appointment, stages.SHOP_SELECTION, actor,
                shop_selected_at=_now(),
                notes=f"{len(rows)} shop(s) proposed",
            )
            self._queue(
                "ShopSelectionCreated", appointment, stages.SHOP_SELECTION,
                shops=[{"shop_id": r.shop_id, "priority_order": r.priority_order} for r in rows],
            )
        return await self.selections.get_for_customer(appointment.id)

    async def insurer_remove_shop(self, appointment_id: str, shop_id: str, actor: Actor) -> list[ShopSelection]:
        async with self._transaction():
            appointment = await self.store.get(appointment_id)
            if appointment.customer_shop_selection:
                raise ConflictError("Shop has already been selected", "shop_already_selected")
            if appointment.workflow_stage != stages.SHOP_SELECTION:
                raise ConflictError("The shortlist can no longer be edited", "stage_mismatch")

            removed = await self.selections.remove(appointment.id, shop_id)
            if removed:
                remaining = await self.selections.get_for_customer(appointment.id)
                guard = {"customer_shop_selection": None}
                if remaining:
                    await self.store.update(appointment.id, expected_stage=stages.SHOP_SELECTION, guards=guard)
                else:
                    await self._transition(
                        appointment, stages.NEW, actor, guards=guard,
                        shop_selected_at=None, notes="Last shortlisted shop removed",
                    )
        return await self.selections.get_for_customer(appointment.id)

    # ── Customer: pick shop and time ─────────────────────

    async def customer_select_shop_and_schedule(
        self, tracking_token, shop_id, appointment_date, appointment_time,
    ) -> SelectionResult:
        token = validate_tracking_token(tracking_token)
        if not shop_id or not isinstance(shop_id, str):
            raise ValidationError("Shop ID is required for shop selection", "missing_shop_id")
        day = parse_date(appointment_date)
        slot = parse_time_slot(appointment_time, self.config)

        async with self._transaction():
            appointment = await self.store.get_by_token(token)
            if appointment is None:
                raise NotFoundError("Appointment not found", "appointment_not_found")
            if appointment.customer_shop_selection:
                raise ConflictError("Shop has already been selected", "shop_already_selected")
            if appointment.workflow_stage != stages.SHOP_SELECTION:
                raise ConflictError("Shop selection is not available for this appointment", "stage_mismatch")

            selection = await self.selections.get(appointment.id, shop_id)
            if selection is None:
                raise ValidationError("Selected shop is not one of the available options", "shop_not_in_selection")
            shop = await self._shop(shop_id)
            if shop is None:
                raise NotFoundError("Shop not found", "shop_not_found")

            now = _now()
            await self._transition(
                appointment, stages.AWAITING_SHOP_RESPONSE, CUSTOMER,
                guards={"customer_shop_selection": None},
                conflict=ConflictError("Shop has already been selected", "shop_already_selected"),
                shop_id=shop.id,
                shop_name=shop.name,
                appointment_date=day,
                appointment_time=slot,
                customer_shop_selection=shop.id,
                customer_shop_selected_at=now,
                customer_confirmed_at=now,
                notes=f"Customer selected {shop.name}",
            )
            offer = await self.offers.create_offer(
                appointment.id, shop.id, selection.estimated_price,
                ttl=timedelta(hours=self.config.offer_ttl_hours),
                source="selection", now=now,
            )
            record_offer(shop, now)
            await crud.book_slot(self.db, shop.id, day, slot, appointment.id)
            self._queue(
                "CustomerShopSelected", appointment, stages.AWAITING_SHOP_RESPONSE, shop=shop,
                job_offer_id=offer.id, appointment_date=day.isoformat(), appointment_time=slot,
            )

        return SelectionResult(
            appointment=await self.store.get_by_id(appointment.id),
            offer=await self.offers.get(offer.id),
        )

    async def customer_reschedule(self, tracking_token, appointment_date, appointment_time) -> Appointment:
        token = validate_tracking_token(tracking_token)
        day = parse_date(appointment_date)
        slot = parse_time_slot(appointment_time, self.config)

        async with self._transaction():
            appointment = await self.store.get_by_token(token)
            if appointment is None:
                raise NotFoundError("Appointment not found", "appointment_not_found")
            if appointment.workflow_stage not in stages.RESCHEDULE_STAGES or not appointment.shop_id:
                raise ConflictError("Rescheduling is not available for this appointment", "stage_mismatch")

            await crud.release_slot(self.db, appointment.id)
            await crud.book_slot(self.db, appointment.shop_id, day, slot, appointment.id)
            await self.store.update(
                appointment.id, expected_stage=appointment.workflow_stage,
                appointment_date=day, appointment_time=slot,
            )
            self._queue(
                "AppointmentRescheduled", appointment, appointment.workflow_stage,
                shop=await self._shop(appointment.shop_id),
                appointment_date=day.isoformat(), appointment_time=slot,
            )
        return await self.store.get_by_id(appointment.id)

    # ── Platform routing ─────────────────────────────────

    async def insurer_create_offer(
        self, appointment_id: str, shop_id: str, price, actor: Actor, ttl_hours: int | None = None,
    ) -> JobOffer:
        async with self._transaction():
            appointment = await self.store.get(appointment_id)
            if appointment.workflow_stage != stages.NEW:
                raise ConflictError("Offers can only be routed for new appointments", "stage_mismatch")
            shop = await self._shop(shop_id)
            if shop is None:
                raise NotFoundError("Shop not found", "shop_not_found")

            offer = await self.offers.create_offer(
                appointment.id, shop.id, price,
                ttl=timedelta(hours=ttl_hours or self.config.offer_ttl_hours),
                source="allocation",
            )
            record_offer(shop)
            await self.store.update(appointment.id, expected_stage=stages.NEW)
            self._queue("JobOfferCreated", appointment, stages.NEW, shop=shop, job_offer_id=offer.id)
        return await self.offers.get(offer.id)

    async def allocate_job(self, appointment_id: str, actor: Actor, count: int | None = None) -> list[JobOffer]:
        """Offer a new job to the best-ranked eligible shops."""
        count = count or self.config.allocation_offer_count
        async with self._transaction():
            appointment = await self.store.get(appointment_id)
            if appointment.workflow_stage != stages.NEW:
                raise ConflictError("Offers can only be routed for new appointments", "stage_mismatch")

            candidates = await eligible_shops(
                self.db, appointment.service_type, appointment.damage_type,
                appointment.requires_adas_calibration,
            )
            price = _REPAIR_BASE_PRICE if is_repair(appointment.service_type, appointment.damage_type) else _REPLACEMENT_BASE_PRICE
            created = []
            for shop in rank_shops(candidates, appointment.requires_adas_calibration):
                if len(created) >= count:
                    break
                if await self.offers.find_open(appointment.id, shop.id) is not None:
                    continue
                offer = await self.offers.create_offer(
                    appointment.id, shop.id, price,
                    ttl=timedelta(hours=self.config.offer_ttl_hours),
                    source="allocation",
                )
                record_offer(shop)
                created.append(offer)
                self._queue("JobOfferCreated", appointment, stages.NEW, shop=shop, job_offer_id=offer.id)
            if created:
                await self.store.update(appointment.id, expected_stage=stages.NEW)
            logger.info("Allocated appointment %s to %d shop(s)", appointment.id, len(created))
        return [await self.offers.get(o.id) for o in created]

    # ── Shop: respond to offer ───────────────────────────

    async def shop_respond(
        self,
        offer_id: str,
        decision: str,
        actor: Actor,
        reason: str | None = None,
        counter_offer=None,
        notes: str | None = None,
    ) -> ShopResponse:
        async with self._transaction():
            offer = await self.offers.get(offer_id)
            if offer is None or (actor.kind == "shop" and offer.shop_id != actor.id):
                raise NotFoundError("Job offer not found or access denied", "offer_not_found")
            appointment = await self.store.get_by_id(offer.appointment_id)
            shop = await self._shop(offer.shop_id)

            # A late answer still commits the expiry and its release
            expired = await self.offers.expire_if_stale(offer)
            if expired:
                await self._offer_expired(offer)
            else:
                offer = await self.offers.respond(
                    offer.id, decision, reason=reason, counter_offer=counter_offer, notes=notes,
                )
                now = _now()
                metrics = record_response(shop, decision == "accept", offer.offered_at, now)

                if decision == "accept":
                    await self._accept(appointment, offer, shop, actor)
                else:
                    await self._decline(appointment, offer, shop, actor, reason)

        if expired:
            logger.info("Offer %s expired before %s answered", offer.id, shop.name)
            raise ExpiredOfferError("Job offer has expired")
        return ShopResponse(
            offer=await self.offers.get(offer.id),
            appointment=await self.store.get_by_id(appointment.id),
            metrics=metrics,
        )

    async def _accept(self, appointment: Appointment, offer: JobOffer, shop: Shop, actor: Actor) -> None:
        if offer.source == "selection":
            expected, target = stages.AWAITING_SHOP_RESPONSE, stages.DAMAGE_REPORT
        else:
            expected, target = stages.NEW, stages.CUSTOMER_HANDOVER
        if appointment.workflow_stage != expected:
            raise ConflictError("This job is no longer available", "stage_mismatch")

        expired = await self.offers.expire_siblings(appointment.id, offer.id)
        await self._transition(
            appointment, target, actor,
            shop_id=shop.id,
            shop_name=shop.name,
            total_cost=offer.offered_price,
            notes=f"Offer accepted by {shop.name} for {offer.offered_price}",
        )
        logger.info("Offer %s accepted; %d sibling offer(s) expired", offer.id, expired)
        self._queue(
            "JobOfferAccepted", appointment, target, shop=shop,
            job_offer_id=offer.id, total_cost=str(offer.offered_price),
        )

    async def _decline(
        self, appointment: Appointment, offer: JobOffer, shop: Shop, actor: Actor, reason: str | None,
    ) -> None:
        stage = appointment.workflow_stage
        if self._holds_selection(appointment, offer):
            stage = await self._return_to_shortlist(
                appointment, shop, actor, notes=f"Declined by {shop.name}: {reason or 'Not specified'}",
            )
            self._queue("JobOfferDeclined", appointment, stage, shop=shop, job_offer_id=offer.id)
        else:
            # Platform-routed: the appointment stays open for re-routing
            self._pending.events.append(WorkflowEvent(
                "JobOfferDeclined", appointment.id, stage,
                {"short_code": appointment.short_code, "shop_id": shop.id, "job_offer_id": offer.id},
            ))
        logger.info("Offer %s declined by %s. Reason: %s", offer.id, shop.name, reason or "Not specified")

    @staticmethod
    def _holds_selection(appointment: Appointment | None, offer: JobOffer) -> bool:
        """True while the customer's pick is still waiting on this selection offer."""
        return (
            appointment is not None
            and offer.source == "selection"
            and appointment.workflow_stage == stages.AWAITING_SHOP_RESPONSE
            and appointment.shop_id == offer.shop_id
        )

    async def _return_to_shortlist(self, appointment: Appointment, shop: Shop, actor: Actor, notes: str) -> str:
        """Drop the shop from the shortlist, free its slot and let the customer pick again."""
        await self.selections.remove(appointment.id, shop.id)
        await crud.release_slot(self.db, appointment.id)
        remaining = await self.selections.get_for_customer(appointment.id)
        stage = stages.SHOP_SELECTION if remaining else stages.NEW
        await self._transition(
            appointment, stage, actor,
            shop_id=None,
            shop_name="",
            appointment_date=None,
            appointment_time=None,
            customer_shop_selection=None,
            customer_shop_selected_at=None,
            customer_confirmed_at=None,
            notes=notes,
        )
        return stage

    async def _offer_expired(self, offer: JobOffer) -> None:
        """Unblock the appointment after an offer ran out without an answer."""
        appointment = await self.store.get_by_id(offer.appointment_id)
        if not self._holds_selection(appointment, offer):
            return
        shop = await self._shop(offer.shop_id)
        stage = await self._return_to_shortlist(
            appointment, shop, SYSTEM, notes=f"Offer to {shop.name} expired without a response",
        )
        self._queue("JobOfferExpired", appointment, stage, shop=shop, job_offer_id=offer.id)

    # ── Pricing ──────────────────────────────────────────

    async def submit_price(
        self,
        appointment_id: str,
        actor: Actor,
        labor_cost,
        parts_cost=None,
        line_items: list[dict] | None = None,
        total_cost=None,
        notes: str = "",
    ) -> Appointment:
        breakdown = build_cost_breakdown(line_items, labor_cost, parts_cost, total_cost)
        already = ConflictError("Price has already been submitted", "price_already_submitted")

        async with self._transaction():
            appointment = await self.store.get(appointment_id)
            await self._require_assigned_shop(appointment, actor)
            if appointment.workflow_stage not in stages.PRICE_SUBMISSION_STAGES:
                raise ConflictError("Price offers are not accepted at this stage", "stage_mismatch")
            if appointment.total_cost is not None:
                raise already

            await self.store.update(
                appointment.id,
                expected_stage=stages.PRICE_SUBMISSION_STAGES,
                guards={"total_cost": None},
                conflict=already,
                total_cost=breakdown.total_cost,
                price_submitted_at=_now(),
            )
            await crud.add_cost_estimate(
                self.db,
                appointment_id=appointment.id,
                line_items=breakdown.line_items_json(),
                labor_cost=breakdown.labor_cost,
                parts_cost=breakdown.parts_cost,
                total_cost=breakdown.total_cost,
                notes=notes or "",
                submitted_by="insurer" if actor.kind == "insurer" else "shop",
            )
            self._queue(
                "PriceSubmitted", appointment, appointment.workflow_stage,
                total_cost=str(breakdown.total_cost), submitted_by=actor.kind,
            )
        logger.info("Price %s submitted for appointment %s by %s", breakdown.total_cost, appointment.id, actor.kind)
        return await self.store.get_by_id(appointment.id)

    async def _price_under_review(self, appointment_id: str):
        appointment = await self.store.get(appointment_id)
        if appointment.workflow_stage == stages.COST_APPROVAL:
            raise ConflictError("Price has already been approved", "price_already_approved")
        if appointment.workflow_stage not in stages.PRICE_REVIEW_STAGES:
            raise ConflictError("Price review is not available at this stage", "stage_mismatch")
        estimate = await crud.get_cost_estimate(self.db, appointment.id)
        if estimate is None:
            raise ConflictError("No price offer has been submitted yet", "no_price_submitted")
        return appointment, estimate

    async def insurer_approve_price(self, appointment_id: str, actor: Actor) -> Appointment:
        async with self._transaction():
            appointment, estimate = await self._price_under_review(appointment_id)
            await self._transition(
                appointment, stages.COST_APPROVAL, actor,
                total_cost=estimate.total_cost,
                cost_approved_at=_now(),
                notes=f"Price {estimate.total_cost} approved",
            )
            self._queue("PriceApproved", appointment, stages.COST_APPROVAL, total_cost=str(estimate.total_cost))
        return await self.store.get_by_id(appointment.id)

    async def insurer_reject_price(self, appointment_id: str, actor: Actor, reason: str = "") -> Appointment:
        async with self._transaction():
            appointment, _ = await self._price_under_review(appointment_id)
            await self._clear_price(appointment, actor, notes=f"Price rejected. {reason}".strip())
            self._queue(
                "PriceRejected", appointment, stages.CUSTOMER_HANDOVER,
                shop=await self._shop(appointment.shop_id), reason=reason,
            )
        return await self.store.get_by_id(appointment.id)

    async def insurer_reset_price(self, appointment_id: str, actor: Actor) -> Appointment:
        """Clear the price so the shop can submit a new offer."""
        async with self._transaction():
            appointment = await self.store.get(appointment_id)
            if appointment.customer_cost_approved:
                raise ConflictError("Cost has already been approved", "cost_already_approved")
            if appointment.workflow_stage not in stages.PRICE_RESET_STAGES:
                raise ConflictError("The price can not be reset at this stage", "stage_mismatch")
            await self._clear_price(appointment, actor, notes="Price reset")
            self._queue(
                "PriceReset", appointment, stages.CUSTOMER_HANDOVER,
                shop=await self._shop(appointment.shop_id),
            )
        return await self.store.get_by_id(appointment.id)

    async def _clear_price(self, appointment: Appointment, actor: Actor, notes: str) -> None:
        await crud.delete_cost_estimates(self.db, appointment.id)
        cleared = {"total_cost": None, "price_submitted_at": None, "cost_approved_at": None}
        guards = {"customer_cost_approved": False}
        if appointment.workflow_stage == stages.CUSTOMER_HANDOVER:
            await self.store.update(
                appointment.id, expected_stage=stages.CUSTOMER_HANDOVER, guards=guards, **cleared,
            )
        else:
            await self._transition(
                appointment, stages.CUSTOMER_HANDOVER, actor, guards=guards, notes=notes, **cleared,
            )

    # ── Customer: cost approval ──────────────────────────

    async def customer_approve_cost(self, tracking_token) -> Appointment:
        token = validate_tracking_token(tracking_token)
        already = ConflictError("Cost has already been approved", "cost_already_approved")

        async with self._transaction():
            appointment = await self.store.get_by_token(token)
            if appointment is None:
                raise NotFoundError("Appointment not found", "appointment_not_found")
            if appointment.customer_cost_approved:
                raise already
            if appointment.workflow_stage != stages.COST_APPROVAL:
                raise ConflictError("Cost approval is not available for this appointment", "stage_mismatch")
            if await crud.get_cost_estimate(self.db, appointment.id) is None:
                raise ConflictError("No cost estimate found for this appointment", "no_cost_estimate")

            now = _now()
            await self._transition(
                appointment, stages.SCHEDULED, CUSTOMER,
                guards={"customer_cost_approved": False},
                conflict=already,
                customer_cost_approved=True,
                customer_cost_approved_at=now,
                notes="Customer approved the cost",
            )
            self._queue("CostApproved", appointment, stages.SCHEDULED, shop=await self._shop(appointment.shop_id))
        return await self.store.get_by_id(appointment.id)

    # ── Shop: job progress ───────────────────────────────

    async def job_started(
        self, appointment_id: str, actor: Actor, estimated_completion: datetime | None = None, notes: str = "",
    ) -> Appointment:
        async with self._transaction():
            appointment = await self.store.get(appointment_id)
            await self._require_assigned_shop(appointment, actor)
            if appointment.job_status != "scheduled":
                raise ConflictError(
                    f"Invalid status transition from {appointment.job_status or appointment.workflow_stage} to in_progress",
                    "invalid_status_transition",
                )
            await self._transition(
                appointment, stages.IN_PROGRESS, actor,
                job_started_at=_now(),
                estimated_completion=estimated_completion,
                notes=notes,
            )
            self._queue("JobStarted", appointment, stages.IN_PROGRESS)
        return await self.store.get_by_id(appointment.id)

    async def job_completed(self, appointment_id: str, actor: Actor, notes: str = "") -> Appointment:
        async with self._transaction():
            appointment = await self.store.get(appointment_id)
            await self._require_assigned_shop(appointment, actor)
            if appointment.job_status != "in_progress":
                raise ConflictError(
                    f"Invalid status transition from {appointment.job_status or appointment.workflow_stage} to completed",
                    "invalid_status_transition",
                )
            await self._transition(
                appointment, stages.COMPLETED, actor, job_completed_at=_now(), notes=notes,
            )
            self._queue("JobCompleted", appointment, stages.COMPLETED)
        return await self.store.get_by_id(appointment.id)

    # ── Cancellation ─────────────────────────────────────

    async def cancel(self, appointment_key: str, actor: Actor, reason: str = "") -> Appointment:
        async with self._transaction():
            appointment = await self.store.get(appointment_key)
            await self._require_assigned_shop(appointment, actor)
            if appointment.workflow_stage == stages.COMPLETED:
                raise ConflictError("Completed jobs can not be cancelled", "already_completed")
            if appointment.workflow_stage == stages.CANCELLED:
                raise ConflictError("Appointment is already cancelled", "already_cancelled")

            await self._transition(
                appointment, stages.CANCELLED, actor,
                cancelled_at=_now(),
                cancellation_reason=reason or "",
                notes=f"Cancelled by {actor.kind}. Reason: {reason or 'Not specified'}",
            )
            released = await crud.release_slot(self.db, appointment.id)
            expired = await self.offers.expire_open_for_appointment(appointment.id)
            logger.info("Appointment %s cancelled (%d slot(s) released, %d offer(s) expired)", appointment.id, released, expired)
            self._queue(
                "AppointmentCancelled", appointment, stages.CANCELLED,
                shop=await self._shop(appointment.shop_id), reason=reason,
            )
        return await self.store.get_by_id(appointment.id)

    # ── Maintenance ──────────────────────────────────────

    async def sweep_expired_offers(self, appointment_id: str | None = None, shop_id: str | None = None) -> int:
        """Expire stale offers and hand waiting customers back their shortlist."""
        async with self._transaction():
            expired = await self.offers.sweep_expired(shop_id=shop_id, appointment_id=appointment_id)
            for offer in expired:
                await self._offer_expired(offer)
        return len(expired)


def picks_from_payload(shops: list[dict]) -> list[ShopPick]:
    """Build ShopPick rows from request dicts (shop_id, estimated_price, distance_km)."""
    picks = []
    for item in shops:
        picks.append(ShopPick(
            shop_id=item["shop_id"],
            estimated_price=to_money(item["estimated_price"], "estimated_price"),
            distance_km=item.get("distance_km"),
        ))
    return picks
