"""JobOffer lifecycle: offered → accepted | declined | expired.

Status changes are conditional updates on ``status = 'offered'`` so two
concurrent responders (or a responder and the sweeper) can never both win.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.errors import (
    AlreadyRespondedError, DuplicateOfferError, ExpiredOfferError,
    NotFoundError, ValidationError,
)
from glassflow.models import JobOffer
from glassflow.models.base import as_utc
from glassflow.services.pricing import to_money

logger = logging.getLogger(__name__)

OFFERED = "offered"
ACCEPTED = "accepted"
DECLINED = "declined"
EXPIRED = "expired"

DECISIONS = {"accept": ACCEPTED, "decline": DECLINED}


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


class OfferLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, offer_id: str) -> JobOffer | None:
        return await self.db.get(JobOffer, offer_id, populate_existing=True)

    async def list_for_appointment(self, appointment_id: str) -> list[JobOffer]:
        result = await self.db.execute(
            select(JobOffer)
            .where(JobOffer.appointment_id == appointment_id)
            .order_by(JobOffer.offered_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_for_shop(
        self, shop_id: str, include_closed: bool = False, now: datetime | None = None,
    ) -> list[JobOffer]:
        stmt = select(JobOffer).where(JobOffer.shop_id == shop_id)
        if not include_closed:
            stmt = stmt.where(JobOffer.status == OFFERED, JobOffer.expires_at >= _now(now))
        result = await self.db.execute(
            stmt.order_by(JobOffer.offered_at.desc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_open(
        self, appointment_id: str, shop_id: str, now: datetime | None = None,
    ) -> JobOffer | None:
        result = await self.db.execute(
            select(JobOffer).where(
                JobOffer.appointment_id == appointment_id,
                JobOffer.shop_id == shop_id,
                JobOffer.status == OFFERED,
                JobOffer.expires_at > _now(now),
            )
        )
        return result.scalars().first()

    async def create_offer(
        self,
        appointment_id: str,
        shop_id: str,
        price,
        ttl: timedelta,
        source: str = "allocation",
        now: datetime | None = None,
    ) -> JobOffer:
        now = _now(now)
        if ttl <= timedelta(0):
            raise ValidationError("Offer lifetime must be positive", "invalid_ttl")
        if await self.find_open(appointment_id, shop_id, now) is not None:
            raise DuplicateOfferError("An open offer already exists for this shop")

        offer = JobOffer(
            appointment_id=appointment_id,
            shop_id=shop_id,
            offered_price=to_money(price, "offered_price"),
            status=OFFERED,
            source=source,
            offered_at=now,
            expires_at=now + ttl,
        )
        self.db.add(offer)
        await self.db.flush()
        logger.info("Offer %s created for shop %s on appointment %s", offer.id, shop_id, appointment_id)
        return offer

    async def respond(
        self,
        offer_id: str,
        decision: str,
        reason: str | None = None,
        counter_offer=None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> JobOffer:
        """Record a shop's answer to an open offer.

        A stale offer is marked expired before ``ExpiredOfferError`` is raised;
        committing that write is up to the caller.
        """
        if decision not in DECISIONS:
            raise ValidationError("Response must be 'accept' or 'decline'", "invalid_response")
        now = _now(now)

        offer = await self.get(offer_id)
        if offer is None:
            raise NotFoundError("Job offer not found", "offer_not_found")
        if offer.status == EXPIRED:
            raise ExpiredOfferError("Job offer has expired")
        if offer.status != OFFERED:
            raise AlreadyRespondedError(f"Job offer is no longer available (status: {offer.status})")
        if await self.expire_if_stale(offer, now):
            logger.info("Offer %s expired on response", offer_id)
            raise ExpiredOfferError("Job offer has expired")

        values = {
            "status": DECISIONS[decision],
            "responded_at": now,
            "decline_reason": reason if decision == "decline" else None,
            "notes": notes,
        }
        if decision == "accept" and counter_offer is not None:
            values["offered_price"] = to_money(counter_offer, "counter_offer")

        result = await self.db.execute(
            update(JobOffer)
            .where(JobOffer.id == offer_id, JobOffer.status == OFFERED)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyRespondedError("Job offer is no longer available")

        return await self.get(offer_id)

    async def expire_if_stale(self, offer: JobOffer, now: datetime | None = None) -> bool:
        """Mark an open offer past its deadline as expired. True if this call expired it."""
        if offer.status != OFFERED or _now(now) < as_utc(offer.expires_at):
            return False
        result = await self.db.execute(
            update(JobOffer)
            .where(JobOffer.id == offer.id, JobOffer.status == OFFERED)
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expire_siblings(self, appointment_id: str, except_offer_id: str) -> int:
        """Expire every other open offer for the appointment. Called right after an accept."""
        result = await self.db.execute(
            update(JobOffer)
            .where(
                JobOffer.appointment_id == appointment_id,
                JobOffer.id != except_offer_id,
                JobOffer.status == OFFERED,
            )
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def expire_open_for_appointment(self, appointment_id: str) -> int:
        result = await self.db.execute(
            update(JobOffer)
            .where(JobOffer.appointment_id == appointment_id, JobOffer.status == OFFERED)
            .values(status=EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def sweep_expired(
        self,
        now: datetime | None = None,
        shop_id: str | None = None,
        appointment_id: str | None = None,
    ) -> list[JobOffer]:
        """Expire open offers past their deadline and return the ones this call expired.

        Each row is flipped with its own conditional update, so a concurrent
        responder or sweeper never sees the same offer expire twice.
        """
        now = _now(now)
        stmt = select(JobOffer).where(JobOffer.status == OFFERED, JobOffer.expires_at < now)
        if shop_id:
            stmt = stmt.where(JobOffer.shop_id == shop_id)
        if appointment_id:
            stmt = stmt.where(JobOffer.appointment_id == appointment_id)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))

        expired = [o for o in result.scalars().all() if await self.expire_if_stale(o, now)]
        if expired:
            logger.info("Expired %d stale job offers", len(expired))
        return expired
