"""Insurer shortlist bookkeeping: up to N candidate shops per appointment, ranked 1..N."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.errors import NotFoundError, TooManyShopsError, ValidationError
from glassflow.models import Shop, ShopSelection
from glassflow.services.pricing import to_money

logger = logging.getLogger(__name__)

MAX_SELECTIONS = 3


@dataclass
class ShopPick:
    shop_id: str
    estimated_price: Decimal
    distance_km: float | None = None


class SelectionRegistry:
    def __init__(self, db: AsyncSession, max_shops: int = MAX_SELECTIONS):
        self.db = db
        self.max_shops = max_shops

    async def get_for_customer(self, appointment_id: str) -> list[ShopSelection]:
        """Shortlist in priority order, as shown to the customer."""
        result = await self.db.execute(
            select(ShopSelection)
            .where(ShopSelection.appointment_id == appointment_id)
            .order_by(ShopSelection.priority_order)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get(self, appointment_id: str, shop_id: str) -> ShopSelection | None:
        result = await self.db.execute(
            select(ShopSelection).where(
                ShopSelection.appointment_id == appointment_id,
                ShopSelection.shop_id == shop_id,
            )
        )
        return result.scalars().first()

    async def contains(self, appointment_id: str, shop_id: str) -> bool:
        return await self.get(appointment_id, shop_id) is not None

    async def propose(self, appointment_id: str, picks: list[ShopPick]) -> list[ShopSelection]:
        """Replace the shortlist with ``picks``, ranked in the order given."""
        if not picks:
            raise ValidationError("Select at least one shop", "no_shops_selected")
        if len(picks) > self.max_shops:
            raise TooManyShopsError(f"At most {self.max_shops} shops can be selected")
        shop_ids = [p.shop_id for p in picks]
        if len(set(shop_ids)) != len(shop_ids):
            raise ValidationError("The same shop was selected twice", "duplicate_shop")

        result = await self.db.execute(select(Shop.id).where(Shop.id.in_(shop_ids)))
        known = set(result.scalars().all())
        missing = [sid for sid in shop_ids if sid not in known]
        if missing:
            raise NotFoundError(f"Shop not found: {missing[0]}", "shop_not_found")

        await self.db.execute(
            delete(ShopSelection)
            .where(ShopSelection.appointment_id == appointment_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()

        rows = []
        for priority, pick in enumerate(picks, start=1):
            row = ShopSelection(
                appointment_id=appointment_id,
                shop_id=pick.shop_id,
                priority_order=priority,
                estimated_price=to_money(pick.estimated_price, "estimated_price"),
                distance_km=pick.distance_km,
            )
            self.db.add(row)
            rows.append(row)
        await self.db.flush()
        return rows

    async def remove(self, appointment_id: str, shop_id: str) -> bool:
        """Delete one shortlist entry and close the gap in priority_order.

        Removing a shop that is not on the shortlist is a no-op.
        """
        row = await self.get(appointment_id, shop_id)
        if row is None:
            return False

        await self.db.delete(row)
        await self.db.flush()

        # Ascending order: each target priority was vacated by the previous step
        remaining = await self.get_for_customer(appointment_id)
        for priority, sel in enumerate(remaining, start=1):
            if sel.priority_order != priority:
                sel.priority_order = priority
                await self.db.flush()
        logger.info("Removed shop %s from shortlist of %s (%d left)", shop_id, appointment_id, len(remaining))
        return True
