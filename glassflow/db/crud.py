"""CRUD operations for the shop directory, accounts, slots, estimates and audit rows.

Directory and account helpers commit on their own. The helpers used inside a
workflow transition (slots, estimates, audit) only flush; the caller owns the
transaction.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.errors import ConflictError
from glassflow.models import (
    Shop, ShopAvailability, CostEstimate, StatusAuditEntry, User,
)


# ── Shops ─────────────────────────────────────────────────

async def create_shop(db: AsyncSession, name: str, email: str = "", **kwargs) -> Shop:
    shop = Shop(name=name, email=email, **kwargs)
    db.add(shop)
    await db.commit()
    await db.refresh(shop)
    return shop


async def get_shop(db: AsyncSession, shop_id: str) -> Shop | None:
    return await db.get(Shop, shop_id)


async def list_shops(
    db: AsyncSession,
    mobile_service: bool | None = None,
    adas_calibration: bool | None = None,
) -> list[Shop]:
    stmt = select(Shop).order_by(Shop.name)
    if mobile_service is not None:
        stmt = stmt.where(Shop.mobile_service == mobile_service)
    if adas_calibration is not None:
        stmt = stmt.where(Shop.adas_calibration_capability == adas_calibration)
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ── Users ─────────────────────────────────────────────────

async def create_user(
    db: AsyncSession, email: str, password_hash: str, role: str,
    display_name: str = "", shop_id: str | None = None, insurer_name: str = "",
) -> User:
    user = User(
        email=email.strip().lower(), password_hash=password_hash, role=role,
        display_name=display_name, shop_id=shop_id, insurer_name=insurer_name,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalars().first()


# ── Shop availability ────────────────────────────────────

async def list_slots(db: AsyncSession, shop_id: str, day: date) -> list[ShopAvailability]:
    result = await db.execute(
        select(ShopAvailability)
        .where(ShopAvailability.shop_id == shop_id, ShopAvailability.date == day)
        .order_by(ShopAvailability.time_slot)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def book_slot(
    db: AsyncSession, shop_id: str, day: date, time_slot: str, appointment_id: str,
) -> None:
    """Mark a slot as taken by an appointment. Raises ConflictError if someone else holds it."""
    result = await db.execute(
        update(ShopAvailability)
        .where(
            ShopAvailability.shop_id == shop_id,
            ShopAvailability.date == day,
            ShopAvailability.time_slot == time_slot,
            ShopAvailability.is_available == True,  # noqa: E712
        )
        .values(is_available=False, appointment_id=appointment_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    existing = await db.execute(
        select(ShopAvailability).where(
            ShopAvailability.shop_id == shop_id,
            ShopAvailability.date == day,
            ShopAvailability.time_slot == time_slot,
        )
    )
    row = existing.scalars().first()
    if row is not None:
        if row.appointment_id == appointment_id:
            return
        raise ConflictError("Selected time slot is no longer available", "slot_unavailable")

    db.add(ShopAvailability(
        shop_id=shop_id, date=day, time_slot=time_slot,
        is_available=False, appointment_id=appointment_id,
    ))
    try:
        await db.flush()
    except IntegrityError:
        raise ConflictError("Selected time slot is no longer available", "slot_unavailable")


async def release_slot(db: AsyncSession, appointment_id: str) -> int:
    """Free every slot held by an appointment. Returns the number released."""
    result = await db.execute(
        update(ShopAvailability)
        .where(ShopAvailability.appointment_id == appointment_id)
        .values(is_available=True, appointment_id=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ── Cost estimates ───────────────────────────────────────

async def add_cost_estimate(db: AsyncSession, **fields) -> CostEstimate:
    estimate = CostEstimate(**fields)
    db.add(estimate)
    await db.flush()
    return estimate


async def get_cost_estimate(db: AsyncSession, appointment_id: str) -> CostEstimate | None:
    result = await db.execute(
        select(CostEstimate)
        .where(CostEstimate.appointment_id == appointment_id)
        .order_by(CostEstimate.created_at.desc())
    )
    return result.scalars().first()


async def delete_cost_estimates(db: AsyncSession, appointment_id: str) -> int:
    result = await db.execute(
        delete(CostEstimate)
        .where(CostEstimate.appointment_id == appointment_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ── Status audit ─────────────────────────────────────────

async def add_audit_entry(
    db: AsyncSession, appointment_id: str, old_stage: str | None, new_stage: str,
    actor: str, actor_id: str = "", notes: str = "",
) -> StatusAuditEntry:
    entry = StatusAuditEntry(
        appointment_id=appointment_id, old_stage=old_stage, new_stage=new_stage,
        actor=actor, actor_id=actor_id, notes=notes,
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_audit_entries(db: AsyncSession, appointment_id: str) -> list[StatusAuditEntry]:
    result = await db.execute(
        select(StatusAuditEntry)
        .where(StatusAuditEntry.appointment_id == appointment_id)
        .order_by(StatusAuditEntry.created_at, StatusAuditEntry.id)
    )
    return list(result.scalars().all())
