from decimal import Decimal

import pytest

from glassflow.errors import NotFoundError, TooManyShopsError, ValidationError
from glassflow.services.appointment_store import AppointmentStore
from glassflow.services.selection_registry import SelectionRegistry, ShopPick


async def _appointment(db):
    appt = await AppointmentStore(db).create(
        customer_name="Jane", customer_email="jane@example.com",
        service_type="windshield_repair", damage_type="chip",
    )
    await db.commit()
    return appt


async def test_propose_ranks_in_given_order(db, make_shop):
    a, b = await make_shop("A"), await make_shop("B")
    appt = await _appointment(db)
    registry = SelectionRegistry(db)

    rows = await registry.propose(appt.id, [ShopPick(a.id, Decimal("300")), ShopPick(b.id, Decimal("320"))])
    await db.commit()

    assert [(r.shop_id, r.priority_order) for r in rows] == [(a.id, 1), (b.id, 2)]
    listed = await registry.get_for_customer(appt.id)
    assert [r.estimated_price for r in listed] == [Decimal("300.00"), Decimal("320.00")]


async def test_propose_rejects_more_than_three(db, make_shop):
    shops = [await make_shop(f"S{i}") for i in range(4)]
    appt = await _appointment(db)
    with pytest.raises(TooManyShopsError):
        await SelectionRegistry(db).propose(appt.id, [ShopPick(s.id, Decimal("100")) for s in shops])


async def test_propose_rejects_empty_and_duplicates(db, make_shop):
    a = await make_shop("A")
    appt = await _appointment(db)
    registry = SelectionRegistry(db)
    with pytest.raises(ValidationError):
        await registry.propose(appt.id, [])
    with pytest.raises(ValidationError):
        await registry.propose(appt.id, [ShopPick(a.id, Decimal("1")), ShopPick(a.id, Decimal("2"))])


async def test_propose_rejects_unknown_shop(db):
    appt = await _appointment(db)
    with pytest.raises(NotFoundError):
        await SelectionRegistry(db).propose(appt.id, [ShopPick("01UNKNOWNSHOP0000000000000", Decimal("1"))])


async def test_propose_replaces_existing_shortlist(db, make_shop):
    a, b = await make_shop("A"), await make_shop("B")
    appt = await _appointment(db)
    registry = SelectionRegistry(db)
    await registry.propose(appt.id, [ShopPick(a.id, Decimal("1")), ShopPick(b.id, Decimal("2"))])
    await registry.propose(appt.id, [ShopPick(b.id, Decimal("5"))])
    await db.commit()

    rows = await registry.get_for_customer(appt.id)
    assert [(r.shop_id, r.priority_order) for r in rows] == [(b.id, 1)]


async def test_remove_renumbers_contiguously(db, make_shop):
    a, b, c = await make_shop("A"), await make_shop("B"), await make_shop("C")
    appt = await _appointment(db)
    registry = SelectionRegistry(db)
    await registry.propose(appt.id, [ShopPick(s.id, Decimal("100")) for s in (a, b, c)])
    await db.commit()

    assert await registry.remove(appt.id, a.id) is True
    await db.commit()

    rows = await registry.get_for_customer(appt.id)
    assert [(r.shop_id, r.priority_order) for r in rows] == [(b.id, 1), (c.id, 2)]


async def test_remove_absent_shop_is_noop(db, make_shop):
    a, b = await make_shop("A"), await make_shop("B")
    appt = await _appointment(db)
    registry = SelectionRegistry(db)
    await registry.propose(appt.id, [ShopPick(a.id, Decimal("100"))])
    await db.commit()

    assert await registry.remove(appt.id, b.id) is False
    assert await registry.contains(appt.id, a.id)
