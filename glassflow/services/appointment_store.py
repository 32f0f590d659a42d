"""Persistence adapter for appointments.

Reads resolve any of the three customer-visible keys. Writes are conditional:
``update`` only touches the columns it is given and only succeeds when the row
still matches the expected stage and guard values.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.errors import ConflictError, NotFoundError
from glassflow.models import Appointment
from glassflow.services import stages
from glassflow.services.tracking import (
    JOB_CODE_RE, TRACKING_TOKEN_RE, new_short_code, new_tracking_token,
)

logger = logging.getLogger(__name__)

_MAX_CODE_ATTEMPTS = 5


class AppointmentStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Reads ────────────────────────────────────────────

    async def get_by_id(self, appointment_id: str) -> Appointment | None:
        return await self.db.get(Appointment, appointment_id, populate_existing=True)

    async def get_by_token(self, token: str) -> Appointment | None:
        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.tracking_token == token)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get_by_short_code(self, code: str) -> Appointment | None:
        result = await self.db.execute(
            select(Appointment)
            .where(Appointment.short_code == code.upper())
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get(self, key: str) -> Appointment:
        """Resolve an internal id, tracking token or short job code."""
        appointment = None
        if key and TRACKING_TOKEN_RE.match(key):
            appointment = await self.get_by_token(key)
        elif key and JOB_CODE_RE.match(key):
            appointment = await self.get_by_short_code(key)
        if appointment is None and key:
            appointment = await self.get_by_id(key)
        if appointment is None:
            raise NotFoundError("Appointment not found", "appointment_not_found")
        return appointment

    async def list_appointments(
        self,
        stage: str | None = None,
        insurer_name: str | None = None,
        shop_id: str | None = None,
    ) -> list[Appointment]:
        stmt = select(Appointment).order_by(Appointment.created_at.desc())
        if stage:
            stmt = stmt.where(Appointment.workflow_stage == stage)
        if insurer_name:
            stmt = stmt.where(Appointment.insurer_name == insurer_name)
        if shop_id:
            stmt = stmt.where(Appointment.shop_id == shop_id)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    # ── Writes ───────────────────────────────────────────

    async def _unused_short_code(self) -> str:
        for _ in range(_MAX_CODE_ATTEMPTS):
            code = new_short_code()
            if await self.get_by_short_code(code) is None:
                return code
        raise ConflictError("Could not allocate a job code, please retry", "short_code_exhausted")

    async def create(self, **fields) -> Appointment:
        appointment = Appointment(
            tracking_token=new_tracking_token(),
            short_code=await self._unused_short_code(),
            shop_id=None,
            **stages.stage_fields(stages.NEW),
            **fields,
        )
        self.db.add(appointment)
        await self.db.flush()
        return appointment

    async def update(
        self,
        appointment_id: str,
        expected_stage: str | frozenset[str] | None = None,
        guards: dict | None = None,
        conflict: ConflictError | None = None,
        **fields,
    ) -> None:
        """Compare-and-swap write of ``fields``.

        ``expected_stage`` may be one stage or a set of stages. ``guards`` maps
        column names to the value they must still hold (None means IS NULL).
        Raises ``conflict`` (or a generic stale-stage ConflictError) when no
        row matched.
        """
        stmt = update(Appointment).where(Appointment.id == appointment_id)
        if isinstance(expected_stage, str):
            stmt = stmt.where(Appointment.workflow_stage == expected_stage)
        elif expected_stage is not None:
            stmt = stmt.where(Appointment.workflow_stage.in_(sorted(expected_stage)))
        for column, value in (guards or {}).items():
            attr = getattr(Appointment, column)
            stmt = stmt.where(attr.is_(None) if value is None else attr == value)

        fields["updated_at"] = datetime.now(timezone.utc)
        result = await self.db.execute(
            stmt.values(**fields).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("Conditional update lost for appointment %s (expected %s)", appointment_id, expected_stage)
            raise conflict or ConflictError(
                "This appointment was changed by someone else. Please refresh and try again.",
                "stale_stage",
            )
