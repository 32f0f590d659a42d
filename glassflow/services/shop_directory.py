"""Shop directory: eligibility, allocation ranking and response metrics."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.models import Shop
from glassflow.models.base import as_utc

logger = logging.getLogger(__name__)

_REPAIR_CAPABLE = ("repair_only", "both")
_REPLACEMENT_CAPABLE = ("replacement_only", "both")


@dataclass
class ResponseMetrics:
    response_time_minutes: float
    acceptance_rate: float
    average_response_minutes: float
    performance_tier: str


def is_repair(service_type: str, damage_type: str) -> bool:
    """Chips are repaired; cracks and shattered glass are replaced unless the service type says repair."""
    if service_type.endswith("_repair"):
        return True
    if service_type.endswith("_replace") or service_type.endswith("_replacement"):
        return False
    return damage_type == "chip"


async def eligible_shops(
    db: AsyncSession, service_type: str, damage_type: str, requires_adas: bool,
) -> list[Shop]:
    capable = _REPAIR_CAPABLE if is_repair(service_type, damage_type) else _REPLACEMENT_CAPABLE
    stmt = select(Shop).where(Shop.service_capability.in_(capable))
    if requires_adas:
        stmt = stmt.where(Shop.adas_calibration_capability == True)  # noqa: E712
    result = await db.execute(stmt)
    return list(result.scalars().all())


def score_shop(shop: Shop, requires_adas: bool = False, now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    tier_bonus = {"premium": 20, "gold": 15}.get(shop.performance_tier, 5)
    score = float(tier_bonus)
    score += (shop.acceptance_rate or 0) * 0.3
    score += max(0.0, 15 - (shop.response_time_minutes or 60) * 0.25)
    score += (shop.quality_score or 3) * 5

    if shop.last_job_offered_at is not None:
        days_since = (now - as_utc(shop.last_job_offered_at)).total_seconds() / 86400
    else:
        days_since = 30
    if days_since < 7 and (shop.acceptance_rate or 0) < 70:
        score *= 0.7

    if requires_adas and shop.adas_calibration_capability:
        score += 25
    return round(score, 2)


def rank_shops(shops: list[Shop], requires_adas: bool = False, now: datetime | None = None) -> list[Shop]:
    return sorted(shops, key=lambda s: (-score_shop(s, requires_adas, now), s.name))


def performance_tier(acceptance_rate: float, avg_response_minutes: float, quality_score: float) -> str:
    if acceptance_rate >= 90 and avg_response_minutes <= 15 and quality_score >= 4.5:
        return "premium"
    if acceptance_rate >= 80 and avg_response_minutes <= 30 and quality_score >= 4.0:
        return "gold"
    return "standard"


def record_offer(shop: Shop, now: datetime | None = None) -> None:
    shop.jobs_offered_count = (shop.jobs_offered_count or 0) + 1
    shop.last_job_offered_at = now or datetime.now(timezone.utc)


def record_response(shop: Shop, accepted: bool, offered_at: datetime, now: datetime | None = None) -> ResponseMetrics:
    """Fold one accept/decline into the shop's running metrics."""
    now = now or datetime.now(timezone.utc)
    response_minutes = max(0.0, (now - as_utc(offered_at)).total_seconds() / 60)

    accepted_count = (shop.jobs_accepted_count or 0) + (1 if accepted else 0)
    declined_count = (shop.jobs_declined_count or 0) + (0 if accepted else 1)
    total = accepted_count + declined_count
    rate = (accepted_count / total) * 100 if total else 0.0

    offered = max(shop.jobs_offered_count or 0, 1)
    avg = ((shop.response_time_minutes or 0) * (offered - 1) + response_minutes) / offered
    tier = performance_tier(rate, avg, shop.quality_score or 0)

    shop.jobs_accepted_count = accepted_count
    shop.jobs_declined_count = declined_count
    shop.acceptance_rate = round(rate, 2)
    shop.response_time_minutes = round(avg, 2)
    shop.performance_tier = tier

    return ResponseMetrics(
        response_time_minutes=round(response_minutes, 2),
        acceptance_rate=round(rate, 2),
        average_response_minutes=round(avg, 2),
        performance_tier=tier,
    )
