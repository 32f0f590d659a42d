"""SQLAlchemy ORM models."""

from glassflow.models.base import Base
from glassflow.models.shop import Shop
from glassflow.models.appointment import Appointment
from glassflow.models.shop_selection import ShopSelection
from glassflow.models.job_offer import JobOffer
from glassflow.models.cost_estimate import CostEstimate
from glassflow.models.shop_availability import ShopAvailability
from glassflow.models.status_audit import StatusAuditEntry
from glassflow.models.auth_models import User, UserSession

__all__ = [
    "Base", "Shop", "Appointment", "ShopSelection", "JobOffer",
    "CostEstimate", "ShopAvailability", "StatusAuditEntry",
    "User", "UserSession",
]
