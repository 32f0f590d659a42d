"""Bookable time slots and date/time parsing for customer scheduling."""

from __future__ import annotations

import re
from datetime import date

from glassflow.config import WorkflowConfig
from glassflow.errors import ValidationError

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}:\d{2}$")


def time_slots(config: WorkflowConfig | None = None) -> list[str]:
    """Half-hourly slots from the opening hour through the last bookable hour."""
    config = config or WorkflowConfig()
    slots = []
    for hour in range(config.slot_start_hour, config.slot_end_hour + 1):
        for minute in range(0, 60, config.slot_minutes):
            slots.append(f"{hour:02d}:{minute:02d}:00")
    return slots


def parse_date(value) -> date:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationError("Appointment date must be formatted YYYY-MM-DD", "invalid_date")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("Appointment date is not a valid date", "invalid_date")


def parse_time_slot(value, config: WorkflowConfig | None = None) -> str:
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise ValidationError("Appointment time must be formatted HH:MM:SS", "invalid_time")
    if value not in time_slots(config):
        raise ValidationError("Appointment time is not a bookable slot", "invalid_time_slot")
    return value
