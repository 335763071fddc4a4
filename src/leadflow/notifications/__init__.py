"""Distribution event notifications."""

from .notifier import (
    notify_lead_reserved,
    notify_lead_accepted,
    notify_lead_released,
    notify_visit_confirmed,
    notify_visit_rejected,
)

__all__ = [
    "notify_lead_reserved",
    "notify_lead_accepted",
    "notify_lead_released",
    "notify_visit_confirmed",
    "notify_visit_rejected",
]
