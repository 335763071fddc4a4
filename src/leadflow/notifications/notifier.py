"""Realtime notifications for lead distribution events.

Events are posted as JSON to a webhook (a realtime gateway, Slack relay,
etc). Delivery is best-effort: failures are logged and never raised.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

MURAL_CHANNEL = "mural"


def realtor_channel(realtor_id: str) -> str:
    return f"realtor-{realtor_id}"


class NotificationConfig:
    def __init__(self):
        self.enabled = os.getenv("LEADFLOW_NOTIFICATIONS_ENABLED", "false").lower() == "true"
        self.webhook_url = os.getenv("LEADFLOW_WEBHOOK_URL")
        self.timeout = float(os.getenv("LEADFLOW_WEBHOOK_TIMEOUT", "5"))


_config = None


def _get_config() -> NotificationConfig:
    global _config
    if _config is None:
        _config = NotificationConfig()
    return _config


def reset_config():
    """Drop the cached config so the next send re-reads the environment."""
    global _config
    _config = None


def notify_lead_reserved(lead_id: str, realtor_id: str, reserved_until: datetime):
    """Tell a realtor a lead is waiting for them."""
    _send(realtor_channel(realtor_id), "lead_reserved", {
        "lead_id": lead_id,
        "reserved_until": reserved_until.isoformat(),
    })


def notify_lead_accepted(lead_id: str, realtor_id: str, points_earned: int, response_time: int):
    """Tell the realtor their accept counted, and the mural that the lead is gone."""
    _send(realtor_channel(realtor_id), "lead_accepted", {
        "lead_id": lead_id,
        "points_earned": points_earned,
        "response_time": response_time,
    })
    _send(MURAL_CHANNEL, "lead_accepted", {"lead_id": lead_id, "realtor_id": realtor_id})


def notify_lead_released(lead_id: str, previous_realtor_id: Optional[str], reason: str):
    """Tell the mural a lead is open for candidates."""
    _send(MURAL_CHANNEL, "lead_released", {
        "lead_id": lead_id,
        "previous_realtor_id": previous_realtor_id,
        "reason": reason,
    })


def notify_visit_confirmed(lead_id: str, realtor_id: str, visit_date: Optional[str], visit_time: Optional[str]):
    _send(realtor_channel(realtor_id), "visit_confirmed", {
        "lead_id": lead_id,
        "visit_date": visit_date,
        "visit_time": visit_time,
    })


def notify_visit_rejected(lead_id: str, realtor_id: str, reason: Optional[str]):
    _send(realtor_channel(realtor_id), "visit_rejected_by_owner", {
        "lead_id": lead_id,
        "reason": reason,
    })


def _send(channel: str, event_type: str, data: dict):
    config = _get_config()
    if not config.enabled or not config.webhook_url:
        return

    import requests

    payload = {
        "channel": channel,
        "event_type": event_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }

    try:
        response = requests.post(config.webhook_url, json=payload, timeout=config.timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Webhook failed for {event_type} on {channel}: {e}")
