"""Pydantic models for team distribution settings."""

from typing import Optional
from pydantic import BaseModel

from ...storage.models import DistributionMode


class TeamSettingsUpdate(BaseModel):
    actor_id: str
    role: Optional[str] = None
    lead_distribution_mode: DistributionMode
    lead_reservation_minutes: Optional[int] = None
    lead_max_redistribution_attempts: Optional[int] = None
