"""Configurable distribution timings, limits and score rewards."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


# Score actions written to score_history
ACCEPT_LEAD_FAST = "ACCEPT_LEAD_FAST"
REJECT_LEAD = "REJECT_LEAD"
RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
LEAD_EXPIRED = "LEAD_EXPIRED"
COMPLETE_LEAD = "COMPLETE_LEAD"
ADMIN_MANUAL_SCORE_ADJUST = "ADMIN_MANUAL_SCORE_ADJUST"

DEFAULT_POINTS = {
    ACCEPT_LEAD_FAST: 5,
    REJECT_LEAD: -5,
    RESERVATION_EXPIRED: -8,
    LEAD_EXPIRED: -10,
    COMPLETE_LEAD: 10,
}

# Star rating -> score delta
DEFAULT_RATING_POINTS = {5: 15, 4: 10, 3: 5, 2: 0, 1: -5}


@dataclass
class DistributionConfig:
    """Timings, limits and rewards for lead distribution."""

    # Reservation window a realtor has to accept a lead
    reservation_minutes: int = 10
    # Accepting faster than this earns ACCEPT_LEAD_FAST
    fast_response_minutes: int = 5

    # A realtor with this many active leads is skipped by the queue
    max_active_leads: int = 1
    # How many times a released lead is pushed to another realtor before it goes to the mural
    max_redistribution_attempts: int = 3
    # Accepted leads with no conclusion after this long expire
    accepted_lead_ttl_hours: int = 24
    # Score history and expired leads older than this are purged
    retention_days: int = 30
    # Realtors whose visit the owner declined are moved back into this top slot
    owner_reject_top_position: int = 5

    points: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_POINTS))
    rating_points: Dict[int, int] = field(default_factory=lambda: dict(DEFAULT_RATING_POINTS))

    # Background job intervals (seconds)
    release_interval_seconds: int = 60
    expiry_interval_seconds: int = 300
    recalculation_interval_seconds: int = 600
    cleanup_interval_seconds: int = 3600

    updated_at: datetime = field(default_factory=datetime.now)

    def points_for(self, action: str) -> int:
        return self.points.get(action, DEFAULT_POINTS.get(action, 0))


class DistributionConfigManager:
    """Manage and persist distribution configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager."""
        self.config_path = config_path or Path.home() / ".leadflow" / "distribution_config.json"
        self.config = self._load_config()

    def _load_config(self) -> DistributionConfig:
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                    points = dict(DEFAULT_POINTS)
                    points.update(data.get("points", {}))
                    rating_points = dict(DEFAULT_RATING_POINTS)
                    rating_points.update({int(k): v for k, v in data.get("rating_points", {}).items()})
                    return DistributionConfig(
                        reservation_minutes=data.get("reservation_minutes", 10),
                        fast_response_minutes=data.get("fast_response_minutes", 5),
                        max_active_leads=data.get("max_active_leads", 1),
                        max_redistribution_attempts=data.get("max_redistribution_attempts", 3),
                        accepted_lead_ttl_hours=data.get("accepted_lead_ttl_hours", 24),
                        retention_days=data.get("retention_days", 30),
                        owner_reject_top_position=data.get("owner_reject_top_position", 5),
                        points=points,
                        rating_points=rating_points,
                        release_interval_seconds=data.get("release_interval_seconds", 60),
                        expiry_interval_seconds=data.get("expiry_interval_seconds", 300),
                        recalculation_interval_seconds=data.get("recalculation_interval_seconds", 600),
                        cleanup_interval_seconds=data.get("cleanup_interval_seconds", 3600),
                    )
            except Exception as e:
                logger.error(f"Error loading distribution config: {e}")

        return DistributionConfig()

    def save_config(self):
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "reservation_minutes": self.config.reservation_minutes,
            "fast_response_minutes": self.config.fast_response_minutes,
            "max_active_leads": self.config.max_active_leads,
            "max_redistribution_attempts": self.config.max_redistribution_attempts,
            "accepted_lead_ttl_hours": self.config.accepted_lead_ttl_hours,
            "retention_days": self.config.retention_days,
            "owner_reject_top_position": self.config.owner_reject_top_position,
            "points": self.config.points,
            "rating_points": {str(k): v for k, v in self.config.rating_points.items()},
            "release_interval_seconds": self.config.release_interval_seconds,
            "expiry_interval_seconds": self.config.expiry_interval_seconds,
            "recalculation_interval_seconds": self.config.recalculation_interval_seconds,
            "cleanup_interval_seconds": self.config.cleanup_interval_seconds,
            "updated_at": self.config.updated_at.isoformat(),
        }
        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)

    def update_timings(self, reservation_minutes: int, fast_response_minutes: int):
        """Update the reservation window and fast-response threshold."""
        if reservation_minutes < 1:
            raise ValueError("reservation_minutes must be at least 1")
        if fast_response_minutes < 0:
            raise ValueError("fast_response_minutes cannot be negative")
        self.config.reservation_minutes = reservation_minutes
        self.config.fast_response_minutes = fast_response_minutes
        self.config.updated_at = datetime.now()
        self.save_config()

    def set_points(self, action: str, points: int):
        """Override the score delta for an action."""
        self.config.points[action] = points
        self.config.updated_at = datetime.now()
        self.save_config()
