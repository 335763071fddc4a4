"""Team-level lead distribution settings and member routing."""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from ..core.config import DistributionConfig
from ..storage.database import LeadflowDatabase, format_ts, read_setting, write_setting
from ..storage.models import (
    ACTIVE_LEAD_STATUSES,
    DistributionMode,
    Lead,
    LeadStatus,
    QueueStatus,
    TeamMemberRole,
)
from .errors import PermissionDeniedError, TeamNotFoundError

logger = logging.getLogger(__name__)

MAX_RESERVATION_MINUTES = 24 * 60
MAX_REDISTRIBUTION_ATTEMPTS = 50


def _mode_key(team_id: str) -> str:
    return f"team:{team_id}:leadDistributionMode"


def _reservation_key(team_id: str) -> str:
    return f"team:{team_id}:leadReservationMinutes"


def _attempts_key(team_id: str) -> str:
    return f"team:{team_id}:leadMaxRedistributionAttempts"


def _cursor_key(team_id: str) -> str:
    return f"team:{team_id}:roundRobinCursor"


def normalize_mode(value) -> DistributionMode:
    """Unknown or missing modes fall back to round robin."""
    try:
        return DistributionMode(str(value or "").strip().upper())
    except ValueError:
        return DistributionMode.ROUND_ROBIN


def parse_positive_int(value) -> Optional[int]:
    try:
        n = int(str(value if value is not None else "").strip())
    except ValueError:
        return None
    return n if n > 0 else None


@dataclass
class TeamSettings:
    """Distribution settings for one team."""
    team_id: str
    mode: DistributionMode = DistributionMode.ROUND_ROBIN
    reservation_minutes: Optional[int] = None
    max_redistribution_attempts: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "lead_distribution_mode": self.mode.value,
            "lead_reservation_minutes": self.reservation_minutes,
            "lead_max_redistribution_attempts": self.max_redistribution_attempts,
        }


class TeamSettingsService:
    """Read and update team distribution settings stored in system_settings."""

    def __init__(self, db: LeadflowDatabase):
        self.db = db

    def _read(self, conn: sqlite3.Connection, team_id: str) -> TeamSettings:
        return TeamSettings(
            team_id=team_id,
            mode=normalize_mode(read_setting(conn, _mode_key(team_id))),
            reservation_minutes=parse_positive_int(read_setting(conn, _reservation_key(team_id))),
            max_redistribution_attempts=parse_positive_int(read_setting(conn, _attempts_key(team_id))),
        )

    def get(self, team_id: str, conn: Optional[sqlite3.Connection] = None) -> TeamSettings:
        if conn is not None:
            return self._read(conn, team_id)
        with self.db._get_connection() as read_conn:
            return self._read(read_conn, team_id)

    def can_manage(self, team_id: str, actor_id: str, role: Optional[str]) -> bool:
        """ADMIN, the team owner, or a member with the OWNER role."""
        team = self.db.get_team(team_id)
        if team is None:
            raise TeamNotFoundError(team_id)
        if role == "ADMIN" or team.owner_id == actor_id:
            return True
        return any(
            m.user_id == actor_id and m.role == TeamMemberRole.OWNER
            for m in self.db.get_team_members(team_id)
        )

    def update(
        self,
        team_id: str,
        actor_id: str,
        role: Optional[str],
        mode: DistributionMode,
        reservation_minutes: Optional[int] = None,
        max_redistribution_attempts: Optional[int] = None,
    ) -> TeamSettings:
        if not self.can_manage(team_id, actor_id, role):
            raise PermissionDeniedError("You are not allowed to manage this team's settings")

        if reservation_minutes is not None and not 1 <= reservation_minutes <= MAX_RESERVATION_MINUTES:
            raise ValueError(f"lead_reservation_minutes must be between 1 and {MAX_RESERVATION_MINUTES}")
        if max_redistribution_attempts is not None and not 1 <= max_redistribution_attempts <= MAX_REDISTRIBUTION_ATTEMPTS:
            raise ValueError(
                f"lead_max_redistribution_attempts must be between 1 and {MAX_REDISTRIBUTION_ATTEMPTS}"
            )

        with self.db.transaction() as tx:
            write_setting(tx, _mode_key(team_id), mode.value)
            if reservation_minutes is not None:
                write_setting(tx, _reservation_key(team_id), str(reservation_minutes))
            if max_redistribution_attempts is not None:
                write_setting(tx, _attempts_key(team_id), str(max_redistribution_attempts))
            settings = self._read(tx, team_id)

        logger.info(f"Team {team_id} distribution settings updated by {actor_id}: {settings.to_dict()}")
        return settings


class TeamRouter:
    """Pick which team member receives a team lead.

    Members follow the queue's eligibility rules: a queued member must be
    ACTIVE and under the active-lead cap, and nobody may hold two live
    reservations. Members who never joined the queue are still eligible;
    their active leads are counted from the leads table.
    """

    def __init__(self, settings: TeamSettingsService, config: Optional[DistributionConfig] = None):
        self.settings = settings
        self.config = config or DistributionConfig()

    def _eligible_members(
        self,
        conn: sqlite3.Connection,
        team_id: str,
        exclude: Iterable[str],
        now: datetime,
    ) -> List[str]:
        excluded = set(exclude)
        held = ", ".join("?" for _ in ACTIVE_LEAD_STATUSES)
        cursor = conn.execute(
            f"""SELECT m.user_id FROM team_members m
                LEFT JOIN realtor_queue q ON q.realtor_id = m.user_id
                WHERE m.team_id = ? AND m.role != ?
                  AND (q.id IS NULL OR q.status = ?)
                  AND COALESCE(
                      q.active_leads,
                      (SELECT COUNT(*) FROM leads h WHERE h.realtor_id = m.user_id AND h.status IN ({held}))
                  ) < ?
                  AND NOT EXISTS (
                      SELECT 1 FROM leads l
                      WHERE l.realtor_id = m.user_id
                        AND l.status = ?
                        AND l.reserved_until > ?
                  )
                ORDER BY m.created_at, m.user_id""",
            (
                team_id,
                TeamMemberRole.ASSISTANT.value,
                QueueStatus.ACTIVE.value,
                *[status.value for status in ACTIVE_LEAD_STATUSES],
                self.config.max_active_leads,
                LeadStatus.RESERVED.value,
                format_ts(now),
            ),
        )
        return [row["user_id"] for row in cursor.fetchall() if row["user_id"] not in excluded]

    def pick_member(
        self,
        conn: sqlite3.Connection,
        team_id: str,
        lead: Lead,
        exclude: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Realtor id for the lead under the team's mode, or None to leave it unassigned."""
        now = now or datetime.now()
        exclude = list(exclude)
        mode = self.settings.get(team_id, conn=conn).mode

        if mode == DistributionMode.MANUAL:
            return None

        members = self._eligible_members(conn, team_id, exclude, now)
        if not members:
            return None

        if mode == DistributionMode.CAPTURER_FIRST and lead.property_id:
            row = conn.execute(
                "SELECT owner_id FROM properties WHERE id = ?", (lead.property_id,)
            ).fetchone()
            if row and row["owner_id"] in members:
                return row["owner_id"]

        return self._round_robin(conn, team_id, members)

    def _round_robin(self, conn: sqlite3.Connection, team_id: str, members: List[str]) -> str:
        """Next member after the one who got the previous lead."""
        last = read_setting(conn, _cursor_key(team_id))
        all_members = [
            row["user_id"] for row in conn.execute(
                "SELECT user_id FROM team_members WHERE team_id = ? ORDER BY created_at, user_id",
                (team_id,),
            )
        ]

        start = all_members.index(last) + 1 if last in all_members else 0
        ordered = all_members[start:] + all_members[:start]
        chosen = next(user_id for user_id in ordered if user_id in members)

        write_setting(conn, _cursor_key(team_id), chosen)
        return chosen
