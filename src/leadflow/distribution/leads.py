"""Lead distribution: reservation, accept/reject, expiry and redistribution.

A new lead is reserved for the next eligible realtor in the queue. The
realtor has a reservation window to accept it; rejecting it or letting the
window lapse hands the lead to the next realtor, up to a limit of
redistribution attempts, after which it lands on the mural (AVAILABLE) where
any queued realtor may apply for it.

Every state change happens inside one ``BEGIN IMMEDIATE`` transaction, so
"who gets this lead" is decided by whoever takes the database write lock
first. Notifications go out only after the transaction commits.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..core.config import (
    DistributionConfig,
    ACCEPT_LEAD_FAST,
    REJECT_LEAD,
    RESERVATION_EXPIRED,
    LEAD_EXPIRED,
    COMPLETE_LEAD,
)
from ..notifications import notifier
from ..storage.database import LeadflowDatabase, fetch_lead, format_ts, new_id
from ..storage.models import (
    ACTIVE_LEAD_STATUSES,
    Candidature,
    CandidatureStatus,
    Lead,
    LeadEventType,
    LeadStatus,
    LostReason,
    PipelineStage,
    Rating,
    TeamMemberRole,
)
from .errors import (
    DistributionError,
    DuplicateCandidatureError,
    LeadAlreadyAcceptedError,
    LeadNotAvailableError,
    LeadNotFoundError,
    LeadReservedError,
    NotLeadHolderError,
    PermissionDeniedError,
    RealtorNotFoundError,
    RealtorNotInQueueError,
    TeamNotFoundError,
)
from .events import LeadEventService
from .realtor_queue import QueueService
from .teams import TeamRouter, TeamSettingsService

logger = logging.getLogger(__name__)

ACCEPTABLE_STATUSES = (LeadStatus.RESERVED, LeadStatus.AVAILABLE, LeadStatus.PENDING)
DISTRIBUTABLE_STATUSES = (LeadStatus.PENDING, LeadStatus.AVAILABLE)


def _to_db(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_ts(value)
    if isinstance(value, bool):
        return int(value)
    return value


@dataclass
class AcceptResult:
    """Outcome of a successful accept."""
    lead: Lead
    response_time: int
    points_earned: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead": self.lead.to_dict(),
            "response_time": self.response_time,
            "points_earned": self.points_earned,
        }


class LeadDistributionService:
    """Assign leads to realtors and track the outcome."""

    def __init__(
        self,
        db: LeadflowDatabase,
        config: Optional[DistributionConfig] = None,
        queue: Optional[QueueService] = None,
        events: Optional[LeadEventService] = None,
        team_settings: Optional[TeamSettingsService] = None,
    ):
        self.db = db
        self.config = config or DistributionConfig()
        self.queue = queue or QueueService(db, self.config)
        self.events = events or LeadEventService(db)
        self.team_settings = team_settings or TeamSettingsService(db)
        self.team_router = TeamRouter(self.team_settings, self.config)

    # === HELPERS ===

    def _get_lead(self, conn: sqlite3.Connection, lead_id: str) -> Lead:
        lead = fetch_lead(conn, lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)
        return lead

    def _update_lead(self, conn: sqlite3.Connection, lead_id: str, now: datetime, **fields) -> Lead:
        fields["updated_at"] = now
        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [_to_db(value) for value in fields.values()]
        conn.execute(f"UPDATE leads SET {assignments} WHERE id = ?", values + [lead_id])
        return self._get_lead(conn, lead_id)

    def _ensure_stats(self, conn: sqlite3.Connection, realtor_id: str):
        conn.execute(
            "INSERT INTO realtor_stats (realtor_id) VALUES (?) ON CONFLICT(realtor_id) DO NOTHING",
            (realtor_id,),
        )

    def _reservation_minutes(self, conn: sqlite3.Connection, lead: Lead) -> int:
        if lead.team_id:
            minutes = self.team_settings.get(lead.team_id, conn=conn).reservation_minutes
            if minutes:
                return minutes
        return self.config.reservation_minutes

    def _max_attempts(self, conn: sqlite3.Connection, lead: Lead) -> int:
        if lead.team_id:
            attempts = self.team_settings.get(lead.team_id, conn=conn).max_redistribution_attempts
            if attempts:
                return attempts
        return self.config.max_redistribution_attempts

    def _pick_realtor(
        self,
        conn: sqlite3.Connection,
        lead: Lead,
        now: datetime,
        exclude: Iterable[str] = (),
    ) -> Optional[str]:
        if lead.team_id:
            return self.team_router.pick_member(conn, lead.team_id, lead, exclude=exclude, now=now)
        entry = self.queue.get_next_realtor(conn=conn, exclude=exclude, now=now)
        return entry.realtor_id if entry else None

    def _reserve(
        self,
        conn: sqlite3.Connection,
        lead: Lead,
        realtor_id: str,
        now: datetime,
        attempts: int,
    ) -> Lead:
        reserved_until = now + timedelta(minutes=self._reservation_minutes(conn, lead))
        updated = self._update_lead(
            conn, lead.id, now,
            status=LeadStatus.RESERVED,
            realtor_id=realtor_id,
            reserved_until=reserved_until,
            redistribution_attempts=attempts,
        )
        self.events.record(
            conn, lead.id, LeadEventType.LEAD_DISTRIBUTED,
            actor_id=realtor_id,
            actor_role="REALTOR",
            title="Lead reserved for realtor",
            from_status=lead.status.value,
            to_status=updated.status.value,
            metadata={"reserved_until": format_ts(reserved_until), "attempt": attempts},
            now=now,
        )
        logger.info(f"Lead {lead.id} reserved for {realtor_id} until {reserved_until.isoformat()}")
        return updated

    def _park(self, conn: sqlite3.Connection, lead: Lead, now: datetime, reason: str) -> Lead:
        """Nobody to hand the lead to: team leads wait for the owner, others go to the mural."""
        status = LeadStatus.PENDING if lead.team_id else LeadStatus.AVAILABLE
        updated = self._update_lead(
            conn, lead.id, now,
            status=status,
            realtor_id=None,
            reserved_until=None,
        )
        self.events.record(
            conn, lead.id, LeadEventType.LEAD_RELEASED,
            title="Lead released",
            from_status=lead.status.value,
            to_status=status.value,
            metadata={"reason": reason},
            now=now,
        )
        logger.info(f"Lead {lead.id} parked as {status.value} ({reason})")
        return updated

    def _redistribute(
        self,
        conn: sqlite3.Connection,
        lead: Lead,
        now: datetime,
        exclude: Iterable[str],
        reason: str,
    ) -> Lead:
        """Hand a released lead to the next realtor, or park it once attempts run out."""
        if lead.redistribution_attempts < self._max_attempts(conn, lead):
            realtor_id = self._pick_realtor(conn, lead, now, exclude=exclude)
            if realtor_id:
                return self._reserve(conn, lead, realtor_id, now, lead.redistribution_attempts + 1)
        return self._park(conn, lead, now, reason)

    def _notify_placement(self, lead: Lead, previous_realtor_id: Optional[str], reason: str):
        if lead.status == LeadStatus.RESERVED and lead.realtor_id:
            notifier.notify_lead_reserved(lead.id, lead.realtor_id, lead.reserved_until)
        elif lead.status == LeadStatus.AVAILABLE:
            notifier.notify_lead_released(lead.id, previous_realtor_id, reason)

    # === LEAD INTAKE ===

    def create_lead(
        self,
        property_id: Optional[str] = None,
        contact_name: Optional[str] = None,
        contact_email: Optional[str] = None,
        contact_phone: Optional[str] = None,
        message: Optional[str] = None,
        team_id: Optional[str] = None,
        visit_date: Optional[str] = None,
        visit_time: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Lead:
        """Store a new inbound lead in PENDING. Team leads inherit the property's team."""
        now = now or datetime.now()
        with self.db.transaction() as tx:
            if property_id:
                row = tx.execute("SELECT team_id FROM properties WHERE id = ?", (property_id,)).fetchone()
                if row is None:
                    raise DistributionError(f"Property not found: {property_id}")
                team_id = team_id or row["team_id"]
            if team_id and not tx.execute("SELECT 1 FROM teams WHERE id = ?", (team_id,)).fetchone():
                raise TeamNotFoundError(team_id)

            lead_id = new_id()
            tx.execute(
                """INSERT INTO leads (
                    id, property_id, contact_name, contact_email, contact_phone, message,
                    status, team_id, visit_date, visit_time, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    lead_id, property_id, contact_name, contact_email, contact_phone, message,
                    LeadStatus.PENDING.value, team_id, visit_date, visit_time,
                    format_ts(now), format_ts(now),
                ),
            )
            self.events.record(
                tx, lead_id, LeadEventType.LEAD_CREATED,
                title="Lead created",
                to_status=LeadStatus.PENDING.value,
                now=now,
            )
            lead = self._get_lead(tx, lead_id)

        logger.info(f"Lead {lead.id} created for property {property_id}")
        return lead

    def get_lead(self, lead_id: str) -> Lead:
        with self.db._get_connection() as conn:
            return self._get_lead(conn, lead_id)

    # === DISTRIBUTION ===

    def distribute_new_lead(self, lead_id: str, now: Optional[datetime] = None) -> Lead:
        """Reserve the lead for the next eligible realtor, or put it on the mural."""
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)
            if lead.status not in DISTRIBUTABLE_STATUSES:
                raise LeadNotAvailableError(
                    f"Lead {lead_id} cannot be distributed from status {lead.status.value}"
                )
            previous_status = lead.status

            realtor_id = self._pick_realtor(tx, lead, now)
            if realtor_id:
                lead = self._reserve(tx, lead, realtor_id, now, lead.redistribution_attempts)
            elif lead.status == LeadStatus.PENDING:
                lead = self._park(tx, lead, now, reason="no_realtor_available")

        # A lead still on the mural was already announced
        if lead.status != previous_status:
            self._notify_placement(lead, None, "no_realtor_available")
        return lead

    def accept_lead(self, lead_id: str, realtor_id: str, now: Optional[datetime] = None) -> AcceptResult:
        """Accept a lead as its reserved realtor or as a mural candidate."""
        now = now or datetime.now()
        logger.info(f"Accepting lead {lead_id} for {realtor_id}")

        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)

            if lead.status == LeadStatus.ACCEPTED:
                raise LeadAlreadyAcceptedError("Lead was already accepted by another realtor")
            if lead.is_reserved_for_other(realtor_id, now):
                raise LeadReservedError("Lead is reserved for another realtor")
            if lead.status not in ACCEPTABLE_STATUSES:
                raise LeadNotAvailableError(f"Lead cannot be accepted from status {lead.status.value}")
            if not tx.execute("SELECT 1 FROM realtors WHERE id = ?", (realtor_id,)).fetchone():
                raise RealtorNotFoundError(realtor_id)

            reference = lead.created_at
            if lead.reserved_until:
                reference = lead.reserved_until - timedelta(minutes=self._reservation_minutes(tx, lead))
            response_time = max(0, int((now - reference).total_seconds() // 60))

            stage = lead.pipeline_stage
            if stage is None or stage == PipelineStage.NEW:
                stage = PipelineStage.CONTACT

            cursor = tx.execute(
                """UPDATE leads
                   SET status = ?, realtor_id = ?, responded_at = ?, pipeline_stage = ?, updated_at = ?
                   WHERE id = ? AND status = ?""",
                (
                    LeadStatus.ACCEPTED.value, realtor_id, format_ts(now), stage.value,
                    format_ts(now), lead_id, lead.status.value,
                ),
            )
            if cursor.rowcount != 1:
                raise LeadAlreadyAcceptedError("Lead was already accepted by another realtor")

            self._ensure_stats(tx, realtor_id)
            tx.execute(
                """UPDATE realtor_stats
                   SET leads_accepted = leads_accepted + 1,
                       total_response_time = total_response_time + ?,
                       last_lead_accepted_at = ?
                   WHERE realtor_id = ?""",
                (response_time, format_ts(now), realtor_id),
            )
            stats = tx.execute(
                "SELECT leads_accepted, total_response_time FROM realtor_stats WHERE realtor_id = ?",
                (realtor_id,),
            ).fetchone()
            avg_response_time = round(stats["total_response_time"] / stats["leads_accepted"])
            tx.execute(
                "UPDATE realtor_stats SET avg_response_time = ? WHERE realtor_id = ?",
                (avg_response_time, realtor_id),
            )
            tx.execute(
                "UPDATE realtor_queue SET avg_response_time = ? WHERE realtor_id = ?",
                (avg_response_time, realtor_id),
            )

            self.queue.increment_active_leads(realtor_id, conn=tx)
            self.queue.move_to_end(realtor_id, conn=tx, now=now)

            points_earned = 0
            if response_time < self.config.fast_response_minutes:
                points_earned = self.config.points_for(ACCEPT_LEAD_FAST)
                self.queue.update_score(
                    realtor_id, points_earned, ACCEPT_LEAD_FAST,
                    f"Accepted lead in under {self.config.fast_response_minutes} minutes",
                    conn=tx, now=now,
                )
                logger.info(f"Fast response bonus for {realtor_id} on lead {lead_id} ({response_time} min)")

            entry = self.queue.get_entry(realtor_id, conn=tx)
            if entry:
                tx.execute(
                    """UPDATE lead_candidatures
                       SET status = CASE WHEN queue_id = ? THEN ? ELSE ? END
                       WHERE lead_id = ?""",
                    (entry.id, CandidatureStatus.ACCEPTED.value, CandidatureStatus.REJECTED.value, lead_id),
                )

            self.events.record(
                tx, lead_id, LeadEventType.LEAD_ACCEPTED,
                actor_id=realtor_id,
                actor_role="REALTOR",
                title="Lead accepted",
                from_status=lead.status.value,
                to_status=LeadStatus.ACCEPTED.value,
                from_stage=lead.effective_stage.value,
                to_stage=stage.value,
                metadata={"response_time": response_time, "points_earned": points_earned},
                now=now,
            )
            updated = self._get_lead(tx, lead_id)

        notifier.notify_lead_accepted(lead_id, realtor_id, points_earned, response_time)
        return AcceptResult(lead=updated, response_time=response_time, points_earned=points_earned)

    def reject_lead(self, lead_id: str, realtor_id: str, now: Optional[datetime] = None) -> Lead:
        """Give a lead back. It moves on to another realtor or to the mural."""
        now = now or datetime.now()
        logger.info(f"Rejecting lead {lead_id} for {realtor_id}")

        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)
            if lead.realtor_id != realtor_id or lead.status not in (LeadStatus.RESERVED, LeadStatus.ACCEPTED):
                raise NotLeadHolderError("Only the realtor holding this lead can reject it")

            self._ensure_stats(tx, realtor_id)
            tx.execute(
                "UPDATE realtor_stats SET leads_rejected = leads_rejected + 1 WHERE realtor_id = ?",
                (realtor_id,),
            )
            self.queue.increment_rejected(realtor_id, conn=tx)
            if lead.status == LeadStatus.ACCEPTED:
                self.queue.decrement_active_leads(realtor_id, conn=tx)
            self.queue.update_score(
                realtor_id, self.config.points_for(REJECT_LEAD), REJECT_LEAD, "Rejected lead",
                conn=tx, now=now,
            )
            self.events.record(
                tx, lead_id, LeadEventType.LEAD_REJECTED,
                actor_id=realtor_id,
                actor_role="REALTOR",
                title="Lead rejected",
                from_status=lead.status.value,
                now=now,
            )
            updated = self._redistribute(tx, lead, now, exclude=[realtor_id], reason="rejected")

        self._notify_placement(updated, realtor_id, "rejected")
        logger.info(f"Lead {lead_id} rejected by {realtor_id}, now {updated.status.value}")
        return updated

    def release_expired_reservations(self, now: Optional[datetime] = None) -> int:
        """Release RESERVED leads whose window has passed. Returns how many were released."""
        now = now or datetime.now()
        with self.db._get_connection() as conn:
            expired_ids = [
                row["id"] for row in conn.execute(
                    "SELECT id FROM leads WHERE status = ? AND reserved_until < ? ORDER BY reserved_until",
                    (LeadStatus.RESERVED.value, format_ts(now)),
                )
            ]

        released = 0
        for lead_id in expired_ids:
            with self.db.transaction() as tx:
                lead = fetch_lead(tx, lead_id)
                # Accepted or re-reserved since the scan
                if lead is None or lead.status != LeadStatus.RESERVED or not lead.reserved_until \
                        or lead.reserved_until >= now:
                    continue

                previous = lead.realtor_id
                if previous:
                    self.queue.update_score(
                        previous, self.config.points_for(RESERVATION_EXPIRED), RESERVATION_EXPIRED,
                        "Let reservation expire", conn=tx, now=now,
                    )
                    self._ensure_stats(tx, previous)
                    tx.execute(
                        "UPDATE realtor_stats SET leads_expired = leads_expired + 1 WHERE realtor_id = ?",
                        (previous,),
                    )
                    self.queue.increment_expired(previous, conn=tx)

                updated = self._redistribute(
                    tx, lead, now, exclude=[previous] if previous else [], reason="reservation_expired"
                )
            released += 1
            self._notify_placement(updated, previous, "reservation_expired")

        if released:
            logger.info(f"Released {released} expired reservation(s)")
        return released

    def expire_stale_leads(self, now: Optional[datetime] = None) -> int:
        """Expire accepted leads left without a conclusion past the TTL."""
        now = now or datetime.now()
        cutoff = now - timedelta(hours=self.config.accepted_lead_ttl_hours)

        expired = 0
        with self.db.transaction() as tx:
            rows = tx.execute(
                """SELECT * FROM leads
                   WHERE status = ? AND responded_at < ? AND expires_at IS NULL""",
                (LeadStatus.ACCEPTED.value, format_ts(cutoff)),
            ).fetchall()

            for row in rows:
                lead = Lead.from_row(row)
                self._update_lead(
                    tx, lead.id, now,
                    status=LeadStatus.EXPIRED,
                    expires_at=now,
                    pipeline_stage=PipelineStage.LOST,
                )
                if lead.realtor_id:
                    self.queue.update_score(
                        lead.realtor_id, self.config.points_for(LEAD_EXPIRED), LEAD_EXPIRED,
                        "Lead expired without conclusion", conn=tx, now=now,
                    )
                    self.queue.decrement_active_leads(lead.realtor_id, conn=tx)
                    self.queue.increment_expired(lead.realtor_id, conn=tx)
                    self._ensure_stats(tx, lead.realtor_id)
                    tx.execute(
                        "UPDATE realtor_stats SET leads_expired = leads_expired + 1 WHERE realtor_id = ?",
                        (lead.realtor_id,),
                    )
                self.events.record(
                    tx, lead.id, LeadEventType.LEAD_EXPIRED,
                    actor_id=lead.realtor_id,
                    title="Lead expired without conclusion",
                    from_status=lead.status.value,
                    to_status=LeadStatus.EXPIRED.value,
                    from_stage=lead.effective_stage.value,
                    to_stage=PipelineStage.LOST.value,
                    now=now,
                )
                expired += 1

        if expired:
            logger.info(f"Expired {expired} stale lead(s)")
        return expired

    def complete_lead(self, lead_id: str, realtor_id: str, now: Optional[datetime] = None) -> Lead:
        """Close a lead as won."""
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)
            if lead.realtor_id != realtor_id or lead.status not in (LeadStatus.ACCEPTED, LeadStatus.CONFIRMED):
                raise NotLeadHolderError("Only the realtor handling this lead can complete it")

            updated = self._update_lead(
                tx, lead_id, now,
                status=LeadStatus.COMPLETED,
                pipeline_stage=PipelineStage.WON,
                completed_at=now,
            )
            self.queue.decrement_active_leads(realtor_id, conn=tx)
            self._ensure_stats(tx, realtor_id)
            tx.execute(
                "UPDATE realtor_stats SET leads_completed = leads_completed + 1 WHERE realtor_id = ?",
                (realtor_id,),
            )
            self.queue.update_score(
                realtor_id, self.config.points_for(COMPLETE_LEAD), COMPLETE_LEAD, "Completed lead",
                conn=tx, now=now,
            )
            self.events.record(
                tx, lead_id, LeadEventType.LEAD_COMPLETED,
                actor_id=realtor_id,
                actor_role="REALTOR",
                title="Lead completed",
                from_status=lead.status.value,
                to_status=LeadStatus.COMPLETED.value,
                from_stage=lead.effective_stage.value,
                to_stage=PipelineStage.WON.value,
                now=now,
            )

        logger.info(f"Lead {lead_id} completed by {realtor_id}")
        return updated

    # === MURAL ===

    def candidate_to_lead(self, lead_id: str, realtor_id: str, now: Optional[datetime] = None) -> Candidature:
        """Apply for a lead on the mural."""
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)
            if lead.status != LeadStatus.AVAILABLE:
                raise LeadNotAvailableError("Lead is not available for candidatures")

            entry = self.queue.get_entry(realtor_id, conn=tx)
            if entry is None:
                raise RealtorNotInQueueError(realtor_id)

            existing = tx.execute(
                "SELECT 1 FROM lead_candidatures WHERE lead_id = ? AND queue_id = ?",
                (lead_id, entry.id),
            ).fetchone()
            if existing:
                raise DuplicateCandidatureError("You already applied for this lead")

            candidature = Candidature(
                id=new_id(), lead_id=lead_id, queue_id=entry.id,
                status=CandidatureStatus.PENDING, created_at=now,
            )
            tx.execute(
                "INSERT INTO lead_candidatures (id, lead_id, queue_id, status, created_at) VALUES (?, ?, ?, ?, ?)",
                (candidature.id, lead_id, entry.id, candidature.status.value, format_ts(now)),
            )
            tx.execute(
                "UPDATE leads SET candidates_count = candidates_count + 1, updated_at = ? WHERE id = ?",
                (format_ts(now), lead_id),
            )
            self.events.record(
                tx, lead_id, LeadEventType.CANDIDATURE_CREATED,
                actor_id=realtor_id,
                actor_role="REALTOR",
                title="Realtor applied for lead",
                now=now,
            )
        return candidature

    def get_available_leads(
        self,
        city: Optional[str] = None,
        state: Optional[str] = None,
        property_type: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Leads on the mural, newest first, with a property summary."""
        query = """
            SELECT l.*,
                   p.title AS property_title, p.price AS property_price,
                   p.property_type AS property_type, p.city AS property_city,
                   p.state AS property_state, p.neighborhood AS property_neighborhood,
                   p.bedrooms AS property_bedrooms, p.bathrooms AS property_bathrooms,
                   p.area_m2 AS property_area_m2,
                   (SELECT COUNT(*) FROM lead_candidatures c WHERE c.lead_id = l.id) AS candidature_count
            FROM leads l
            LEFT JOIN properties p ON p.id = l.property_id
            WHERE l.status = ?
        """
        params: List[Any] = [LeadStatus.AVAILABLE.value]

        if city:
            query += " AND p.city = ?"
            params.append(city)
        if state:
            query += " AND p.state = ?"
            params.append(state)
        if property_type:
            query += " AND p.property_type = ?"
            params.append(property_type)
        if min_price is not None:
            query += " AND p.price >= ?"
            params.append(min_price)
        if max_price is not None:
            query += " AND p.price <= ?"
            params.append(max_price)

        query += " ORDER BY l.created_at DESC LIMIT ?"
        params.append(limit)

        with self.db._get_connection() as conn:
            results = []
            for row in conn.execute(query, params).fetchall():
                item = Lead.from_row(row).to_dict()
                item["property"] = {
                    "id": row["property_id"],
                    "title": row["property_title"],
                    "price": row["property_price"],
                    "type": row["property_type"],
                    "city": row["property_city"],
                    "state": row["property_state"],
                    "neighborhood": row["property_neighborhood"],
                    "bedrooms": row["property_bedrooms"],
                    "bathrooms": row["property_bathrooms"],
                    "area_m2": row["property_area_m2"],
                } if row["property_id"] else None
                item["candidature_count"] = row["candidature_count"]
                results.append(item)
            return results

    def get_realtor_leads(self, realtor_id: str) -> List[Lead]:
        """Leads the realtor currently holds (reserved or accepted)."""
        with self.db._get_connection() as conn:
            cursor = conn.execute(
                """SELECT * FROM leads WHERE realtor_id = ? AND status IN (?, ?)
                   ORDER BY created_at DESC""",
                (realtor_id, LeadStatus.RESERVED.value, LeadStatus.ACCEPTED.value),
            )
            return [Lead.from_row(row) for row in cursor.fetchall()]

    # === PIPELINE ===

    def _check_can_edit(self, conn: sqlite3.Connection, lead: Lead, actor_id: str, role: Optional[str]):
        if role == "ADMIN" or lead.realtor_id == actor_id:
            return
        if lead.team_id:
            team = conn.execute("SELECT owner_id FROM teams WHERE id = ?", (lead.team_id,)).fetchone()
            if team and team["owner_id"] == actor_id:
                return
        raise PermissionDeniedError(
            "You can only change leads you are handling or that belong to teams you lead"
        )

    def update_pipeline_stage(
        self,
        lead_id: str,
        stage: PipelineStage,
        actor_id: str,
        role: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Lead:
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)
            self._check_can_edit(tx, lead, actor_id, role)
            updated = self._update_lead(tx, lead_id, now, pipeline_stage=stage)
            self.events.record(
                tx, lead_id, LeadEventType.STAGE_CHANGED,
                actor_id=actor_id,
                actor_role=role,
                title="Pipeline stage changed",
                from_stage=lead.effective_stage.value,
                to_stage=stage.value,
                now=now,
            )
        return updated

    def mark_lost(
        self,
        lead_id: str,
        actor_id: str,
        role: Optional[str] = None,
        reason: Optional[LostReason] = None,
        now: Optional[datetime] = None,
    ) -> Lead:
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)
            self._check_can_edit(tx, lead, actor_id, role)
            updated = self._update_lead(
                tx, lead_id, now,
                pipeline_stage=PipelineStage.LOST,
                lost_reason=reason,
            )
            self.events.record(
                tx, lead_id, LeadEventType.LEAD_LOST,
                actor_id=actor_id,
                actor_role=role,
                title="Lead marked as lost",
                from_stage=lead.effective_stage.value,
                to_stage=PipelineStage.LOST.value,
                metadata={"reason": reason.value if reason else None},
                now=now,
            )
        return updated

    def assign_lead(
        self,
        lead_id: str,
        new_realtor_id: str,
        actor_id: str,
        role: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Lead:
        """Hand a lead to a specific realtor.

        Leads without a team can only be reassigned by an admin. Team leads can
        be reassigned by any team member, the owner or an admin, and only to a
        non-assistant member. A PENDING or AVAILABLE lead is reserved for the
        new realtor with the usual window; pending candidatures are rejected.
        """
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)
            if not tx.execute("SELECT 1 FROM realtors WHERE id = ?", (new_realtor_id,)).fetchone():
                raise RealtorNotFoundError(new_realtor_id)

            team_id = lead.team_id
            if not team_id and lead.property_id:
                row = tx.execute("SELECT team_id FROM properties WHERE id = ?", (lead.property_id,)).fetchone()
                team_id = row["team_id"] if row else None

            if not team_id:
                if role != "ADMIN":
                    raise PermissionDeniedError("This lead is not associated with any team")
            else:
                team = tx.execute("SELECT owner_id FROM teams WHERE id = ?", (team_id,)).fetchone()
                if team is None:
                    raise TeamNotFoundError(team_id)
                members = {
                    row["user_id"]: row["role"] for row in tx.execute(
                        "SELECT user_id, role FROM team_members WHERE team_id = ?", (team_id,)
                    )
                }
                if actor_id not in members and team["owner_id"] != actor_id and role != "ADMIN":
                    raise PermissionDeniedError("You are not allowed to reassign leads of this team")
                if new_realtor_id not in members:
                    raise DistributionError("The chosen realtor is not part of this team")
                if members[new_realtor_id] == TeamMemberRole.ASSISTANT.value:
                    raise DistributionError("Assistants cannot be responsible for leads")

            previous = lead.realtor_id
            if lead.status in DISTRIBUTABLE_STATUSES:
                # An unassigned lead becomes a reservation for the chosen realtor
                lead = self._update_lead(tx, lead_id, now, team_id=team_id)
                tx.execute(
                    "UPDATE lead_candidatures SET status = ? WHERE lead_id = ? AND status = ?",
                    (CandidatureStatus.REJECTED.value, lead_id, CandidatureStatus.PENDING.value),
                )
                updated = self._reserve(tx, lead, new_realtor_id, now, lead.redistribution_attempts)
            else:
                updated = self._update_lead(tx, lead_id, now, realtor_id=new_realtor_id, team_id=team_id)

            # Keep the active-lead counters with whoever holds the accepted lead
            if lead.status in ACTIVE_LEAD_STATUSES and previous != new_realtor_id:
                if previous:
                    self.queue.decrement_active_leads(previous, conn=tx)
                tx.execute(
                    "UPDATE realtor_queue SET active_leads = active_leads + 1 WHERE realtor_id = ?",
                    (new_realtor_id,),
                )

            tx.execute(
                """INSERT INTO lead_assignment_logs
                   (lead_id, from_realtor_id, to_realtor_id, changed_by_user_id, team_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (lead_id, previous, new_realtor_id, actor_id, team_id, format_ts(now)),
            )
            self.events.record(
                tx, lead_id, LeadEventType.LEAD_REASSIGNED,
                actor_id=actor_id,
                actor_role=role,
                title="Lead reassigned",
                metadata={"from_realtor_id": previous, "to_realtor_id": new_realtor_id},
                now=now,
            )

        logger.info(f"Lead {lead_id} reassigned {previous} -> {new_realtor_id} by {actor_id}")
        if lead.status in DISTRIBUTABLE_STATUSES:
            self._notify_placement(updated, previous, "assigned")
        return updated

    def get_pipeline(self, realtor_id: str) -> Dict[str, List[Dict[str, Any]]]:
        """Realtor's leads grouped by effective pipeline stage."""
        pipeline: Dict[str, List[Dict[str, Any]]] = {stage.value: [] for stage in PipelineStage}
        with self.db._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM leads WHERE realtor_id = ? ORDER BY created_at DESC", (realtor_id,)
            )
            for row in cursor.fetchall():
                lead = Lead.from_row(row)
                pipeline[lead.effective_stage.value].append(lead.to_dict())
        return pipeline

    # === RATINGS ===

    def rate_realtor(
        self,
        lead_id: str,
        rating: int,
        comment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Rating:
        """Client rating of the realtor who handled a lead; feeds the queue score."""
        if not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")

        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead = self._get_lead(tx, lead_id)
            if not lead.realtor_id:
                raise LeadNotAvailableError("Lead has no realtor to rate")
            if tx.execute("SELECT 1 FROM realtor_ratings WHERE lead_id = ?", (lead_id,)).fetchone():
                raise DistributionError("This lead was already rated")

            result = Rating(
                id=new_id(), lead_id=lead_id, realtor_id=lead.realtor_id,
                rating=rating, comment=comment, created_at=now,
            )
            tx.execute(
                """INSERT INTO realtor_ratings (id, lead_id, realtor_id, rating, comment, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (result.id, lead_id, result.realtor_id, rating, comment, format_ts(now)),
            )

            self._ensure_stats(tx, result.realtor_id)
            stats = tx.execute(
                "SELECT avg_rating, total_ratings FROM realtor_stats WHERE realtor_id = ?",
                (result.realtor_id,),
            ).fetchone()
            total = stats["total_ratings"] + 1
            avg = ((stats["avg_rating"] or 0) * stats["total_ratings"] + rating) / total
            tx.execute(
                "UPDATE realtor_stats SET avg_rating = ?, total_ratings = ? WHERE realtor_id = ?",
                (avg, total, result.realtor_id),
            )

            points = self.config.rating_points.get(rating, 0)
            if points:
                action = "RATING_1_STAR" if rating == 1 else f"RATING_{rating}_STARS"
                self.queue.update_score(
                    result.realtor_id, points, action, f"Received a {rating}-star rating",
                    conn=tx, now=now,
                )

        logger.info(f"Lead {lead_id} rated {rating} for realtor {result.realtor_id}")
        return result

    # === MAINTENANCE ===

    def cleanup(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Purge old score history and long-expired leads."""
        now = now or datetime.now()
        cutoff = format_ts(now - timedelta(days=self.config.retention_days))
        with self.db.transaction() as tx:
            history = tx.execute("DELETE FROM score_history WHERE created_at < ?", (cutoff,)).rowcount
            leads = tx.execute(
                "DELETE FROM leads WHERE status = ? AND expires_at < ?",
                (LeadStatus.EXPIRED.value, cutoff),
            ).rowcount
        logger.info(f"Cleanup removed {history} score entries and {leads} expired leads")
        return {"score_history": history, "leads": leads}
