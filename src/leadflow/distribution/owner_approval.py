"""Property owner approval of scheduled visits."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..notifications import notifier
from ..storage.database import LeadflowDatabase, format_ts
from ..storage.models import Lead, LeadEventType, LeadStatus, PipelineStage
from .errors import DistributionError, LeadNotAvailableError, LeadNotFoundError, PermissionDeniedError
from .events import LeadEventService
from .realtor_queue import QueueService

logger = logging.getLogger(__name__)

_LEAD_WITH_PROPERTY = """
    SELECT l.*, p.owner_id AS property_owner_id, p.title AS property_title,
           p.city AS property_city, p.state AS property_state
    FROM leads l
    LEFT JOIN properties p ON p.id = l.property_id
"""


class OwnerApprovalService:
    """Owners approve or turn down visit times proposed for their listings.

    A turned-down visit is not the realtor's fault: the lead goes back to
    PENDING and the realtor is moved up near the front of the queue with no
    score penalty.
    """

    def __init__(
        self,
        db: LeadflowDatabase,
        queue: Optional[QueueService] = None,
        events: Optional[LeadEventService] = None,
    ):
        self.db = db
        self.queue = queue or QueueService(db)
        self.events = events or LeadEventService(db)

    def _load(self, conn, lead_id: str):
        row = conn.execute(_LEAD_WITH_PROPERTY + " WHERE l.id = ?", (lead_id,)).fetchone()
        if row is None:
            raise LeadNotFoundError(lead_id)
        return Lead.from_row(row), row["property_owner_id"]

    def _check_owner(self, lead: Lead, property_owner_id: Optional[str], owner_id: str):
        if property_owner_id != owner_id:
            raise PermissionDeniedError("You are not the owner of this property")
        if lead.status != LeadStatus.WAITING_OWNER_APPROVAL:
            raise LeadNotAvailableError("Lead is not waiting for owner approval")

    def request_approval(
        self,
        lead_id: str,
        visit_date: Optional[str] = None,
        visit_time: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Lead:
        """Ask the property owner to approve the visit scheduled on an accepted lead."""
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead, owner_id = self._load(tx, lead_id)
            if not owner_id:
                raise DistributionError("Property has no owner")
            if lead.status != LeadStatus.ACCEPTED:
                raise LeadNotAvailableError("Only accepted leads can schedule a visit")

            visit_date = visit_date or lead.visit_date
            visit_time = visit_time or lead.visit_time
            tx.execute(
                """UPDATE leads SET status = ?, visit_date = ?, visit_time = ?, updated_at = ?
                   WHERE id = ?""",
                (LeadStatus.WAITING_OWNER_APPROVAL.value, visit_date, visit_time, format_ts(now), lead_id),
            )
            self.events.record(
                tx, lead_id, LeadEventType.OWNER_APPROVAL_REQUESTED,
                actor_id=lead.realtor_id,
                actor_role="REALTOR" if lead.realtor_id else None,
                title="Visit approval requested",
                from_status=lead.status.value,
                to_status=LeadStatus.WAITING_OWNER_APPROVAL.value,
                metadata={"visit_date": visit_date, "visit_time": visit_time},
                now=now,
            )
            updated, _ = self._load(tx, lead_id)

        logger.info(f"Owner approval requested for lead {lead_id} (owner {owner_id}, realtor {lead.realtor_id})")
        return updated

    def approve_visit(self, lead_id: str, owner_id: str, now: Optional[datetime] = None) -> Lead:
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead, property_owner_id = self._load(tx, lead_id)
            self._check_owner(lead, property_owner_id, owner_id)

            tx.execute(
                """UPDATE leads
                   SET status = ?, pipeline_stage = ?, owner_approved = 1,
                       owner_approved_at = ?, confirmed_at = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    LeadStatus.CONFIRMED.value, PipelineStage.VISIT.value,
                    format_ts(now), format_ts(now), format_ts(now), lead_id,
                ),
            )
            self.events.record(
                tx, lead_id, LeadEventType.VISIT_CONFIRMED,
                actor_id=owner_id,
                actor_role="OWNER",
                title="Visit approved by owner",
                from_status=lead.status.value,
                to_status=LeadStatus.CONFIRMED.value,
                from_stage=lead.effective_stage.value,
                to_stage=PipelineStage.VISIT.value,
                metadata={"visit_date": lead.visit_date, "visit_time": lead.visit_time},
                now=now,
            )
            updated, _ = self._load(tx, lead_id)

        logger.info(f"Visit approved by owner {owner_id} for lead {lead_id}")
        if lead.realtor_id:
            notifier.notify_visit_confirmed(lead_id, lead.realtor_id, lead.visit_date, lead.visit_time)
        return updated

    def reject_visit(
        self,
        lead_id: str,
        owner_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Lead:
        """Turn down the visit: the lead returns to PENDING and the realtor moves up the queue."""
        now = now or datetime.now()
        with self.db.transaction() as tx:
            lead, property_owner_id = self._load(tx, lead_id)
            self._check_owner(lead, property_owner_id, owner_id)

            tx.execute(
                """UPDATE leads
                   SET status = ?, owner_approved = 0, owner_rejected_at = ?,
                       owner_rejection_reason = ?, updated_at = ?
                   WHERE id = ?""",
                (LeadStatus.OWNER_REJECTED.value, format_ts(now), reason, format_ts(now), lead_id),
            )

            if lead.realtor_id:
                self.queue.decrement_active_leads(lead.realtor_id, conn=tx)
                self.queue.reallocate_to_top(lead.realtor_id, conn=tx)

            tx.execute("DELETE FROM lead_candidatures WHERE lead_id = ?", (lead_id,))
            tx.execute(
                """UPDATE leads
                   SET status = ?, realtor_id = NULL, candidates_count = 0,
                       reserved_until = NULL, redistribution_attempts = 0, updated_at = ?
                   WHERE id = ?""",
                (LeadStatus.PENDING.value, format_ts(now), lead_id),
            )
            self.events.record(
                tx, lead_id, LeadEventType.VISIT_REJECTED,
                actor_id=owner_id,
                actor_role="OWNER",
                title="Visit rejected by owner",
                description=reason,
                from_status=lead.status.value,
                to_status=LeadStatus.PENDING.value,
                metadata={"reason": reason},
                now=now,
            )
            updated, _ = self._load(tx, lead_id)

        logger.info(f"Visit rejected by owner {owner_id} for lead {lead_id}: {reason}")
        if lead.realtor_id:
            notifier.notify_visit_rejected(lead_id, lead.realtor_id, reason)
        return updated

    def _list(self, owner_id: str, status: LeadStatus, extra: str = "", params=()) -> List[Dict[str, Any]]:
        with self.db._get_connection() as conn:
            cursor = conn.execute(
                _LEAD_WITH_PROPERTY
                + " WHERE p.owner_id = ? AND l.status = ?"
                + extra
                + " ORDER BY l.visit_date ASC, l.visit_time ASC",
                (owner_id, status.value) + tuple(params),
            )
            results = []
            for row in cursor.fetchall():
                item = Lead.from_row(row).to_dict()
                item["visit_date"] = row["visit_date"]
                item["visit_time"] = row["visit_time"]
                item["property"] = {
                    "id": row["property_id"],
                    "title": row["property_title"],
                    "city": row["property_city"],
                    "state": row["property_state"],
                }
                results.append(item)
            return results

    def get_pending_approvals(self, owner_id: str) -> List[Dict[str, Any]]:
        return self._list(owner_id, LeadStatus.WAITING_OWNER_APPROVAL)

    def get_confirmed_visits(self, owner_id: str, today: Optional[str] = None) -> List[Dict[str, Any]]:
        """Confirmed visits from today on (``visit_date`` is an ISO date)."""
        today = today or datetime.now().date().isoformat()
        return self._list(owner_id, LeadStatus.CONFIRMED, " AND l.visit_date >= ?", (today,))
