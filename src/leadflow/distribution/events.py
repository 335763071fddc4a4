"""Lead timeline events."""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..storage.database import LeadflowDatabase, format_ts
from ..storage.models import LeadEvent, LeadEventType

logger = logging.getLogger(__name__)


class LeadEventService:
    """Record and read the timeline of a lead.

    Recording never breaks the caller: a failed insert is logged and dropped.
    """

    def __init__(self, db: LeadflowDatabase):
        self.db = db

    def record(
        self,
        conn: sqlite3.Connection,
        lead_id: str,
        event_type: LeadEventType,
        actor_id: Optional[str] = None,
        actor_role: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        from_stage: Optional[str] = None,
        to_stage: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        try:
            cursor = conn.execute(
                """INSERT INTO lead_events (
                    lead_id, type, actor_id, actor_role, title, description,
                    from_stage, to_stage, from_status, to_status, metadata_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    lead_id,
                    event_type.value,
                    actor_id,
                    actor_role,
                    title,
                    description,
                    from_stage,
                    to_stage,
                    from_status,
                    to_status,
                    json.dumps(metadata, default=str) if metadata else None,
                    format_ts(now or datetime.now()),
                ),
            )
            return cursor.lastrowid
        except sqlite3.Error as e:
            logger.error(f"Error recording lead event {event_type.value} for {lead_id}: {e}")
            return None

    def list_events(self, lead_id: str, limit: int = 200) -> List[LeadEvent]:
        """Timeline of a lead, newest first."""
        with self.db._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM lead_events WHERE lead_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (lead_id, limit),
            )
            events = []
            for row in cursor.fetchall():
                metadata = {}
                if row["metadata_json"]:
                    try:
                        metadata = json.loads(row["metadata_json"])
                    except ValueError:
                        logger.warning(f"Unreadable metadata on lead event {row['id']}")
                events.append(LeadEvent(
                    id=row["id"],
                    lead_id=row["lead_id"],
                    type=LeadEventType(row["type"]),
                    actor_id=row["actor_id"],
                    actor_role=row["actor_role"],
                    title=row["title"],
                    description=row["description"],
                    from_stage=row["from_stage"],
                    to_stage=row["to_stage"],
                    from_status=row["from_status"],
                    to_status=row["to_status"],
                    metadata=metadata,
                    created_at=datetime.fromisoformat(row["created_at"]),
                ))
            return events
