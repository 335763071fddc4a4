"""Realtor queue: ordering, scoring and position management.

Positions are dense: the N rows of ``realtor_queue`` always hold positions
1..N exactly once. Every mutation runs in one write transaction; callers that
already hold one (the lead distribution service) pass their connection in.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple, Any, Generator

from ..core.config import DistributionConfig, ADMIN_MANUAL_SCORE_ADJUST
from ..storage.database import LeadflowDatabase, format_ts, new_id
from ..storage.models import QueueEntry, QueueStatus, RealtorStats, ScoreEntry, LeadStatus
from .errors import InvalidMoveError, RealtorNotFoundError, RealtorNotInQueueError

logger = logging.getLogger(__name__)

_ENTRY_SELECT = """
    SELECT q.*, r.name AS realtor_name, r.email AS realtor_email
    FROM realtor_queue q
    JOIN realtors r ON r.id = q.realtor_id
"""


class QueueService:
    """Manage the ordered, scored pool of realtors receiving leads."""

    def __init__(self, db: LeadflowDatabase, config: Optional[DistributionConfig] = None):
        self.db = db
        self.config = config or DistributionConfig()

    @contextmanager
    def _tx(self, conn: Optional[sqlite3.Connection] = None) -> Generator[sqlite3.Connection, None, None]:
        """Join the caller's transaction or open a new one."""
        if conn is not None:
            yield conn
        else:
            with self.db.transaction() as new_conn:
                yield new_conn

    # === LOOKUPS ===

    def _fetch_entry(self, conn: sqlite3.Connection, realtor_id: str) -> Optional[QueueEntry]:
        row = conn.execute(_ENTRY_SELECT + " WHERE q.realtor_id = ?", (realtor_id,)).fetchone()
        return QueueEntry.from_row(row) if row else None

    def _require_entry(self, conn: sqlite3.Connection, realtor_id: str) -> QueueEntry:
        entry = self._fetch_entry(conn, realtor_id)
        if entry is None:
            raise RealtorNotInQueueError(realtor_id)
        return entry

    def _count(self, conn: sqlite3.Connection) -> int:
        return conn.execute("SELECT COUNT(*) FROM realtor_queue").fetchone()[0]

    def _max_position(self, conn: sqlite3.Connection) -> int:
        return conn.execute("SELECT COALESCE(MAX(position), 0) FROM realtor_queue").fetchone()[0]

    def get_entry(self, realtor_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[QueueEntry]:
        if conn is not None:
            return self._fetch_entry(conn, realtor_id)
        with self.db._get_connection() as read_conn:
            return self._fetch_entry(read_conn, realtor_id)

    def list_queue(self, status: Optional[QueueStatus] = None) -> List[QueueEntry]:
        """All entries in position order."""
        with self.db._get_connection() as conn:
            if status:
                cursor = conn.execute(
                    _ENTRY_SELECT + " WHERE q.status = ? ORDER BY q.position", (status.value,)
                )
            else:
                cursor = conn.execute(_ENTRY_SELECT + " ORDER BY q.position")
            return [QueueEntry.from_row(row) for row in cursor.fetchall()]

    def get_position(self, realtor_id: str) -> Optional[QueueEntry]:
        """Entry with ``actual_position`` = rank among ACTIVE realtors."""
        with self.db._get_connection() as conn:
            entry = self._fetch_entry(conn, realtor_id)
            if entry is None:
                return None
            ahead = conn.execute(
                "SELECT COUNT(*) FROM realtor_queue WHERE position < ? AND status = ?",
                (entry.position, QueueStatus.ACTIVE.value),
            ).fetchone()[0]
            entry.actual_position = ahead + 1
            return entry

    def get_queue_stats(self) -> Dict[str, Any]:
        with self.db._get_connection() as conn:
            total = self._count(conn)
            row = conn.execute(
                """SELECT COUNT(*) AS active, AVG(score) AS avg_score,
                          AVG(avg_response_time) AS avg_wait
                   FROM realtor_queue WHERE status = ?""",
                (QueueStatus.ACTIVE.value,),
            ).fetchone()
            return {
                "total": total,
                "active": row["active"],
                "avg_score": round(row["avg_score"] or 0),
                "avg_wait_time": round(row["avg_wait"] or 0),
            }

    def get_realtor_stats(self, realtor_id: str) -> Optional[RealtorStats]:
        """Lifetime lead counters for a realtor, or None if they never had any."""
        with self.db._get_connection() as conn:
            row = conn.execute("SELECT * FROM realtor_stats WHERE realtor_id = ?", (realtor_id,)).fetchone()
            return RealtorStats.from_row(row) if row else None

    def get_score_history(self, realtor_id: str, limit: int = 50) -> List[ScoreEntry]:
        with self.db._get_connection() as conn:
            cursor = conn.execute(
                """SELECT h.* FROM score_history h
                   JOIN realtor_queue q ON q.id = h.queue_id
                   WHERE q.realtor_id = ?
                   ORDER BY h.created_at DESC, h.id DESC LIMIT ?""",
                (realtor_id, limit),
            )
            return [ScoreEntry.from_row(row) for row in cursor.fetchall()]

    # === MEMBERSHIP ===

    def join_queue(
        self,
        realtor_id: str,
        conn: Optional[sqlite3.Connection] = None,
        now: Optional[datetime] = None,
    ) -> QueueEntry:
        """Append a realtor to the end of the queue (no-op if already queued)."""
        now = now or datetime.now()
        with self._tx(conn) as tx:
            existing = self._fetch_entry(tx, realtor_id)
            if existing:
                return existing

            if not tx.execute("SELECT 1 FROM realtors WHERE id = ?", (realtor_id,)).fetchone():
                raise RealtorNotFoundError(realtor_id)

            position = self._max_position(tx) + 1
            tx.execute(
                """INSERT INTO realtor_queue (id, realtor_id, position, score, status, last_activity, created_at)
                   VALUES (?, ?, ?, 0, ?, ?, ?)""",
                (new_id(), realtor_id, position, QueueStatus.ACTIVE.value, format_ts(now), format_ts(now)),
            )
            tx.execute(
                "INSERT INTO realtor_stats (realtor_id) VALUES (?) ON CONFLICT(realtor_id) DO NOTHING",
                (realtor_id,),
            )
            logger.info(f"Realtor {realtor_id} joined queue at position {position}")
            return self._fetch_entry(tx, realtor_id)

    def leave_queue(self, realtor_id: str) -> bool:
        """Remove a realtor and close the gap behind them."""
        with self.db.transaction() as tx:
            entry = self._fetch_entry(tx, realtor_id)
            if entry is None:
                return False
            tx.execute("DELETE FROM realtor_queue WHERE id = ?", (entry.id,))
            tx.execute(
                "UPDATE realtor_queue SET position = position - 1 WHERE position > ?",
                (entry.position,),
            )
            logger.info(f"Realtor {realtor_id} left queue from position {entry.position}")
            return True

    def set_status(self, realtor_id: str, status: QueueStatus) -> QueueEntry:
        """Pause, resume or deactivate a realtor without losing their place."""
        with self.db.transaction() as tx:
            self._require_entry(tx, realtor_id)
            tx.execute(
                "UPDATE realtor_queue SET status = ?, last_activity = ? WHERE realtor_id = ?",
                (status.value, format_ts(datetime.now()), realtor_id),
            )
            return self._fetch_entry(tx, realtor_id)

    def initialize_from_realtors(self) -> Tuple[int, int]:
        """Enqueue every REALTOR not yet queued. Returns (added, skipped)."""
        added = skipped = 0
        for realtor in self.db.list_realtors(role="REALTOR"):
            with self.db.transaction() as tx:
                if self._fetch_entry(tx, realtor.id):
                    skipped += 1
                    continue
                self.join_queue(realtor.id, conn=tx)
                added += 1
        return added, skipped

    # === SELECTION ===

    def get_next_realtor(
        self,
        conn: Optional[sqlite3.Connection] = None,
        exclude: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> Optional[QueueEntry]:
        """Next eligible realtor: ACTIVE, under the active-lead cap, not holding a live reservation."""
        now = now or datetime.now()
        exclude = [realtor_id for realtor_id in exclude if realtor_id]

        query = _ENTRY_SELECT + """
            WHERE q.status = ?
              AND q.active_leads < ?
              AND NOT EXISTS (
                  SELECT 1 FROM leads l
                  WHERE l.realtor_id = q.realtor_id
                    AND l.status = ?
                    AND l.reserved_until > ?
              )
        """
        params: List[Any] = [
            QueueStatus.ACTIVE.value,
            self.config.max_active_leads,
            LeadStatus.RESERVED.value,
            format_ts(now),
        ]
        if exclude:
            query += f" AND q.realtor_id NOT IN ({', '.join('?' for _ in exclude)})"
            params.extend(exclude)
        query += " ORDER BY q.position ASC, q.score DESC LIMIT 1"

        if conn is not None:
            row = conn.execute(query, params).fetchone()
        else:
            with self.db._get_connection() as read_conn:
                row = read_conn.execute(query, params).fetchone()
        return QueueEntry.from_row(row) if row else None

    # === POSITIONS ===

    def move_to_end(
        self,
        realtor_id: str,
        conn: Optional[sqlite3.Connection] = None,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        """Send a realtor to the back of the queue. Returns the new position."""
        now = now or datetime.now()
        with self._tx(conn) as tx:
            entry = self._fetch_entry(tx, realtor_id)
            if entry is None:
                return None

            last = self._count(tx)
            if entry.position != last:
                tx.execute(
                    "UPDATE realtor_queue SET position = position - 1 WHERE position > ?",
                    (entry.position,),
                )
            tx.execute(
                "UPDATE realtor_queue SET position = ?, last_activity = ? WHERE id = ?",
                (last, format_ts(now), entry.id),
            )
            return last

    def move(self, queue_id: str, direction: str) -> Dict[str, Any]:
        """Swap an entry with its neighbour ("up" or "down")."""
        if direction not in ("up", "down"):
            raise InvalidMoveError("direction must be 'up' or 'down'")

        with self.db.transaction() as tx:
            row = tx.execute("SELECT * FROM realtor_queue WHERE id = ?", (queue_id,)).fetchone()
            if row is None:
                raise RealtorNotInQueueError(queue_id)

            current = row["position"]
            target = current - 1 if direction == "up" else current + 1
            if target < 1 or target > self._count(tx):
                raise InvalidMoveError(f"Invalid position: {target}")

            other = tx.execute(
                "SELECT * FROM realtor_queue WHERE position = ?", (target,)
            ).fetchone()
            if other is None:
                raise InvalidMoveError(f"No queue entry at position {target}")

            tx.execute("UPDATE realtor_queue SET position = ? WHERE id = ?", (current, other["id"]))
            tx.execute("UPDATE realtor_queue SET position = ? WHERE id = ?", (target, queue_id))

            logger.info(
                f"Queue entry {queue_id} moved {direction}: {current} -> {target} "
                f"(swapped with {other['id']})"
            )
            return {
                "queue_id": queue_id,
                "realtor_id": row["realtor_id"],
                "old_position": current,
                "new_position": target,
                "swapped_with_queue_id": other["id"],
                "swapped_with_realtor_id": other["realtor_id"],
            }

    def reallocate_to_top(
        self,
        realtor_id: str,
        top: Optional[int] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[int]:
        """Move a realtor up to the ``top``-th active slot, without penalty.

        Realtors already at or ahead of that slot stay put.
        """
        top = top or self.config.owner_reject_top_position
        with self._tx(conn) as tx:
            entry = self._fetch_entry(tx, realtor_id)
            if entry is None:
                logger.warning(f"Realtor queue not found: {realtor_id}")
                return None

            leaders = tx.execute(
                "SELECT position FROM realtor_queue WHERE status = ? ORDER BY position LIMIT ?",
                (QueueStatus.ACTIVE.value, top),
            ).fetchall()
            if len(leaders) >= top:
                target = leaders[top - 1]["position"]
            else:
                target = min(top, self._count(tx))

            now = format_ts(datetime.now())
            if entry.position <= target:
                tx.execute(
                    "UPDATE realtor_queue SET last_activity = ? WHERE id = ?", (now, entry.id)
                )
                return entry.position

            tx.execute(
                """UPDATE realtor_queue SET position = position + 1
                   WHERE position >= ? AND position < ? AND id != ?""",
                (target, entry.position, entry.id),
            )
            tx.execute(
                "UPDATE realtor_queue SET position = ?, last_activity = ? WHERE id = ?",
                (target, now, entry.id),
            )
            logger.info(f"Realtor {realtor_id} reallocated to position {target}")
            return target

    def recalculate_positions(self) -> int:
        """Reorder by score: ACTIVE first (score desc, oldest first), others after in their current order."""
        with self.db.transaction() as tx:
            active = tx.execute(
                "SELECT id FROM realtor_queue WHERE status = ? ORDER BY score DESC, created_at ASC",
                (QueueStatus.ACTIVE.value,),
            ).fetchall()
            others = tx.execute(
                "SELECT id FROM realtor_queue WHERE status != ? ORDER BY position ASC",
                (QueueStatus.ACTIVE.value,),
            ).fetchall()

            for position, row in enumerate(list(active) + list(others), start=1):
                tx.execute("UPDATE realtor_queue SET position = ? WHERE id = ?", (position, row["id"]))

            logger.info(f"Queue recalculated: {len(active)} active, {len(others)} inactive")
            return len(active)

    # === SCORE ===

    def update_score(
        self,
        realtor_id: str,
        points: int,
        action: str,
        description: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        """Apply a score delta (floored at zero) and record it. Returns the new score."""
        now = now or datetime.now()
        with self._tx(conn) as tx:
            entry = self._fetch_entry(tx, realtor_id)
            if entry is None:
                return None

            new_score = max(0, entry.score + points)
            tx.execute(
                "UPDATE realtor_queue SET score = ?, last_activity = ? WHERE id = ?",
                (new_score, format_ts(now), entry.id),
            )
            tx.execute(
                """INSERT INTO score_history (queue_id, action, points, description, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (entry.id, action, points, description, format_ts(now)),
            )
            return new_score

    def set_score(self, realtor_id: str, new_score: int) -> QueueEntry:
        """Admin override of a realtor's score."""
        if new_score < 0:
            raise ValueError("Score must be an integer greater than or equal to zero")

        with self.db.transaction() as tx:
            entry = self._require_entry(tx, realtor_id)
            now = format_ts(datetime.now())
            tx.execute(
                "UPDATE realtor_queue SET score = ?, last_activity = ? WHERE id = ?",
                (new_score, now, entry.id),
            )
            tx.execute(
                """INSERT INTO score_history (queue_id, action, points, description, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    ADMIN_MANUAL_SCORE_ADJUST,
                    new_score - entry.score,
                    f"Manual score adjustment from {entry.score} to {new_score}",
                    now,
                ),
            )
            logger.info(f"Admin set score for {realtor_id}: {entry.score} -> {new_score}")
            return self._fetch_entry(tx, realtor_id)

    # === COUNTERS ===

    def _bump(self, realtor_id: str, assignments: str, conn: Optional[sqlite3.Connection]):
        with self._tx(conn) as tx:
            tx.execute(
                f"UPDATE realtor_queue SET {assignments}, last_activity = ? WHERE realtor_id = ?",
                (format_ts(datetime.now()), realtor_id),
            )

    def increment_active_leads(self, realtor_id: str, conn: Optional[sqlite3.Connection] = None):
        self._bump(realtor_id, "active_leads = active_leads + 1, total_accepted = total_accepted + 1", conn)

    def decrement_active_leads(self, realtor_id: str, conn: Optional[sqlite3.Connection] = None):
        self._bump(realtor_id, "active_leads = MAX(active_leads - 1, 0)", conn)

    def increment_rejected(self, realtor_id: str, conn: Optional[sqlite3.Connection] = None):
        self._bump(realtor_id, "total_rejected = total_rejected + 1", conn)

    def increment_expired(self, realtor_id: str, conn: Optional[sqlite3.Connection] = None):
        self._bump(realtor_id, "total_expired = total_expired + 1", conn)
