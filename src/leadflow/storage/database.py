"""SQLite database for realtors, leads and the distribution queue."""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Generator

from .migrations import run_migrations
from .models import (
    Realtor,
    Team,
    TeamMember,
    TeamMemberRole,
    Property,
    Lead,
    LeadStatus,
)

DEFAULT_DB_PATH = Path.home() / ".leadflow" / "leadflow.db"


def new_id() -> str:
    return str(uuid.uuid4())[:12]


def format_ts(dt: Optional[datetime]) -> Optional[str]:
    """Fixed-width ISO timestamp so string comparison in SQL orders correctly."""
    if dt is None:
        return None
    return dt.isoformat(timespec="microseconds")


def read_setting(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM system_settings WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def write_setting(conn: sqlite3.Connection, key: str, value: Optional[str], now: Optional[datetime] = None):
    conn.execute(
        """INSERT INTO system_settings (key, value, updated_at) VALUES (?, ?, ?)
           ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
        (key, value, format_ts(now or datetime.now())),
    )


def fetch_lead(conn: sqlite3.Connection, lead_id: str) -> Optional[Lead]:
    row = conn.execute("SELECT * FROM leads WHERE id = ?", (lead_id,)).fetchone()
    return Lead.from_row(row) if row else None


class LeadflowDatabase:
    """SQLite database for storing realtors, leads and queue state.

    Reads go through ``_get_connection``. Anything that must be atomic with
    respect to other writers (who gets a lead, queue reordering) goes through
    ``transaction``, which takes the database write lock up front with
    ``BEGIN IMMEDIATE`` so concurrent callers serialize instead of racing.
    """

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 30.0):
        """Initialize database connection."""
        if db_path is None:
            db_path = DEFAULT_DB_PATH

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a block inside a single write transaction."""
        conn = self._connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
        run_migrations(str(self.db_path))

    # === REALTORS ===

    def add_realtor(
        self,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        role: str = "REALTOR",
        realtor_id: Optional[str] = None,
    ) -> Realtor:
        realtor = Realtor(id=realtor_id or new_id(), name=name, email=email, phone=phone, role=role)
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO realtors (id, name, email, phone, role, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (realtor.id, realtor.name, realtor.email, realtor.phone, realtor.role,
                 format_ts(realtor.created_at)),
            )
        return realtor

    def get_realtor(self, realtor_id: str) -> Optional[Realtor]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM realtors WHERE id = ?", (realtor_id,)).fetchone()
            return Realtor.from_row(row) if row else None

    def list_realtors(self, role: Optional[str] = None) -> List[Realtor]:
        with self._get_connection() as conn:
            if role:
                cursor = conn.execute(
                    "SELECT * FROM realtors WHERE role = ? ORDER BY created_at", (role,)
                )
            else:
                cursor = conn.execute("SELECT * FROM realtors ORDER BY created_at")
            return [Realtor.from_row(row) for row in cursor.fetchall()]

    # === TEAMS ===

    def add_team(self, name: str, owner_id: Optional[str] = None, team_id: Optional[str] = None) -> Team:
        """Create a team. The owner, if given, joins as an OWNER member."""
        team = Team(id=team_id or new_id(), name=name, owner_id=owner_id)
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO teams (id, name, owner_id, created_at) VALUES (?, ?, ?, ?)",
                (team.id, team.name, team.owner_id, format_ts(team.created_at)),
            )
            if owner_id:
                conn.execute(
                    "INSERT INTO team_members (team_id, user_id, role, created_at) VALUES (?, ?, ?, ?)",
                    (team.id, owner_id, TeamMemberRole.OWNER.value, format_ts(team.created_at)),
                )
        return team

    def get_team(self, team_id: str) -> Optional[Team]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
            return Team.from_row(row) if row else None

    def add_team_member(
        self,
        team_id: str,
        user_id: str,
        role: TeamMemberRole = TeamMemberRole.MEMBER,
    ) -> TeamMember:
        member = TeamMember(team_id=team_id, user_id=user_id, role=role)
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO team_members (team_id, user_id, role, created_at) VALUES (?, ?, ?, ?)",
                (team_id, user_id, role.value, format_ts(member.created_at)),
            )
        return member

    def get_team_members(self, team_id: str) -> List[TeamMember]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM team_members WHERE team_id = ? ORDER BY created_at, user_id",
                (team_id,),
            )
            return [TeamMember.from_row(row) for row in cursor.fetchall()]

    # === PROPERTIES ===

    def add_property(
        self,
        title: str,
        owner_id: Optional[str] = None,
        team_id: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        neighborhood: Optional[str] = None,
        property_type: Optional[str] = None,
        price: Optional[float] = None,
        bedrooms: Optional[int] = None,
        bathrooms: Optional[int] = None,
        area_m2: Optional[float] = None,
        property_id: Optional[str] = None,
    ) -> Property:
        prop = Property(
            id=property_id or new_id(),
            title=title,
            owner_id=owner_id,
            team_id=team_id,
            city=city,
            state=state,
            neighborhood=neighborhood,
            property_type=property_type,
            price=price,
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            area_m2=area_m2,
        )
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO properties (
                    id, title, owner_id, team_id, city, state, neighborhood,
                    property_type, price, bedrooms, bathrooms, area_m2, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    prop.id, prop.title, prop.owner_id, prop.team_id, prop.city,
                    prop.state, prop.neighborhood, prop.property_type, prop.price,
                    prop.bedrooms, prop.bathrooms, prop.area_m2, format_ts(prop.created_at),
                ),
            )
        return prop

    # === LEADS ===

    def get_lead(self, lead_id: str) -> Optional[Lead]:
        with self._get_connection() as conn:
            return fetch_lead(conn, lead_id)

    # === SETTINGS ===

    def get_setting(self, key: str) -> Optional[str]:
        with self._get_connection() as conn:
            return read_setting(conn, key)

    def set_setting(self, key: str, value: Optional[str]):
        with self._get_connection() as conn:
            write_setting(conn, key, value)

    # === STATS ===

    def get_stats(self) -> Dict[str, Any]:
        """Get lead counts by status plus queue size."""
        with self._get_connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM leads").fetchone()[0]
            by_status = {status.value: 0 for status in LeadStatus}
            for row in conn.execute("SELECT status, COUNT(*) AS n FROM leads GROUP BY status"):
                by_status[row["status"]] = row["n"]
            queued = conn.execute("SELECT COUNT(*) FROM realtor_queue").fetchone()[0]
            return {
                "total_leads": total,
                "by_status": by_status,
                "queued_realtors": queued,
            }
