"""Data models for lead distribution storage."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class LeadStatus(Enum):
    """Status of a lead in the distribution flow."""

    PENDING = "PENDING"
    RESERVED = "RESERVED"
    AVAILABLE = "AVAILABLE"
    ACCEPTED = "ACCEPTED"
    WAITING_OWNER_APPROVAL = "WAITING_OWNER_APPROVAL"
    CONFIRMED = "CONFIRMED"
    OWNER_REJECTED = "OWNER_REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class PipelineStage(Enum):
    """Coarse CRM stage of a lead."""

    NEW = "NEW"
    CONTACT = "CONTACT"
    VISIT = "VISIT"
    PROPOSAL = "PROPOSAL"
    DOCUMENTS = "DOCUMENTS"
    WON = "WON"
    LOST = "LOST"


class QueueStatus(Enum):
    """Realtor queue entry status."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    INACTIVE = "INACTIVE"


class CandidatureStatus(Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class LostReason(Enum):
    """Why a lead was lost."""

    CLIENT_GAVE_UP = "CLIENT_GAVE_UP"
    CLOSED_OTHER_PROPERTY = "CLOSED_OTHER_PROPERTY"
    FINANCIAL_CONDITION = "FINANCIAL_CONDITION"
    NO_RESPONSE = "NO_RESPONSE"
    OTHER = "OTHER"


class TeamMemberRole(Enum):
    OWNER = "OWNER"
    MEMBER = "MEMBER"
    ASSISTANT = "ASSISTANT"


class DistributionMode(Enum):
    """How a team hands out its leads."""

    ROUND_ROBIN = "ROUND_ROBIN"
    CAPTURER_FIRST = "CAPTURER_FIRST"
    MANUAL = "MANUAL"


class LeadEventType(Enum):
    """Types of lead timeline events."""

    LEAD_CREATED = "LEAD_CREATED"
    LEAD_DISTRIBUTED = "LEAD_DISTRIBUTED"
    LEAD_ACCEPTED = "LEAD_ACCEPTED"
    LEAD_REJECTED = "LEAD_REJECTED"
    LEAD_RELEASED = "LEAD_RELEASED"
    LEAD_COMPLETED = "LEAD_COMPLETED"
    LEAD_LOST = "LEAD_LOST"
    LEAD_EXPIRED = "LEAD_EXPIRED"
    LEAD_REASSIGNED = "LEAD_REASSIGNED"
    STAGE_CHANGED = "STAGE_CHANGED"
    CANDIDATURE_CREATED = "CANDIDATURE_CREATED"
    OWNER_APPROVAL_REQUESTED = "OWNER_APPROVAL_REQUESTED"
    VISIT_CONFIRMED = "VISIT_CONFIRMED"
    VISIT_REJECTED = "VISIT_REJECTED"


# Statuses that hold a realtor's attention (count toward "my leads")
OPEN_STATUSES = (LeadStatus.RESERVED, LeadStatus.ACCEPTED)

# Statuses counted in a realtor's active_leads
ACTIVE_LEAD_STATUSES = (
    LeadStatus.ACCEPTED,
    LeadStatus.WAITING_OWNER_APPROVAL,
    LeadStatus.CONFIRMED,
)

CLOSED_STATUSES = (
    LeadStatus.COMPLETED,
    LeadStatus.CANCELLED,
    LeadStatus.EXPIRED,
    LeadStatus.OWNER_REJECTED,
)


def stage_for_status(status: LeadStatus) -> PipelineStage:
    """Infer a pipeline stage for leads that never had one set."""
    if status == LeadStatus.ACCEPTED:
        return PipelineStage.CONTACT
    if status == LeadStatus.CONFIRMED:
        return PipelineStage.VISIT
    if status == LeadStatus.COMPLETED:
        return PipelineStage.WON
    if status in (LeadStatus.CANCELLED, LeadStatus.EXPIRED, LeadStatus.OWNER_REJECTED):
        return PipelineStage.LOST
    return PipelineStage.NEW


def _parse_dt(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Realtor:
    """A user who can receive leads."""

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = "REALTOR"
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row) -> "Realtor":
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            phone=row["phone"],
            role=row["role"],
            created_at=_parse_dt(row["created_at"]) or datetime.now(),
        )


@dataclass
class Team:
    id: str
    name: str
    owner_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row) -> "Team":
        return cls(
            id=row["id"],
            name=row["name"],
            owner_id=row["owner_id"],
            created_at=_parse_dt(row["created_at"]) or datetime.now(),
        )


@dataclass
class TeamMember:
    team_id: str
    user_id: str
    role: TeamMemberRole = TeamMemberRole.MEMBER
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row) -> "TeamMember":
        return cls(
            team_id=row["team_id"],
            user_id=row["user_id"],
            role=TeamMemberRole(row["role"]),
            created_at=_parse_dt(row["created_at"]) or datetime.now(),
        )


@dataclass
class Property:
    """Listing summary used for lead filtering."""

    id: str
    title: str
    owner_id: Optional[str] = None
    team_id: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    neighborhood: Optional[str] = None
    property_type: Optional[str] = None
    price: Optional[float] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    area_m2: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row) -> "Property":
        return cls(
            id=row["id"],
            title=row["title"],
            owner_id=row["owner_id"],
            team_id=row["team_id"],
            city=row["city"],
            state=row["state"],
            neighborhood=row["neighborhood"],
            property_type=row["property_type"],
            price=row["price"],
            bedrooms=row["bedrooms"],
            bathrooms=row["bathrooms"],
            area_m2=row["area_m2"],
            created_at=_parse_dt(row["created_at"]) or datetime.now(),
        )


@dataclass
class Lead:
    """An inbound inquiry tied to a property."""

    id: str
    property_id: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    message: Optional[str] = None

    status: LeadStatus = LeadStatus.PENDING
    pipeline_stage: Optional[PipelineStage] = None
    lost_reason: Optional[LostReason] = None

    realtor_id: Optional[str] = None
    team_id: Optional[str] = None
    reserved_until: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    candidates_count: int = 0
    redistribution_attempts: int = 0

    # Visit and owner approval
    visit_date: Optional[str] = None
    visit_time: Optional[str] = None
    owner_approved: Optional[bool] = None
    owner_approved_at: Optional[datetime] = None
    owner_rejected_at: Optional[datetime] = None
    owner_rejection_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def effective_stage(self) -> PipelineStage:
        return self.pipeline_stage or stage_for_status(self.status)

    def is_reserved_for_other(self, realtor_id: str, now: datetime) -> bool:
        """True while another realtor still holds the reservation window."""
        return (
            self.status == LeadStatus.RESERVED
            and self.realtor_id is not None
            and self.realtor_id != realtor_id
            and self.reserved_until is not None
            and self.reserved_until > now
        )

    @classmethod
    def from_row(cls, row) -> "Lead":
        owner_approved = row["owner_approved"]
        return cls(
            id=row["id"],
            property_id=row["property_id"],
            contact_name=row["contact_name"],
            contact_email=row["contact_email"],
            contact_phone=row["contact_phone"],
            message=row["message"],
            status=LeadStatus(row["status"]),
            pipeline_stage=PipelineStage(row["pipeline_stage"]) if row["pipeline_stage"] else None,
            lost_reason=LostReason(row["lost_reason"]) if row["lost_reason"] else None,
            realtor_id=row["realtor_id"],
            team_id=row["team_id"],
            reserved_until=_parse_dt(row["reserved_until"]),
            responded_at=_parse_dt(row["responded_at"]),
            expires_at=_parse_dt(row["expires_at"]),
            completed_at=_parse_dt(row["completed_at"]),
            candidates_count=row["candidates_count"] or 0,
            redistribution_attempts=row["redistribution_attempts"] or 0,
            visit_date=row["visit_date"],
            visit_time=row["visit_time"],
            owner_approved=None if owner_approved is None else bool(owner_approved),
            owner_approved_at=_parse_dt(row["owner_approved_at"]),
            owner_rejected_at=_parse_dt(row["owner_rejected_at"]),
            owner_rejection_reason=row["owner_rejection_reason"],
            confirmed_at=_parse_dt(row["confirmed_at"]),
            created_at=_parse_dt(row["created_at"]) or datetime.now(),
            updated_at=_parse_dt(row["updated_at"]) or datetime.now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "contact_name": self.contact_name,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "message": self.message,
            "status": self.status.value,
            "pipeline_stage": self.effective_stage.value,
            "lost_reason": self.lost_reason.value if self.lost_reason else None,
            "realtor_id": self.realtor_id,
            "team_id": self.team_id,
            "reserved_until": self.reserved_until.isoformat() if self.reserved_until else None,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "candidates_count": self.candidates_count,
            "redistribution_attempts": self.redistribution_attempts,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class QueueEntry:
    """A realtor's place in the distribution queue."""

    id: str
    realtor_id: str
    position: int
    score: int = 0
    status: QueueStatus = QueueStatus.ACTIVE
    active_leads: int = 0
    bonus_leads: int = 0
    total_accepted: int = 0
    total_rejected: int = 0
    total_expired: int = 0
    avg_response_time: Optional[int] = None
    last_activity: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)

    # Filled by lookups that join the realtor row
    realtor_name: Optional[str] = None
    realtor_email: Optional[str] = None
    # Rank among ACTIVE entries, filled by position lookups
    actual_position: Optional[int] = None

    @classmethod
    def from_row(cls, row) -> "QueueEntry":
        keys = row.keys()
        return cls(
            id=row["id"],
            realtor_id=row["realtor_id"],
            position=row["position"],
            score=row["score"] or 0,
            status=QueueStatus(row["status"]),
            active_leads=row["active_leads"] or 0,
            bonus_leads=row["bonus_leads"] or 0,
            total_accepted=row["total_accepted"] or 0,
            total_rejected=row["total_rejected"] or 0,
            total_expired=row["total_expired"] or 0,
            avg_response_time=row["avg_response_time"],
            last_activity=_parse_dt(row["last_activity"]),
            created_at=_parse_dt(row["created_at"]) or datetime.now(),
            realtor_name=row["realtor_name"] if "realtor_name" in keys else None,
            realtor_email=row["realtor_email"] if "realtor_email" in keys else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "realtor_id": self.realtor_id,
            "realtor_name": self.realtor_name,
            "position": self.position,
            "actual_position": self.actual_position,
            "score": self.score,
            "status": self.status.value,
            "active_leads": self.active_leads,
            "bonus_leads": self.bonus_leads,
            "total_accepted": self.total_accepted,
            "total_rejected": self.total_rejected,
            "total_expired": self.total_expired,
            "avg_response_time": self.avg_response_time,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }


@dataclass
class RealtorStats:
    realtor_id: str
    leads_accepted: int = 0
    leads_rejected: int = 0
    leads_expired: int = 0
    leads_completed: int = 0
    total_response_time: int = 0
    avg_response_time: Optional[int] = None
    avg_rating: Optional[float] = None
    total_ratings: int = 0
    last_lead_accepted_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "RealtorStats":
        return cls(
            realtor_id=row["realtor_id"],
            leads_accepted=row["leads_accepted"] or 0,
            leads_rejected=row["leads_rejected"] or 0,
            leads_expired=row["leads_expired"] or 0,
            leads_completed=row["leads_completed"] or 0,
            total_response_time=row["total_response_time"] or 0,
            avg_response_time=row["avg_response_time"],
            avg_rating=row["avg_rating"],
            total_ratings=row["total_ratings"] or 0,
            last_lead_accepted_at=_parse_dt(row["last_lead_accepted_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "realtor_id": self.realtor_id,
            "leads_accepted": self.leads_accepted,
            "leads_rejected": self.leads_rejected,
            "leads_expired": self.leads_expired,
            "leads_completed": self.leads_completed,
            "avg_response_time": self.avg_response_time,
            "avg_rating": self.avg_rating,
            "total_ratings": self.total_ratings,
            "last_lead_accepted_at": (
                self.last_lead_accepted_at.isoformat() if self.last_lead_accepted_at else None
            ),
        }


@dataclass
class ScoreEntry:
    """One score change in a realtor's history."""

    id: int
    queue_id: str
    action: str
    points: int
    description: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row) -> "ScoreEntry":
        return cls(
            id=row["id"],
            queue_id=row["queue_id"],
            action=row["action"],
            points=row["points"],
            description=row["description"],
            created_at=_parse_dt(row["created_at"]) or datetime.now(),
        )


@dataclass
class Candidature:
    """A realtor's application to a lead on the mural."""

    id: str
    lead_id: str
    queue_id: str
    status: CandidatureStatus = CandidatureStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row) -> "Candidature":
        return cls(
            id=row["id"],
            lead_id=row["lead_id"],
            queue_id=row["queue_id"],
            status=CandidatureStatus(row["status"]),
            created_at=_parse_dt(row["created_at"]) or datetime.now(),
        )


@dataclass
class LeadEvent:
    id: int
    lead_id: str
    type: LeadEventType
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    from_stage: Optional[str] = None
    to_stage: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Rating:
    id: str
    lead_id: str
    realtor_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
