"""Pydantic models for lead distribution requests."""

from typing import Optional
from pydantic import BaseModel

from ...storage.models import LostReason, PipelineStage


class CreateLeadRequest(BaseModel):
    property_id: Optional[str] = None
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    message: Optional[str] = None
    team_id: Optional[str] = None
    visit_date: Optional[str] = None
    visit_time: Optional[str] = None
    distribute: bool = True


class RealtorActionRequest(BaseModel):
    realtor_id: str


class ActorRequest(BaseModel):
    actor_id: str
    role: Optional[str] = None


class PipelineStageRequest(ActorRequest):
    stage: PipelineStage


class LostRequest(ActorRequest):
    reason: Optional[LostReason] = None


class AssignRequest(ActorRequest):
    realtor_id: str


class RatingRequest(BaseModel):
    rating: int
    comment: Optional[str] = None


class VisitRequest(BaseModel):
    visit_date: Optional[str] = None
    visit_time: Optional[str] = None


class OwnerDecisionRequest(BaseModel):
    owner_id: str
    reason: Optional[str] = None
