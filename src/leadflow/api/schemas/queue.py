"""Pydantic models for realtor queue requests."""

from pydantic import BaseModel, Field

from ...storage.models import QueueStatus


class JoinQueueRequest(BaseModel):
    realtor_id: str


class MoveRequest(BaseModel):
    queue_id: str
    direction: str = Field(..., description="'up' or 'down'")


class ScoreRequest(BaseModel):
    score: int


class StatusRequest(BaseModel):
    status: QueueStatus
