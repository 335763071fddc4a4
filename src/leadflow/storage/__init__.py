"""Storage layer for realtors, leads and the distribution queue."""

from .database import LeadflowDatabase
from .models import Lead, LeadStatus, PipelineStage, QueueEntry, QueueStatus

__all__ = ["LeadflowDatabase", "Lead", "LeadStatus", "PipelineStage", "QueueEntry", "QueueStatus"]
