"""Realtor queue and lead distribution."""

from .errors import (
    DistributionError,
    DuplicateCandidatureError,
    InvalidMoveError,
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
from .leads import AcceptResult, LeadDistributionService
from .owner_approval import OwnerApprovalService
from .realtor_queue import QueueService
from .teams import TeamRouter, TeamSettings, TeamSettingsService

__all__ = [
    "AcceptResult",
    "DistributionError",
    "DuplicateCandidatureError",
    "InvalidMoveError",
    "LeadAlreadyAcceptedError",
    "LeadEventService",
    "LeadDistributionService",
    "LeadNotAvailableError",
    "LeadNotFoundError",
    "LeadReservedError",
    "NotLeadHolderError",
    "OwnerApprovalService",
    "PermissionDeniedError",
    "QueueService",
    "RealtorNotFoundError",
    "RealtorNotInQueueError",
    "TeamNotFoundError",
    "TeamRouter",
    "TeamSettings",
    "TeamSettingsService",
]
