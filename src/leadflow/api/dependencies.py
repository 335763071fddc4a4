"""Service wiring and error mapping shared by the routes."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from fastapi import HTTPException, Request

from ..core.config import DistributionConfig, DistributionConfigManager
from ..distribution import (
    DuplicateCandidatureError,
    LeadAlreadyAcceptedError,
    LeadDistributionService,
    LeadEventService,
    LeadNotFoundError,
    LeadReservedError,
    OwnerApprovalService,
    PermissionDeniedError,
    QueueService,
    RealtorNotFoundError,
    RealtorNotInQueueError,
    TeamNotFoundError,
    TeamSettingsService,
)
from ..storage.database import LeadflowDatabase
from .config import settings

logger = logging.getLogger(__name__)

NOT_FOUND_ERRORS = (LeadNotFoundError, TeamNotFoundError, RealtorNotFoundError, RealtorNotInQueueError)
CONFLICT_ERRORS = (LeadAlreadyAcceptedError, LeadReservedError, DuplicateCandidatureError)


@dataclass
class Services:
    db: LeadflowDatabase
    config: DistributionConfig
    queue: QueueService
    leads: LeadDistributionService
    events: LeadEventService
    teams: TeamSettingsService
    approvals: OwnerApprovalService

    @classmethod
    def build(cls, db_path: str, config: DistributionConfig) -> "Services":
        db = LeadflowDatabase(Path(db_path))
        queue = QueueService(db, config)
        events = LeadEventService(db)
        teams = TeamSettingsService(db)
        return cls(
            db=db,
            config=config,
            queue=queue,
            leads=LeadDistributionService(db, config, queue=queue, events=events, team_settings=teams),
            events=events,
            teams=teams,
            approvals=OwnerApprovalService(db, queue=queue, events=events),
        )


def services_for(app) -> Services:
    """Services bound to the app, built on first use."""
    state = app.state
    if getattr(state, "services", None) is None:
        db_path = getattr(state, "db_path", None) or settings.db_path
        config = getattr(state, "distribution_config", None)
        if config is None:
            config_path = settings.config_path
            config = DistributionConfigManager(Path(config_path) if config_path else None).config
        state.services = Services.build(db_path, config)
    return state.services


def get_services(request: Request) -> Services:
    return services_for(request.app)


def error_response(status_code: int, error: str, detail: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"success": False, "error": error, "detail": detail},
    )


@contextmanager
def handle_errors(action: str):
    """Translate service errors into HTTP errors."""
    try:
        yield
    except HTTPException:
        raise
    except NOT_FOUND_ERRORS as e:
        raise error_response(404, "not_found", str(e))
    except PermissionDeniedError as e:
        raise error_response(403, "forbidden", str(e))
    except CONFLICT_ERRORS as e:
        raise error_response(409, "conflict", str(e))
    except ValueError as e:
        raise error_response(400, "validation_error", str(e))
    except Exception:
        logger.exception(f"Error during {action}")
        raise error_response(500, "server_error", "Internal processing error")
