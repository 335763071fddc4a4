"""Team distribution settings routes."""

from fastapi import APIRouter, Depends

from ..dependencies import Services, get_services, handle_errors
from ..middleware.auth import verify_signature
from ..schemas.common import ERROR_RESPONSES
from ..schemas.team import TeamSettingsUpdate
from ...distribution.errors import TeamNotFoundError

router = APIRouter(prefix="/v1/teams", tags=["teams"], responses=ERROR_RESPONSES)


@router.get("/{team_id}/settings")
def get_settings(team_id: str, services: Services = Depends(get_services)):
    with handle_errors("team settings read"):
        if services.db.get_team(team_id) is None:
            raise TeamNotFoundError(team_id)
        return services.teams.get(team_id).to_dict()


@router.put("/{team_id}/settings")
def update_settings(
    team_id: str,
    payload: TeamSettingsUpdate,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    """Change how a team hands out its leads. Team owners and admins only."""
    with handle_errors("team settings update"):
        updated = services.teams.update(
            team_id,
            payload.actor_id,
            payload.role,
            payload.lead_distribution_mode,
            reservation_minutes=payload.lead_reservation_minutes,
            max_redistribution_attempts=payload.lead_max_redistribution_attempts,
        )
    return {"success": True, "settings": updated.to_dict()}
