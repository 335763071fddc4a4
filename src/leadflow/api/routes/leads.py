"""Lead distribution routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import Services, error_response, get_services, handle_errors
from ..middleware.auth import verify_signature
from ..schemas.common import ERROR_RESPONSES
from ..schemas.lead import (
    AssignRequest,
    CreateLeadRequest,
    LostRequest,
    OwnerDecisionRequest,
    PipelineStageRequest,
    RatingRequest,
    RealtorActionRequest,
    VisitRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/leads", tags=["leads"], responses=ERROR_RESPONSES)
realtors_router = APIRouter(prefix="/v1/realtors", tags=["leads"], responses=ERROR_RESPONSES)


@router.post("")
def create_lead(
    payload: CreateLeadRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    """Store an inbound lead and, unless told otherwise, distribute it right away."""
    with handle_errors("lead creation"):
        lead = services.leads.create_lead(
            property_id=payload.property_id,
            contact_name=payload.contact_name,
            contact_email=payload.contact_email,
            contact_phone=payload.contact_phone,
            message=payload.message,
            team_id=payload.team_id,
            visit_date=payload.visit_date,
            visit_time=payload.visit_time,
        )
        if payload.distribute:
            lead = services.leads.distribute_new_lead(lead.id)
    return {"success": True, "lead": lead.to_dict()}


@router.get("/available")
def available_leads(
    city: Optional[str] = None,
    state: Optional[str] = None,
    property_type: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    limit: int = Query(default=50, le=200),
    services: Services = Depends(get_services),
):
    """Leads on the mural."""
    with handle_errors("mural listing"):
        return services.leads.get_available_leads(
            city=city,
            state=state,
            property_type=property_type,
            min_price=min_price,
            max_price=max_price,
            limit=limit,
        )


@router.post("/{lead_id}/distribute")
def distribute(
    lead_id: str,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("lead distribution"):
        lead = services.leads.distribute_new_lead(lead_id)
    return {"success": True, "lead": lead.to_dict()}


@router.post("/{lead_id}/accept")
def accept(
    lead_id: str,
    payload: RealtorActionRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("lead accept"):
        result = services.leads.accept_lead(lead_id, payload.realtor_id)
    return {"success": True, **result.to_dict()}


@router.post("/{lead_id}/reject")
def reject(
    lead_id: str,
    payload: RealtorActionRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("lead reject"):
        lead = services.leads.reject_lead(lead_id, payload.realtor_id)
    return {"success": True, "lead": lead.to_dict()}


@router.post("/{lead_id}/candidates")
def candidate(
    lead_id: str,
    payload: RealtorActionRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    """Apply for a lead on the mural."""
    with handle_errors("lead candidature"):
        candidature = services.leads.candidate_to_lead(lead_id, payload.realtor_id)
    return {
        "success": True,
        "candidature": {
            "id": candidature.id,
            "lead_id": candidature.lead_id,
            "queue_id": candidature.queue_id,
            "status": candidature.status.value,
            "created_at": candidature.created_at.isoformat(),
        },
    }


@router.post("/{lead_id}/complete")
def complete(
    lead_id: str,
    payload: RealtorActionRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("lead completion"):
        lead = services.leads.complete_lead(lead_id, payload.realtor_id)
    return {"success": True, "lead": lead.to_dict()}


@router.patch("/{lead_id}/pipeline")
def update_pipeline(
    lead_id: str,
    payload: PipelineStageRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("pipeline update"):
        lead = services.leads.update_pipeline_stage(lead_id, payload.stage, payload.actor_id, payload.role)
    return {"success": True, "lead": lead.to_dict()}


@router.patch("/{lead_id}/lost")
def mark_lost(
    lead_id: str,
    payload: LostRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("mark lost"):
        lead = services.leads.mark_lost(lead_id, payload.actor_id, payload.role, payload.reason)
    return {"success": True, "lead": lead.to_dict()}


@router.patch("/{lead_id}/assign")
def assign(
    lead_id: str,
    payload: AssignRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    """Manually hand a lead to another realtor."""
    with handle_errors("lead assignment"):
        lead = services.leads.assign_lead(lead_id, payload.realtor_id, payload.actor_id, payload.role)
    return {"success": True, "lead": lead.to_dict()}


@router.post("/{lead_id}/rating")
def rate(
    lead_id: str,
    payload: RatingRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("lead rating"):
        rating = services.leads.rate_realtor(lead_id, payload.rating, payload.comment)
    return {
        "success": True,
        "rating": {
            "id": rating.id,
            "lead_id": rating.lead_id,
            "realtor_id": rating.realtor_id,
            "rating": rating.rating,
            "comment": rating.comment,
        },
    }


@router.get("/{lead_id}/events")
def lead_events(lead_id: str, services: Services = Depends(get_services)):
    """Event timeline for a lead."""
    with handle_errors("lead timeline"):
        services.leads.get_lead(lead_id)
        return [
            {
                "id": event.id,
                "type": event.type.value,
                "actor_id": event.actor_id,
                "actor_role": event.actor_role,
                "title": event.title,
                "description": event.description,
                "from_stage": event.from_stage,
                "to_stage": event.to_stage,
                "from_status": event.from_status,
                "to_status": event.to_status,
                "metadata": event.metadata,
                "created_at": event.created_at.isoformat(),
            }
            for event in services.events.list_events(lead_id)
        ]


# === VISITS ===

@router.post("/{lead_id}/visit/request")
def request_visit(
    lead_id: str,
    payload: VisitRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("visit approval request"):
        lead = services.approvals.request_approval(lead_id, payload.visit_date, payload.visit_time)
    return {"success": True, "lead": lead.to_dict()}


@router.post("/{lead_id}/visit/approve")
def approve_visit(
    lead_id: str,
    payload: OwnerDecisionRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("visit approval"):
        lead = services.approvals.approve_visit(lead_id, payload.owner_id)
    return {"success": True, "lead": lead.to_dict()}


@router.post("/{lead_id}/visit/reject")
def reject_visit(
    lead_id: str,
    payload: OwnerDecisionRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("visit rejection"):
        lead = services.approvals.reject_visit(lead_id, payload.owner_id, payload.reason)
    return {"success": True, "lead": lead.to_dict()}


# === REALTOR VIEWS ===

@realtors_router.get("/{realtor_id}/leads")
def realtor_leads(realtor_id: str, services: Services = Depends(get_services)):
    """Leads the realtor holds right now."""
    with handle_errors("realtor leads"):
        return [lead.to_dict() for lead in services.leads.get_realtor_leads(realtor_id)]


@realtors_router.get("/{realtor_id}/pipeline")
def realtor_pipeline(realtor_id: str, services: Services = Depends(get_services)):
    with handle_errors("realtor pipeline"):
        return services.leads.get_pipeline(realtor_id)


@realtors_router.get("/{realtor_id}/stats")
def realtor_stats(realtor_id: str, services: Services = Depends(get_services)):
    """Lifetime accept/reject/expiry counters and ratings."""
    with handle_errors("realtor stats"):
        stats = services.queue.get_realtor_stats(realtor_id)
    if stats is None:
        raise error_response(404, "not_found", f"No stats for realtor: {realtor_id}")
    return stats.to_dict()


@realtors_router.get("/{owner_id}/visits/pending")
def pending_visits(owner_id: str, services: Services = Depends(get_services)):
    """Visits waiting for this owner's approval."""
    with handle_errors("pending visits"):
        return services.approvals.get_pending_approvals(owner_id)


@realtors_router.get("/{owner_id}/visits/confirmed")
def confirmed_visits(owner_id: str, services: Services = Depends(get_services)):
    with handle_errors("confirmed visits"):
        return services.approvals.get_confirmed_visits(owner_id)
