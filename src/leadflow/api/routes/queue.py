"""Realtor queue routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...storage.models import QueueStatus
from ..dependencies import Services, error_response, get_services, handle_errors
from ..middleware.auth import verify_signature
from ..schemas.common import ERROR_RESPONSES
from ..schemas.queue import JoinQueueRequest, MoveRequest, ScoreRequest, StatusRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/queue", tags=["queue"], responses=ERROR_RESPONSES)


@router.post("/join")
def join_queue(
    payload: JoinQueueRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("queue join"):
        entry = services.queue.join_queue(payload.realtor_id)
    return {"success": True, "queue": entry.to_dict()}


@router.delete("/{realtor_id}")
def leave_queue(
    realtor_id: str,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("queue leave"):
        removed = services.queue.leave_queue(realtor_id)
    if not removed:
        raise error_response(404, "not_found", f"Realtor is not in the queue: {realtor_id}")
    return {"success": True}


@router.get("")
def list_queue(
    status: Optional[QueueStatus] = None,
    services: Services = Depends(get_services),
):
    """Queue in position order."""
    with handle_errors("queue listing"):
        return [entry.to_dict() for entry in services.queue.list_queue(status=status)]


@router.get("/stats")
def queue_stats(services: Services = Depends(get_services)):
    with handle_errors("queue stats"):
        return services.queue.get_queue_stats()


@router.post("/move")
def move(
    payload: MoveRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    """Admin swap of a queue entry with its neighbour."""
    with handle_errors("queue move"):
        result = services.queue.move(payload.queue_id, payload.direction)
    return {"success": True, **result}


@router.post("/recalculate")
def recalculate(
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("queue recalculation"):
        active = services.queue.recalculate_positions()
    return {"success": True, "active": active}


@router.get("/{realtor_id}")
def get_position(realtor_id: str, services: Services = Depends(get_services)):
    """A realtor's queue entry with their rank among active realtors."""
    with handle_errors("queue position"):
        entry = services.queue.get_position(realtor_id)
    if entry is None:
        raise error_response(404, "not_found", f"Realtor is not in the queue: {realtor_id}")
    return entry.to_dict()


@router.get("/{realtor_id}/history")
def score_history(
    realtor_id: str,
    limit: int = Query(default=50, le=500),
    services: Services = Depends(get_services),
):
    with handle_errors("score history"):
        return [
            {
                "id": item.id,
                "action": item.action,
                "points": item.points,
                "description": item.description,
                "created_at": item.created_at.isoformat(),
            }
            for item in services.queue.get_score_history(realtor_id, limit=limit)
        ]


@router.post("/{realtor_id}/score")
def set_score(
    realtor_id: str,
    payload: ScoreRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    """Admin override of a realtor's score."""
    with handle_errors("score adjustment"):
        entry = services.queue.set_score(realtor_id, payload.score)
    return {"success": True, "queue": entry.to_dict()}


@router.post("/{realtor_id}/status")
def set_status(
    realtor_id: str,
    payload: StatusRequest,
    _auth=Depends(verify_signature),
    services: Services = Depends(get_services),
):
    with handle_errors("queue status change"):
        entry = services.queue.set_status(realtor_id, payload.status)
    return {"success": True, "queue": entry.to_dict()}
