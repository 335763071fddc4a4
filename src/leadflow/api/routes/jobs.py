"""Manual triggers for the periodic distribution jobs."""

import logging

from fastapi import APIRouter, Depends

from ..dependencies import Services, get_services, handle_errors
from ..middleware.auth import verify_signature
from ..schemas.common import ERROR_RESPONSES

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/jobs",
    tags=["jobs"],
    responses=ERROR_RESPONSES,
    dependencies=[Depends(verify_signature)],
)


@router.post("/release-expired")
def release_expired(services: Services = Depends(get_services)):
    with handle_errors("reservation release job"):
        released = services.leads.release_expired_reservations()
    return {"success": True, "released": released}


@router.post("/expire-stale")
def expire_stale(services: Services = Depends(get_services)):
    with handle_errors("stale lead expiry job"):
        expired = services.leads.expire_stale_leads()
    return {"success": True, "expired": expired}


@router.post("/recalculate")
def recalculate(services: Services = Depends(get_services)):
    with handle_errors("queue recalculation job"):
        active = services.queue.recalculate_positions()
    return {"success": True, "active": active}


@router.post("/cleanup")
def cleanup(services: Services = Depends(get_services)):
    with handle_errors("cleanup job"):
        removed = services.leads.cleanup()
    return {"success": True, **removed}
