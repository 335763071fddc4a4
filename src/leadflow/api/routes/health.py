"""Health check routes."""

from fastapi import APIRouter, Request

from ... import __version__
from ..dependencies import get_services

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "healthy", "service": "leadflow-api", "version": __version__}


@router.get("/ready")
def ready(request: Request):
    """Readiness check - verifies database is accessible."""
    try:
        services = get_services(request)
        with services.db._get_connection() as conn:
            conn.execute("SELECT 1")
        return {"status": "ready"}
    except Exception as e:
        return {"status": "not_ready", "detail": str(e)}
