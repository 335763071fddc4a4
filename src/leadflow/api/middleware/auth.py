"""Shared-secret authentication for mutating routes."""

import hmac
import hashlib
import logging
from fastapi import Request, HTTPException
from ..config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Leadflow-Signature"
SECRET_HEADER = "X-Leadflow-Secret"


def sign_body(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def verify_signature(request: Request):
    """Accept the request if either header checks out.

    X-Leadflow-Signature carries the HMAC-SHA256 of the raw body; callers that
    can't sign (cron hooks, admin tools) may send LEADFLOW_API_SECRET itself in
    X-Leadflow-Secret.
    """
    secret = settings.api_secret

    signature = request.headers.get(SIGNATURE_HEADER)
    if signature and hmac.compare_digest(signature, sign_body(await request.body(), secret)):
        return True

    shared = request.headers.get(SECRET_HEADER)
    if shared and hmac.compare_digest(shared, secret):
        return True

    logger.warning(f"Rejected unauthenticated {request.method} {request.url.path}")
    raise HTTPException(
        status_code=401,
        detail={"success": False, "error": "auth_error", "detail": "Invalid or missing authentication"},
    )
