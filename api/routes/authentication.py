"""
Authentication API Routes

This module provides the face authentication endpoints:
- POST /face/authenticate: identify a probe embedding against every
  enrolled user
- GET /face/authenticate/stats: successful-authentication statistics
"""

import logging

from fastapi import APIRouter

from api.schemas import (
    AuthLogEntry,
    AuthRequest,
    AuthResponse,
    AuthStatsResponse,
    AuthUser,
)
from core.gallery_store import get_gallery_store
from core.service import get_face_auth_service

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/face", tags=["authentication"])


@router.post("/authenticate", response_model=AuthResponse)
async def authenticate(request: AuthRequest):
    """
    Authenticate a face by comparing it against all enrolled users.

    The response always includes the best similarity and the threshold,
    so a failed attempt can still show how close it was.

    Args:
        request: AuthRequest with the probe face_embedding.

    Returns:
        AuthResponse; user is set only when success is true.
    """
    decision = get_face_auth_service().authenticate(request.face_embedding)

    user = None
    if decision.authenticated:
        user = AuthUser(
            id=decision.identity_id,
            name=decision.identity_name or "",
            email=decision.identity_email or "",
        )

    return AuthResponse(
        success=decision.authenticated,
        user=user,
        similarity=decision.similarity,
        threshold=decision.threshold,
        message=decision.message,
    )


@router.get("/authenticate/stats", response_model=AuthStatsResponse)
async def authentication_stats():
    """Number and mean similarity of successful authentications, plus recent attempts."""
    stats = get_gallery_store().get_auth_stats(recent=10)

    return AuthStatsResponse(
        successful_authentications=stats["successful_authentications"],
        average_similarity=stats["average_similarity"],
        recent_logs=[AuthLogEntry(**log) for log in stats["recent_logs"]],
    )
