"""
Enrollment API Routes

This module provides the endpoints used while registering a face:
- POST /face/register: store the enrollment embedding of an existing user
- POST /face/analyze: compute embedding and quality from raw landmarks

Registration is guarded per client: automated-looking clients are
rejected and each client may register at most 5 times per minute. The
guard runs as a dependency, so it is resolved before the request body is
validated and malformed attempts count against the client's quota.
"""

import logging
from dataclasses import dataclass

from fastapi import APIRouter, Depends, Request

from api.schemas import (
    AnalyzeRequest,
    AnalyzeResponse,
    EnrollRequest,
    EnrollResponse,
)
from core.abuse_guard import SecurityEvent, log_security_event, resolve_client_ip
from core.errors import ValidationError
from core.service import get_face_auth_service

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/face", tags=["enrollment"])


@dataclass
class EnrollmentClient:
    client_key: str
    user_agent: str


async def guard_enrollment_client(raw_request: Request) -> EnrollmentClient:
    """Identify the caller and run the abuse guard for this attempt."""
    client = EnrollmentClient(
        client_key=resolve_client_ip(raw_request.headers),
        user_agent=raw_request.headers.get("user-agent", ""),
    )
    get_face_auth_service().check_client(client.client_key, client.user_agent)
    return client


@router.post("/register", response_model=EnrollResponse, status_code=201)
async def register_face(
    request: EnrollRequest,
    client: EnrollmentClient = Depends(guard_enrollment_client),
):
    """
    Register the face embedding of an existing user.

    Checks, in order: suspicious client, rate limit, request body,
    embedding length and values, quality, user exists, user not yet
    enrolled.

    Args:
        request: EnrollRequest with user_id, face_embedding and quality.
        client: Caller identity, already admitted by the abuse guard.

    Returns:
        EnrollResponse with the new face data ID.

    Raises:
        400: Invalid embedding or quality.
        403: Client rejected as suspicious.
        404: Unknown user.
        409: User already has face data.
        429: Too many registrations from this client (Retry-After set).
    """
    service = get_face_auth_service()

    try:
        outcome = service.enroll(
            user_id=request.user_id,
            embedding=request.face_embedding,
            quality=request.quality,
            client_key=client.client_key,
            client_agent=client.user_agent,
            client_checked=True,
        )
    except ValidationError as e:
        log_security_event(SecurityEvent(
            kind="validation_error",
            client_key=client.client_key,
            user_agent=client.user_agent,
            details={"endpoint": "/face/register", "field": e.field},
        ))
        raise

    return EnrollResponse(
        face_id=outcome.face_id,
        user_id=outcome.user_id,
        quality=outcome.quality,
        message=outcome.message,
    )


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_landmarks(request: AnalyzeRequest):
    """
    Compute the embedding and quality score of one landmark set.

    Lets a client that only has raw face-mesh output (no local
    normalization) find out whether a frame is good enough to enroll.
    """
    service = get_face_auth_service()
    analysis = service.analyze_landmarks([lm.model_dump() for lm in request.landmarks])

    return AnalyzeResponse(
        embedding=analysis.embedding,
        embedding_length=len(analysis.embedding),
        quality=analysis.quality,
        min_quality=service.min_quality,
        ready_for_enrollment=analysis.ready_for_enrollment,
        details=analysis.details,
    )
