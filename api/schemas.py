"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used by the face authentication API.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts

Range checks that carry domain meaning (embedding length, quality
threshold, name / email rules) are left to the core so the error
messages and codes are the same whatever the entry point.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


# ============================================================
# Enrollment Schemas
# ============================================================

class EnrollRequest(BaseModel):
    """Request to register the face of an existing user."""
    user_id: str = Field(..., description="ID of the user to enroll")
    face_embedding: List[float] = Field(
        ...,
        description="Normalized landmark embedding (234 values)"
    )
    quality: float = Field(..., description="Quality score of the captured frame (0-1)")


class EnrollResponse(BaseModel):
    """Response after a successful enrollment."""
    success: bool = Field(True, description="Always true; failures use the error schema")
    face_id: str = Field(..., description="ID of the stored face data")
    user_id: str = Field(..., description="Enrolled user")
    quality: float = Field(..., description="Stored quality score")
    message: str = Field(..., description="Status message")


class LandmarkInput(BaseModel):
    """One face-mesh landmark in normalized image coordinates."""
    x: float = Field(..., description="Horizontal position (0-1)")
    y: float = Field(..., description="Vertical position (0-1)")
    z: Optional[float] = Field(None, description="Relative depth (defaults to 0)")


class AnalyzeRequest(BaseModel):
    """Raw landmarks of a single frame, in face-mesh index order."""
    landmarks: List[LandmarkInput] = Field(..., description="Landmark list (468 or 478 points)")


class AnalyzeResponse(BaseModel):
    """Server-side embedding and quality of a landmark set."""
    embedding: List[float] = Field(..., description="Normalized embedding")
    embedding_length: int = Field(..., description="Number of embedding values")
    quality: float = Field(..., description="Quality score (0-1)")
    min_quality: float = Field(..., description="Minimum quality required for enrollment")
    ready_for_enrollment: bool = Field(..., description="True if the frame can be enrolled")
    details: Dict[str, Any] = Field(default_factory=dict, description="Individual quality checks")


# ============================================================
# Authentication Schemas
# ============================================================

class AuthRequest(BaseModel):
    """Request to identify a face against all enrolled users."""
    face_embedding: List[float] = Field(..., description="Probe embedding")


class AuthUser(BaseModel):
    """Identity returned on successful authentication."""
    id: str = Field(..., description="User ID")
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Email address")


class AuthResponse(BaseModel):
    """Authentication decision."""
    success: bool = Field(..., description="Whether authentication succeeded")
    user: Optional[AuthUser] = Field(None, description="Matched user (only on success)")
    similarity: float = Field(..., description="Best cosine similarity found")
    threshold: float = Field(..., description="Acceptance threshold that was applied")
    message: str = Field(..., description="Human-readable outcome")


class AuthLogEntry(BaseModel):
    """One audit record."""
    id: int = Field(..., description="Log entry ID")
    user_id: Optional[str] = Field(None, description="Matched user, if any")
    success: bool = Field(..., description="Whether the attempt succeeded")
    similarity: Optional[float] = Field(None, description="Best similarity (null if no decision)")
    timestamp: str = Field(..., description="ISO timestamp of the attempt")
    user_name: Optional[str] = Field(None, description="Name of the matched user")
    user_email: Optional[str] = Field(None, description="Email of the matched user")


class AuthStatsResponse(BaseModel):
    """Aggregate over successful authentications."""
    successful_authentications: int = Field(..., description="Number of successful attempts")
    average_similarity: float = Field(..., description="Mean similarity of successful attempts")
    recent_logs: List[AuthLogEntry] = Field(default_factory=list, description="10 most recent attempts")


# ============================================================
# User Management Schemas
# ============================================================

class CreateUserRequest(BaseModel):
    """Request to create a user."""
    name: str = Field(..., description="Display name (1-50 characters)")
    email: str = Field(..., description="Unique email address")


class UpdateUserRequest(BaseModel):
    """Partial user update; omitted fields are left unchanged."""
    name: Optional[str] = Field(None, description="New display name")
    email: Optional[str] = Field(None, description="New email address")


class UserInfo(BaseModel):
    """Summary information about a user."""
    user_id: str = Field(..., description="Unique user identifier")
    name: str = Field(..., description="User's display name")
    email: str = Field(..., description="User's email address")
    created_at: str = Field(..., description="ISO timestamp of creation")
    updated_at: str = Field(..., description="ISO timestamp of last update")
    has_face_data: bool = Field(False, description="Whether the user has enrolled a face")
    auth_log_count: Optional[int] = Field(None, description="Number of authentication records")


class UserListResponse(BaseModel):
    """Response for listing users."""
    users: List[UserInfo] = Field(default_factory=list)
    total: int = Field(0, description="Total number of matching users")
    limit: int = Field(..., description="Page size")
    offset: int = Field(..., description="Page offset")


class FaceDataInfo(BaseModel):
    """Enrollment summary (the embedding itself is never returned)."""
    face_id: str = Field(..., description="Face data ID")
    quality: float = Field(..., description="Quality at enrollment")
    created_at: str = Field(..., description="ISO timestamp of enrollment")


class UserAuthStats(BaseModel):
    """Statistics over a user's recent authentication records."""
    total_auth_attempts: int = Field(0)
    successful_auths: int = Field(0)
    last_auth_at: Optional[str] = Field(None)


class UserDetailResponse(UserInfo):
    """Detailed user information."""
    face_data: Optional[FaceDataInfo] = Field(None, description="Enrollment summary")
    recent_auth_logs: List[AuthLogEntry] = Field(default_factory=list)
    stats: UserAuthStats = Field(default_factory=UserAuthStats)


class DeleteUserResponse(BaseModel):
    """Response after deleting a user."""
    success: bool = Field(..., description="Whether deletion was successful")
    user_id: str = Field(..., description="ID of deleted user")
    message: str = Field(..., description="Status message")
    face_data_deleted: int = Field(0, description="Number of face data records removed")
    auth_logs_detached: int = Field(0, description="Audit records kept without a user reference")


# ============================================================
# System Schemas
# ============================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Overall status: 'healthy' or 'unhealthy'")
    database: bool = Field(..., description="Whether the database answered")
    total_users: int = Field(0, description="Number of users")
    enrolled_users: int = Field(0, description="Number of users with face data")
    auth_threshold: float = Field(..., description="Authentication threshold in use")
    min_quality: float = Field(..., description="Minimum enrollment quality in use")


class ErrorResponse(BaseModel):
    """Error body returned for every failed request."""
    error: str = Field(..., description="Error message")
    code: str = Field(..., description="Machine-readable error code")
    field: Optional[str] = Field(None, description="Offending request field, for validation errors")
    reset_time: Optional[int] = Field(None, description="Epoch ms when a rate limit resets")
