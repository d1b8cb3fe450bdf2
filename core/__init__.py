"""
Core Module for the Landmark Face Authentication System

This package contains the landmark-based face authentication engine:
embedding extraction, quality scoring, gallery matching, the abuse
guard and storage.

Main components:
    - config: Configuration loading and management
    - errors: Error types with codes and HTTP statuses
    - landmarks: Key-point schema and embedding normalization
    - quality: Frame quality heuristic
    - matching: Similarity, gallery search and the accept/reject decision
    - abuse_guard: Suspicious-client detection and rate limiting
    - gallery_store: SQLite storage for identities, enrollments and audit logs
    - service: authenticate / enroll / analyze operations

Usage:
    from core.config import get_config
    from core.service import get_face_auth_service
    from core.landmarks import extract_embedding
"""

from core.config import (
    get_config,
    get_section,
    get_quality_config,
    get_matching_config,
    get_enrollment_config,
    get_abuse_guard_config,
    get_storage_config,
    get_api_config,
    get_server_config,
)

from core.errors import (
    FaceAuthError,
    ValidationError,
    DimensionMismatch,
    SecurityViolation,
    RateLimitExceeded,
    NotFoundError,
    ConflictError,
    UnexpectedError,
)

from core.landmarks import (
    LandmarkPoint,
    KEY_POINT_INDICES,
    embedding_length,
    extract_embedding,
    normalize_features,
)

from core.quality import QualityScorer, QualityReport, MIN_QUALITY_FOR_ENROLLMENT

from core.abuse_guard import (
    AbuseGuard,
    RateLimiter,
    RateLimitStore,
    InMemoryRateLimitStore,
    SuspiciousActivityDetector,
    resolve_client_ip,
    get_abuse_guard,
)

from core.gallery_store import (
    GalleryStore,
    get_gallery_store,
    generate_user_id,
)

from core.service import (
    FaceAuthService,
    EnrollmentOutcome,
    LandmarkAnalysis,
    get_face_auth_service,
)

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_quality_config",
    "get_matching_config",
    "get_enrollment_config",
    "get_abuse_guard_config",
    "get_storage_config",
    "get_api_config",
    "get_server_config",
    # Errors
    "FaceAuthError",
    "ValidationError",
    "DimensionMismatch",
    "SecurityViolation",
    "RateLimitExceeded",
    "NotFoundError",
    "ConflictError",
    "UnexpectedError",
    # Landmarks
    "LandmarkPoint",
    "KEY_POINT_INDICES",
    "embedding_length",
    "extract_embedding",
    "normalize_features",
    # Quality
    "QualityScorer",
    "QualityReport",
    "MIN_QUALITY_FOR_ENROLLMENT",
    # Abuse Guard
    "AbuseGuard",
    "RateLimiter",
    "RateLimitStore",
    "InMemoryRateLimitStore",
    "SuspiciousActivityDetector",
    "resolve_client_ip",
    "get_abuse_guard",
    # Storage
    "GalleryStore",
    "get_gallery_store",
    "generate_user_id",
    # Service
    "FaceAuthService",
    "EnrollmentOutcome",
    "LandmarkAnalysis",
    "get_face_auth_service",
]
