"""
Face Authentication Service

Ties the core together into the two operations callers use:

- authenticate(probe): 1:N match of a probe embedding against the
  enrolled gallery, followed by the threshold decision. Every decision,
  the empty-gallery case included, is written to the audit log once.
- enroll(user_id, embedding, quality, client_key, client_agent): abuse
  guard, input validation and the identity checks, then the embedding is
  persisted.

analyze_landmarks() additionally runs the landmark normalizer and the
quality scorer server-side, for clients that submit raw landmarks.

Usage:
    from core.service import get_face_auth_service

    service = get_face_auth_service()
    decision = service.authenticate(embedding)
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from core.abuse_guard import AbuseGuard, RateLimitResult
from core.errors import (
    ConflictError,
    FaceAuthError,
    NotFoundError,
    UnexpectedError,
    ValidationError,
)
from core.gallery_store import GalleryStore
from core.landmarks import as_landmark_array, embedding_length, extract_embedding
from core.matching import AuthDecision, LinearScanMatcher, ThresholdDecision
from core.matching.interfaces import GalleryMatcher
from core.quality import QualityScorer

logger = logging.getLogger(__name__)


class PerformanceTimer:
    """Context manager that logs how long a block took, at DEBUG level."""

    def __init__(self, operation: str):
        self.operation = operation
        self.start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "PerformanceTimer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.elapsed_ms = (time.perf_counter() - self.start) * 1000
        logger.debug(f"{self.operation} took {self.elapsed_ms:.1f}ms")


@dataclass
class EnrollmentOutcome:
    face_id: str
    user_id: str
    quality: float
    message: str = "Face registered successfully"


@dataclass
class LandmarkAnalysis:
    """
    Server-side result of processing one landmark set.

    Attributes:
        embedding: Normalized embedding values.
        quality: Quality score in [0, 1].
        ready_for_enrollment: Quality is high enough and the embedding
                              has the expected length.
        details: Individual quality checks.
    """

    embedding: List[float]
    quality: float
    ready_for_enrollment: bool
    details: Dict[str, Any] = field(default_factory=dict)


def validate_embedding(
    values: Any,
    field_name: str = "face_embedding",
    expected_length: Optional[int] = None,
) -> np.ndarray:
    """
    Check that values is a non-empty flat sequence of finite numbers.

    Args:
        values: Candidate embedding.
        field_name: Request field reported in the ValidationError.
        expected_length: Exact length required, if any.

    Returns:
        The embedding as a float64 array.

    Raises:
        ValidationError: Wrong type, wrong length or a non-finite value.
    """
    if isinstance(values, np.ndarray):
        values = values.tolist()

    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ValidationError("Embedding must be an array of numbers", field_name)

    if len(values) == 0:
        raise ValidationError("Embedding must not be empty", field_name)

    if expected_length is not None and len(values) != expected_length:
        raise ValidationError(
            f"Embedding must have exactly {expected_length} values (got {len(values)})",
            field_name,
        )

    for value in values:
        if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
            raise ValidationError("Embedding values must be finite numbers", field_name)

    return np.asarray(values, dtype=np.float64)


class FaceAuthService:
    """
    Authentication and enrollment on top of a GalleryStore.

    Args:
        store: Gallery reader, audit writer and identity checks.
        abuse_guard: Suspicious-client check and rate limiter for enrollment.
        config: Full configuration dict; the "matching", "quality" and
                "enrollment" sections are used.
        matcher: Gallery matcher (default: LinearScanMatcher).
    """

    def __init__(
        self,
        store: GalleryStore,
        abuse_guard: Optional[AbuseGuard] = None,
        config: Optional[Dict[str, Any]] = None,
        matcher: Optional[GalleryMatcher] = None,
    ):
        if config is None:
            config = {}
        self.store = store
        self.abuse_guard = abuse_guard if abuse_guard is not None else AbuseGuard(config.get("abuse_guard", {}))
        self.matcher = matcher if matcher is not None else LinearScanMatcher()
        self.decision = ThresholdDecision(config.get("matching", {}))
        self.quality_scorer = QualityScorer(config.get("quality", {}))
        self.expected_length = config.get("enrollment", {}).get(
            "expected_embedding_length", embedding_length()
        )

    @property
    def min_quality(self) -> float:
        return self.quality_scorer.min_quality_for_enrollment

    # ============================================================
    # Authentication
    # ============================================================

    def authenticate(self, probe_embedding: Sequence[float]) -> AuthDecision:
        """
        Identify the probe against every enrolled identity.

        Args:
            probe_embedding: Non-empty sequence of finite numbers.

        Returns:
            AuthDecision carrying the best similarity and the threshold.

        Raises:
            ValidationError: Malformed probe.
            UnexpectedError: Anything else went wrong (details are logged).
        """
        probe = validate_embedding(probe_embedding)

        try:
            with PerformanceTimer("authenticate"):
                gallery = self.store.load_gallery()

                if not gallery:
                    decision = self.decision.empty_gallery()
                else:
                    match = self.matcher.find_best(probe, gallery)
                    logger.debug(f"Compared probe against {match.considered_count}/{len(gallery)} entries")
                    decision = self.decision.decide(match)
        except FaceAuthError:
            raise
        except Exception as e:
            logger.exception(f"Authentication failed unexpectedly: {e}")
            self._record_attempt(None, False, None)
            raise UnexpectedError() from e

        self._record_attempt(decision.identity_id, decision.authenticated, decision.similarity)

        if decision.authenticated:
            logger.info(f"Authenticated {decision.identity_id} (similarity={decision.similarity:.4f})")
        else:
            logger.info(f"Authentication rejected: {decision.message}")

        return decision

    def _record_attempt(
        self,
        user_id: Optional[str],
        success: bool,
        similarity: Optional[float],
    ) -> None:
        # A failed audit write must never change the decision returned
        try:
            self.store.log_authentication(user_id, success, similarity)
        except Exception as e:
            logger.error(f"Failed to write authentication log: {e}")

    # ============================================================
    # Enrollment
    # ============================================================

    def check_client(self, client_key: str, client_agent: Optional[str]) -> RateLimitResult:
        """Run the abuse guard for one enrollment attempt (suspicious client, then rate limit)."""
        return self.abuse_guard.check(client_key, client_agent, endpoint="enroll")

    def enroll(
        self,
        user_id: str,
        embedding: Sequence[float],
        quality: float,
        client_key: str = "unknown",
        client_agent: Optional[str] = None,
        client_checked: bool = False,
    ) -> EnrollmentOutcome:
        """
        Store the enrollment embedding of an existing identity.

        Checks run in this order: suspicious client, rate limit, user id,
        embedding shape, quality, identity exists, not yet enrolled.
        Callers that already ran check_client() for this attempt pass
        client_checked=True so the attempt is counted once.

        Raises:
            SecurityViolation: The client looks automated.
            RateLimitExceeded: Too many enrollment attempts from the client.
            ValidationError: Malformed user id, embedding or quality.
            NotFoundError: Unknown identity.
            ConflictError: The identity already has an enrollment.
        """
        if not client_checked:
            self.check_client(client_key, client_agent)

        try:
            if not isinstance(user_id, str) or not user_id.strip():
                raise ValidationError("A valid user id is required", "user_id")

            vector = validate_embedding(embedding, expected_length=self.expected_length)
            quality = self._validate_quality(quality)

            if not self.store.user_exists(user_id):
                raise NotFoundError("User", user_id)

            if self.store.has_enrollment(user_id):
                raise ConflictError("This user already has enrolled face data")

            with PerformanceTimer("enroll"):
                face_id = self.store.save_enrollment(user_id, vector, quality)
        except FaceAuthError as e:
            logger.warning(f"Enrollment rejected for {user_id!r} from {client_key}: {e.code} ({e.message})")
            raise

        logger.info(f"Enrolled user {user_id} from {client_key} (face_id={face_id}, quality={quality:.3f})")
        return EnrollmentOutcome(face_id=face_id, user_id=user_id, quality=quality)

    def _validate_quality(self, quality: Any) -> float:
        if isinstance(quality, bool) or not isinstance(quality, Real) or not math.isfinite(quality):
            raise ValidationError("Quality must be a number between 0 and 1", "quality")

        quality = float(quality)
        if not 0.0 <= quality <= 1.0:
            raise ValidationError("Quality must be a number between 0 and 1", "quality")

        if not self.quality_scorer.is_enrollable(quality):
            raise ValidationError(
                f"Face quality {quality:.2f} is below the minimum "
                f"{self.min_quality:.2f} required for enrollment",
                "quality",
            )

        return quality

    # ============================================================
    # Landmark analysis
    # ============================================================

    def analyze_landmarks(self, landmarks: Any) -> LandmarkAnalysis:
        """
        Compute the embedding and quality of one raw landmark set.

        Raises:
            ValidationError: The landmarks cannot be read as (x, y[, z]) points.
        """
        try:
            points = as_landmark_array(landmarks)
        except (ValueError, TypeError, KeyError) as e:
            raise ValidationError(f"Invalid landmarks: {e}", "landmarks") from e

        if not np.all(np.isfinite(points)):
            raise ValidationError("Landmark coordinates must be finite numbers", "landmarks")

        embedding = extract_embedding(points)
        report = self.quality_scorer.assess(points)

        ready = (
            self.quality_scorer.is_enrollable(report.score)
            and len(embedding) == self.expected_length
        )

        return LandmarkAnalysis(
            embedding=embedding.tolist(),
            quality=report.score,
            ready_for_enrollment=ready,
            details=report.details,
        )


# Singleton instance for the service
_service_instance: Optional[FaceAuthService] = None
_service_lock = threading.Lock()


def get_face_auth_service() -> FaceAuthService:
    """Get or create the FaceAuthService wired to the shared store and guard."""
    global _service_instance

    with _service_lock:
        if _service_instance is None:
            from core.abuse_guard import get_abuse_guard
            from core.config import get_config
            from core.gallery_store import get_gallery_store

            _service_instance = FaceAuthService(
                store=get_gallery_store(),
                abuse_guard=get_abuse_guard(),
                config=get_config(),
            )

    return _service_instance
