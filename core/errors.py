"""
Error Types for the Face Authentication Core

Every failure the core reports to a caller is a FaceAuthError subclass.
Each one carries a stable machine-readable code and the HTTP status the
API layer should answer with, so the transport never has to guess.

    ValidationError     400  malformed / out-of-range input (names the field)
    DimensionMismatch   400  embeddings of different length were compared
    SecurityViolation   403  abuse guard rejected the client
    NotFoundError       404  identity does not exist
    ConflictError       409  identity already enrolled / duplicate email
    RateLimitExceeded   429  fixed-window quota exhausted (carries reset_time)
    UnexpectedError     500  anything else, surfaced without internal detail
"""

from typing import Any, Dict, Optional


class FaceAuthError(Exception):
    """
    Base class for errors surfaced to callers of the core.

    Attributes:
        message: Human-readable message safe to return to the caller.
        code: Stable error code (e.g. "VALIDATION_ERROR").
        status_code: HTTP status the API layer responds with.
        details: Extra caller-visible fields merged into the error body.
    """

    code = "FACE_AUTH_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code}
        body.update(self.details)
        return body


class ValidationError(FaceAuthError):
    """Malformed or out-of-range input, always tied to a request field."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class DimensionMismatch(FaceAuthError):
    """Two embeddings of different length were compared."""

    code = "DIMENSION_MISMATCH"
    status_code = 400

    def __init__(self, length_a: int, length_b: int):
        super().__init__(
            f"Embedding length mismatch: {length_a} != {length_b}",
            {"lengths": [length_a, length_b]},
        )
        self.length_a = length_a
        self.length_b = length_b


class SecurityViolation(FaceAuthError):
    """
    The abuse guard rejected the request.

    The caller only ever sees a generic denial; the reason goes to the
    security log through `reason`, which is not part of to_dict().
    """

    code = "SECURITY_VIOLATION"
    status_code = 403

    def __init__(self, reason: str = "suspicious_activity"):
        super().__init__("Request denied")
        self.reason = reason


class RateLimitExceeded(FaceAuthError):
    """Fixed-window quota exhausted; reset_time is epoch milliseconds."""

    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, reset_time: int):
        super().__init__(
            "Too many requests. Please wait and try again later.",
            {"reset_time": reset_time},
        )
        self.reset_time = reset_time


class NotFoundError(FaceAuthError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            f"{resource} ({resource_id}) not found",
            {"resource": resource, "id": resource_id},
        )


class ConflictError(FaceAuthError):
    code = "RESOURCE_ALREADY_EXISTS"
    status_code = 409


class UnexpectedError(FaceAuthError):
    """Opaque failure; the real cause is only in the server log."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(message)
