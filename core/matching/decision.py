"""
Authentication Decision: apply the acceptance threshold to the best match.

authenticated = best_similarity >= threshold

The decision always echoes the similarity and the threshold it used, so
a caller can show "how close" feedback even when authentication fails.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.matching.interfaces import MatchResult


AUTH_THRESHOLD = 0.80

NO_ENROLLED_IDENTITIES = "No enrolled identities"


@dataclass
class AuthDecision:
    """
    Accept/reject outcome of one authentication attempt.

    Attributes:
        authenticated: True if the best similarity reached the threshold.
        identity_id: Matched identity, populated only when authenticated.
        similarity: Best similarity found (0 for an empty gallery).
        threshold: Threshold the similarity was compared against.
        message: Explanation suitable for showing to the user.
        identity_name: Display name of the matched identity, if known.
        identity_email: Email of the matched identity, if known.
    """

    authenticated: bool
    identity_id: Optional[str]
    similarity: float
    threshold: float
    message: str = ""
    identity_name: Optional[str] = None
    identity_email: Optional[str] = None


class ThresholdDecision:
    """
    Fixed-threshold decision over a MatchResult.

    Args:
        config: Dictionary with optional key:
            - auth_threshold: Acceptance threshold (default 0.80)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}
        self.threshold = config.get("auth_threshold", AUTH_THRESHOLD)

    def decide(self, match: MatchResult) -> AuthDecision:
        authenticated = match.best_identity_id is not None and match.best_similarity >= self.threshold
        entry = match.best_entry if authenticated else None

        if authenticated:
            name = entry.identity_name if entry and entry.identity_name else match.best_identity_id
            message = f"Authenticated as {name}"
        else:
            message = (
                f"Similarity {match.best_similarity:.1%} is below the "
                f"threshold {self.threshold:.1%}"
            )

        return AuthDecision(
            authenticated=authenticated,
            identity_id=match.best_identity_id if authenticated else None,
            similarity=match.best_similarity,
            threshold=self.threshold,
            message=message,
            identity_name=entry.identity_name if entry else None,
            identity_email=entry.identity_email if entry else None,
        )

    def empty_gallery(self) -> AuthDecision:
        """Decision for a gallery with no enrolled identities at all."""
        return AuthDecision(
            authenticated=False,
            identity_id=None,
            similarity=0.0,
            threshold=self.threshold,
            message=NO_ENROLLED_IDENTITIES,
        )
