"""
Matching Module for Face Authentication

This package compares a probe embedding against the enrolled gallery and
turns the best match into an authentication decision.

Components:
    - interfaces: GalleryEntry, MatchResult and the GalleryMatcher interface
    - embedding_matcher: cosine similarity and the linear-scan matcher
    - decision: threshold-based accept/reject

Usage:
    from core.matching import LinearScanMatcher, ThresholdDecision

    match = LinearScanMatcher().find_best(probe, gallery)
    decision = ThresholdDecision(config).decide(match)
"""

from core.matching.interfaces import (
    GalleryEntry,
    GalleryMatcher,
    MatchResult,
    decode_embedding,
)
from core.matching.embedding_matcher import LinearScanMatcher, cosine_similarity
from core.matching.decision import (
    AUTH_THRESHOLD,
    NO_ENROLLED_IDENTITIES,
    AuthDecision,
    ThresholdDecision,
)

__all__ = [
    # Data classes
    "GalleryEntry",
    "MatchResult",
    "AuthDecision",
    # Interfaces
    "GalleryMatcher",
    # Implementations
    "LinearScanMatcher",
    "ThresholdDecision",
    "cosine_similarity",
    "decode_embedding",
    # Constants
    "AUTH_THRESHOLD",
    "NO_ENROLLED_IDENTITIES",
]
