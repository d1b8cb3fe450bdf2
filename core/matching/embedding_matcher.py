"""
Embedding Matcher: cosine similarity and the linear-scan gallery search.

cosine_similarity is the Similarity Engine: it refuses to compare
embeddings of different length (DimensionMismatch) rather than scoring
them as dissimilar. LinearScanMatcher is the reference GalleryMatcher; it
is O(gallery size) with no index, which is fine for small galleries.
"""

import logging
from typing import Sequence

import numpy as np

from core.errors import DimensionMismatch
from core.matching.interfaces import GalleryEntry, GalleryMatcher, MatchResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity dot(a, b) / (|a| * |b|), in [-1, 1].

    Args:
        a: First embedding, shape (D,).
        b: Second embedding, shape (D,).

    Returns:
        The similarity; 0.0 if either vector has zero magnitude.

    Raises:
        DimensionMismatch: If the two embeddings differ in length.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()

    if a.shape[0] != b.shape[0]:
        raise DimensionMismatch(a.shape[0], b.shape[0])

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(a, b)) / (norm_a * norm_b)

    # Clamp to [-1, 1] for numerical stability
    return max(-1.0, min(1.0, similarity))


class LinearScanMatcher(GalleryMatcher):
    """
    Compare the probe against every gallery entry in order.

    The running best is replaced only on a strictly greater similarity,
    so on a tie the entry seen first wins. Which entry that is depends on
    the order the store returns the gallery in and is not otherwise
    meaningful.
    """

    def find_best(self, probe: np.ndarray, gallery: Sequence[GalleryEntry]) -> MatchResult:
        probe = np.asarray(probe, dtype=np.float64).ravel()

        if len(gallery) == 0:
            return MatchResult(best_identity_id=None, best_similarity=0.0, considered_count=0)

        best_entry = None
        best_similarity = 0.0
        considered = 0

        for entry in gallery:
            try:
                stored = entry.vector()
            except ValueError as e:
                logger.warning(f"Skipping gallery entry {entry.identity_id}: {e}")
                continue

            try:
                similarity = cosine_similarity(probe, stored)
            except DimensionMismatch as e:
                logger.warning(
                    f"Skipping gallery entry {entry.identity_id}: probe length "
                    f"{e.length_a}, stored length {e.length_b}"
                )
                continue

            considered += 1
            logger.debug(f"Similarity to {entry.identity_id}: {similarity:.4f}")

            if similarity > best_similarity:
                best_similarity = similarity
                best_entry = entry

        return MatchResult(
            best_identity_id=best_entry.identity_id if best_entry else None,
            best_similarity=best_similarity,
            considered_count=considered,
            best_entry=best_entry,
        )
