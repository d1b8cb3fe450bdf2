"""
Matching Interfaces Module

This module defines the data types and the abstract interface for 1:N
face matching against the enrolled gallery.

The matching pipeline has three components:
1. Similarity     - cosine similarity between two embeddings
2. GalleryMatcher - finds the single best gallery entry for a probe
3. Decision       - applies the acceptance threshold to the best match

GalleryMatcher is an interface so the linear scan can be replaced by an
indexed nearest-neighbor structure without changing what callers see.

Usage:
    from core.matching.interfaces import GalleryEntry, GalleryMatcher, MatchResult
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np


# A stored embedding as the storage layer hands it over: already decoded,
# or the raw JSON text it was persisted as.
StoredEmbedding = Union[str, Sequence[float], np.ndarray]


@dataclass
class GalleryEntry:
    """
    One enrolled identity as seen by the matcher.

    Attributes:
        identity_id: The enrolled user's id.
        embedding: Stored embedding, possibly still JSON-encoded.
        quality_at_enrollment: Quality score recorded at enrollment.
        identity_name: Display name, if the store provides it.
        identity_email: Contact email, if the store provides it.
    """

    identity_id: str
    embedding: StoredEmbedding
    quality_at_enrollment: float = 0.0
    identity_name: Optional[str] = None
    identity_email: Optional[str] = None

    def vector(self) -> np.ndarray:
        """
        Decode the stored embedding into a float64 vector.

        Raises:
            ValueError: If the stored value is not a flat list of finite numbers.
        """
        return decode_embedding(self.embedding)


@dataclass
class MatchResult:
    """
    Outcome of a 1:N gallery scan.

    Attributes:
        best_identity_id: Identity of the best entry, None for an empty scan.
        best_similarity: Similarity achieved by that entry (0 when none).
        considered_count: Entries actually compared; skipped entries
                          (undecodable or wrong length) are not counted.
        best_entry: The winning GalleryEntry itself.
    """

    best_identity_id: Optional[str]
    best_similarity: float
    considered_count: int
    best_entry: Optional[GalleryEntry] = None


def decode_embedding(value: StoredEmbedding) -> np.ndarray:
    """
    Turn a stored embedding (JSON text or a number sequence) into a vector.

    Raises:
        ValueError: If the value cannot be decoded, is not one-dimensional,
                    or contains non-finite or non-numeric values.
    """
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Stored embedding is not valid JSON: {e}") from e

    if isinstance(value, np.ndarray):
        vector = value.astype(np.float64)
    else:
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"Stored embedding must be a list, got {type(value).__name__}")
        for v in value:
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ValueError("Stored embedding must contain only numbers")
        vector = np.asarray(value, dtype=np.float64)

    if vector.ndim != 1:
        raise ValueError(f"Stored embedding must be one-dimensional, got shape {vector.shape}")
    if not all(math.isfinite(v) for v in vector):
        raise ValueError("Stored embedding contains non-finite values")

    return vector


class GalleryMatcher(ABC):
    """
    Abstract base class for 1:N gallery search.

    Implementations must:
        - return the single entry with the highest similarity,
        - keep the first entry seen on a tie,
        - skip (and log) entries that fail to decode or whose length
          differs from the probe, without aborting the search,
        - return MatchResult(None, 0.0, 0) for an empty gallery.
    """

    @abstractmethod
    def find_best(self, probe: np.ndarray, gallery: Sequence[GalleryEntry]) -> MatchResult:
        """
        Find the gallery entry most similar to the probe.

        Args:
            probe: Probe embedding, shape (D,).
            gallery: All enrolled entries, in a stable iteration order.

        Returns:
            MatchResult describing the best entry.
        """
        pass
