"""
Landmark Normalization Module

Turns the facial landmark set produced by a face-mesh detector (468 points
per frame for MediaPipe Face Mesh, 478 with iris refinement) into the
fixed-length embedding used for enrollment and matching.

The embedding is built from a fixed key-point schema: for every selected
landmark index the (x, y, z) triple is appended to a flat vector, and the
whole vector is then z-score normalized with a single mean and population
standard deviation taken over all of its components together.

With the default schema (78 unique indices) the embedding has 234 values.

Usage:
    from core.landmarks import extract_embedding

    embedding = extract_embedding(landmarks)   # np.ndarray, shape (234,)
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence, Union

import numpy as np


@dataclass(frozen=True)
class LandmarkPoint:
    """
    One facial landmark in normalized image coordinates.

    Attributes:
        x: Horizontal position, [0, 1] relative to image width.
        y: Vertical position, [0, 1] relative to image height.
        z: Relative depth, roughly on the same scale as x (signed).
    """

    x: float
    y: float
    z: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LandmarkPoint":
        z = data.get("z")
        return cls(x=float(data["x"]), y=float(data["y"]), z=float(z) if z is not None else 0.0)


# Anything that can be turned into an (N, 3) landmark array
LandmarkSet = Union[np.ndarray, Sequence[LandmarkPoint], Sequence[Mapping[str, Any]], Sequence[Sequence[float]]]


# Key-point schema over the MediaPipe Face Mesh topology.
# Index 51 (brow / nose bridge) and 10 (contour / center line) appear twice
# and are dropped on their second occurrence.
KEY_POINT_INDICES: List[int] = [
    # Face contour (16)
    10, 338, 297, 332, 284, 251, 389, 356, 454, 323, 361, 288, 397, 365, 379, 378,
    # Left eyebrow (5)
    46, 53, 52, 51, 48,
    # Right eyebrow (5)
    276, 283, 282, 281, 278,
    # Left eye (8)
    33, 7, 163, 144, 145, 153, 154, 155,
    # Right eye (8)
    362, 398, 384, 385, 386, 387, 388, 466,
    # Nose (13)
    1, 2, 5, 4, 6, 19, 94, 125, 141, 235, 236, 3, 51,
    # Outer lips (12)
    61, 84, 17, 314, 405, 320, 307, 375, 321, 308, 324, 318,
    # Inner lips (8)
    78, 95, 88, 178, 87, 14, 317, 402,
    # Center line (5)
    9, 10, 151, 200, 175,
]


def unique_indices(indices: Iterable[int]) -> List[int]:
    """Drop repeated indices, keeping the first occurrence of each."""
    return list(dict.fromkeys(indices))


def embedding_length(indices: Iterable[int] = KEY_POINT_INDICES) -> int:
    """Embedding length for a landmark set that contains every schema index."""
    return 3 * len(unique_indices(indices))


def as_landmark_array(landmarks: LandmarkSet) -> np.ndarray:
    """
    Convert a landmark set into a float64 array of shape (N, 3).

    Accepts an (N, 2) / (N, 3) array, LandmarkPoint objects, mappings with
    "x", "y" and optional "z" keys, or (x, y[, z]) sequences. A missing z
    is read as 0.

    Raises:
        ValueError: If the input cannot be interpreted as landmarks.
    """
    if isinstance(landmarks, np.ndarray):
        points = landmarks.astype(np.float64)
        if points.size == 0:
            return np.zeros((0, 3), dtype=np.float64)
    else:
        rows = []
        for point in landmarks:
            if isinstance(point, LandmarkPoint):
                rows.append((point.x, point.y, point.z))
            elif isinstance(point, Mapping):
                p = LandmarkPoint.from_dict(point)
                rows.append((p.x, p.y, p.z))
            else:
                values = [float(v) for v in point]
                if len(values) == 2:
                    values.append(0.0)
                rows.append(tuple(values))
        if not rows:
            return np.zeros((0, 3), dtype=np.float64)
        points = np.asarray(rows, dtype=np.float64)

    if points.ndim != 2 or points.shape[1] not in (2, 3):
        raise ValueError(f"Landmarks must have shape (N, 2) or (N, 3), got {points.shape}")

    if points.shape[1] == 2:
        points = np.hstack([points, np.zeros((len(points), 1), dtype=np.float64)])

    return points


def normalize_features(features: np.ndarray) -> np.ndarray:
    """
    Z-score normalize a flat feature vector as a single batch.

    One mean and one population standard deviation are computed over all
    components together (not per axis, not per landmark). A constant
    vector has nothing to normalize and is returned unchanged.
    """
    features = np.asarray(features, dtype=np.float64).ravel()
    if features.size == 0:
        return features.copy()

    # Constant input: pairwise summation can leave a tiny non-zero std,
    # so equality is checked directly rather than relying on std == 0.
    if np.all(features == features[0]):
        return features.copy()

    mean = features.mean()
    std_dev = features.std()
    if std_dev == 0:
        return features.copy()

    return (features - mean) / std_dev


def extract_embedding(
    landmarks: LandmarkSet,
    indices: Sequence[int] = KEY_POINT_INDICES,
) -> np.ndarray:
    """
    Build the normalized face embedding for one landmark set.

    Indices outside the landmark set are skipped rather than padded, so a
    short landmark list yields a shorter embedding. Matching treats any
    resulting length difference as a hard mismatch.

    Args:
        landmarks: Landmark set for a single frame.
        indices: Key-point schema; duplicates are removed in order.

    Returns:
        Float64 array of length 3 * (number of schema indices present).
    """
    points = as_landmark_array(landmarks)
    selected = [i for i in unique_indices(indices) if 0 <= i < len(points)]

    if not selected:
        return np.zeros(0, dtype=np.float64)

    flat = points[selected].reshape(-1)
    return normalize_features(flat)
