"""
Quality Scoring Module

Rates how suitable a single captured frame is for enrollment or matching,
using only the geometry of its facial landmarks.

The score starts at 1.0 and each check that fails multiplies it by a
penalty factor:

    1. Eye-level tilt:   |leftEye.y - rightEye.y| > 0.05       -> x0.8
    2. Turned sideways:  |nose.x - eyeCenter.x| > 0.05          -> x0.7
    3. Too far / close:  eye distance outside [0.1, 0.5]        -> x0.6
    4. Extreme angle:    |mean z over all landmarks| > 0.1      -> x0.8

Independent multiplicative penalties behave like a soft "all conditions
must hold" gate, which gives the capturing client smooth feedback.

Usage:
    from core.quality import QualityScorer

    scorer = QualityScorer(config)
    if scorer.score(landmarks) >= scorer.min_quality_for_enrollment:
        ...
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from core.landmarks import LandmarkSet, as_landmark_array


MIN_QUALITY_FOR_ENROLLMENT = 0.60

# Anchor landmarks (MediaPipe Face Mesh indices)
NOSE_TIP = 1
LEFT_EYE_CORNER = 33
RIGHT_EYE_CORNER = 362


@dataclass
class QualityReport:
    """
    Result of a quality assessment.

    Attributes:
        score: Quality in [0, 1]; 0 when the anchors are missing.
        details: Which checks passed and the measured values.
    """

    score: float
    details: Dict[str, Any] = field(default_factory=dict)


class QualityScorer:
    """
    Landmark-geometry quality heuristic.

    Tolerances and penalty factors are read from the "quality" config
    section; the defaults are the reference values.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}
        self.min_quality_for_enrollment = config.get(
            "min_quality_for_enrollment", MIN_QUALITY_FOR_ENROLLMENT
        )
        self.max_eye_height_diff = config.get("max_eye_height_diff", 0.05)
        self.tilt_penalty = config.get("tilt_penalty", 0.8)
        self.max_nose_offset = config.get("max_nose_offset", 0.05)
        self.turn_penalty = config.get("turn_penalty", 0.7)
        self.min_face_width = config.get("min_face_width", 0.1)
        self.max_face_width = config.get("max_face_width", 0.5)
        self.size_penalty = config.get("size_penalty", 0.6)
        self.max_mean_depth = config.get("max_mean_depth", 0.1)
        self.depth_penalty = config.get("depth_penalty", 0.8)

    def score(self, landmarks: LandmarkSet) -> float:
        """Return the quality score of a landmark set in [0, 1]."""
        return self.assess(landmarks).score

    def assess(self, landmarks: LandmarkSet) -> QualityReport:
        """
        Score a landmark set and report the individual checks.

        Args:
            landmarks: Landmark set for a single frame.

        Returns:
            QualityReport; score is exactly 0 for an empty set or one
            that lacks the nose tip or either eye corner.
        """
        points = as_landmark_array(landmarks)
        anchors = (NOSE_TIP, LEFT_EYE_CORNER, RIGHT_EYE_CORNER)

        if len(points) == 0 or max(anchors) >= len(points):
            return QualityReport(
                score=0.0,
                details={"error": "missing_anchor_landmarks", "n_landmarks": len(points)},
            )

        nose = points[NOSE_TIP]
        left_eye = points[LEFT_EYE_CORNER]
        right_eye = points[RIGHT_EYE_CORNER]

        quality = 1.0

        eye_height_diff = float(abs(left_eye[1] - right_eye[1]))
        level_ok = bool(eye_height_diff <= self.max_eye_height_diff)
        if not level_ok:
            quality *= self.tilt_penalty

        eye_center_x = (left_eye[0] + right_eye[0]) / 2
        nose_offset = float(abs(nose[0] - eye_center_x))
        centered_ok = bool(nose_offset <= self.max_nose_offset)
        if not centered_ok:
            quality *= self.turn_penalty

        face_width = float(abs(left_eye[0] - right_eye[0]))
        size_ok = bool(self.min_face_width <= face_width <= self.max_face_width)
        if not size_ok:
            quality *= self.size_penalty

        mean_depth = float(np.mean(points[:, 2]))
        depth_ok = bool(abs(mean_depth) <= self.max_mean_depth)
        if not depth_ok:
            quality *= self.depth_penalty

        quality = float(np.clip(quality, 0.0, 1.0))

        return QualityReport(
            score=quality,
            details={
                "level_ok": level_ok,
                "centered_ok": centered_ok,
                "size_ok": size_ok,
                "depth_ok": depth_ok,
                "eye_height_diff": eye_height_diff,
                "nose_offset": nose_offset,
                "face_width": face_width,
                "mean_depth": mean_depth,
            },
        )

    def is_enrollable(self, quality: float) -> bool:
        return quality >= self.min_quality_for_enrollment


def get_quality_scorer(config: Dict[str, Any] = None) -> QualityScorer:
    """
    Factory function to get a QualityScorer instance with config.

    Args:
        config: Optional config dict. If None, loads from config.yaml.
    """
    if config is None:
        from core.config import get_quality_config

        config = get_quality_config()

    return QualityScorer(config)
