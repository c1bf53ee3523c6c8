"""Shape scoring for motion-based palm detection.

Contours of moving regions are scored on how round, how solid and how square
their bounding box is; the best one that passes the minimum thresholds is taken
to be the palm. The OpenCV side of it is in ``aruco_theremin.vision``.
"""

import math
from typing import Iterable, NamedTuple, Optional, Tuple

from aruco_theremin.config import DFLT_PALM_DETECTION, PalmDetectionConfig
from aruco_theremin.util import Point

# Weights of the composite palm score
CIRCULARITY_WEIGHT = 0.4
SOLIDITY_WEIGHT = 0.3
ASPECT_WEIGHT = 0.3


def circularity(area: float, perimeter: float) -> float:
    """
    ``4*pi*area / perimeter**2``: 1 for a disk, smaller for anything else.

    >>> round(circularity(math.pi, 2 * math.pi), 6)
    1.0
    >>> circularity(10, 0)
    0.0
    """
    if perimeter <= 0:
        return 0.0
    return 4.0 * math.pi * area / (perimeter * perimeter)


def normalized_aspect(width: float, height: float) -> float:
    """
    The aspect ratio of a box, folded into (0, 1].

    >>> normalized_aspect(50, 100), normalized_aspect(100, 50)
    (0.5, 0.5)
    """
    if width <= 0 or height <= 0:
        return 0.0
    aspect_ratio = width / height
    return 1.0 / aspect_ratio if aspect_ratio > 1.0 else aspect_ratio


def solidity(area: float, width: float, height: float) -> float:
    """
    How much of its bounding box a shape fills.

    >>> solidity(50, 10, 10)
    0.5
    """
    rect_area = width * height
    if rect_area <= 0:
        return 0.0
    return area / rect_area


class ShapeMetrics(NamedTuple):
    area: float
    circularity: float
    solidity: float
    normalized_aspect: float
    center: Point
    rect: Tuple[int, int, int, int]  # x, y, width, height


def shape_metrics(area, perimeter, rect, center=None) -> ShapeMetrics:
    """
    Compute the shape metrics of a contour from its area, perimeter and bounding
    rect. The center defaults to the center of the rect.
    """
    x, y, w, h = rect
    if center is None:
        center = (x + w / 2, y + h / 2)
    return ShapeMetrics(
        area=float(area),
        circularity=circularity(area, perimeter),
        solidity=solidity(area, w, h),
        normalized_aspect=normalized_aspect(w, h),
        center=center,
        rect=tuple(rect),
    )


def palm_score(metrics: ShapeMetrics) -> float:
    """
    >>> m = ShapeMetrics(100.0, 1.0, 1.0, 1.0, (0, 0), (0, 0, 10, 10))
    >>> round(palm_score(m), 6)
    1.0
    """
    return (
        metrics.circularity * CIRCULARITY_WEIGHT
        + metrics.solidity * SOLIDITY_WEIGHT
        + metrics.normalized_aspect * ASPECT_WEIGHT
    )


def is_palm_candidate(
    metrics: ShapeMetrics, config: PalmDetectionConfig = DFLT_PALM_DETECTION
) -> bool:
    return (
        config.min_contour_area <= metrics.area <= config.max_contour_area
        and metrics.circularity >= config.min_circularity
        and metrics.solidity >= config.min_solidity
        and metrics.normalized_aspect >= config.min_aspect_ratio
    )


PALM_LANDMARK_INDICES = (0, 1, 5, 9, 13, 17)  # wrist and the base of each finger


def landmark_palm_center(landmarks, indices=PALM_LANDMARK_INDICES) -> Point:
    """
    The palm center of a hand, as the mean of the wrist and finger base landmarks
    (anything with ``x`` and ``y`` attributes, in image-relative coordinates).
    """
    points = [(landmarks[i].x, landmarks[i].y) for i in indices]
    cx = sum(p[0] for p in points) / len(points)
    cy = sum(p[1] for p in points) / len(points)
    return (cx, cy)


class PalmDetection(NamedTuple):
    metrics: ShapeMetrics
    score: float

    @property
    def center(self) -> Point:
        return self.metrics.center


def best_palm(
    candidates: Iterable[ShapeMetrics],
    config: PalmDetectionConfig = DFLT_PALM_DETECTION,
) -> Optional[PalmDetection]:
    """The highest scoring candidate passing the thresholds, if any."""
    best = None
    for metrics in candidates:
        if not is_palm_candidate(metrics, config):
            continue
        score = palm_score(metrics)
        if best is None or score > best.score:
            best = PalmDetection(metrics, score)
    return best
