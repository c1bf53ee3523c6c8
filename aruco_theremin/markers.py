"""Marker validation, position normalization and marker commands.

The detection itself is done by OpenCV (see ``aruco_theremin.vision``); what comes
out of it here is a set of ``DetectedMarker`` per frame. These are filtered by
size and shape (``MarkerValidator``), and the marker carrying the tracked id is
turned into a position in ``[-1, 1] x [-1, 1]`` (``tracked_marker_position``).

Other marker ids can fire discrete commands, but only when they appear
(``MarkerCommandTracker``).
"""

from dataclasses import dataclass
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from aruco_theremin.config import (
    DFLT_MARKER_VALIDATION,
    MARKER_COMMANDS,
    TRACKED_MARKER_ID,
    MarkerValidationConfig,
)
from aruco_theremin.util import Point, calculate_euclidean_distance

N_CORNERS = 4
MIN_MARKER_AREA = 1e-9  # flat or folded quadrilaterals have no area

# -------------------------------------------------------------------------------
# Detected markers
# -------------------------------------------------------------------------------


def edge_lengths(corners: Sequence[Point]) -> Tuple[float, ...]:
    """
    Lengths of the consecutive edges of a polygon, closing edge included.

    >>> edge_lengths([(0, 0), (3, 0), (3, 4)])
    (3.0, 4.0, 5.0)
    """
    n = len(corners)
    return tuple(
        calculate_euclidean_distance(corners[i], corners[(i + 1) % n]) for i in range(n)
    )


@dataclass(frozen=True)
class DetectedMarker:
    """
    A marker found in a frame: its id and its corners, in winding order.

    >>> marker = DetectedMarker(3, ((0, 0), (10, 0), (10, 10), (0, 10)))
    >>> marker.center
    (5.0, 5.0)
    >>> marker.perimeter
    40.0
    """

    id: int
    corners: Tuple[Point, ...]

    @classmethod
    def from_corners(cls, marker_id, corners) -> 'DetectedMarker':
        """
        Make a marker from any array-like of corners, such as the ``(1, 4, 2)``
        float32 arrays OpenCV's aruco detector returns.

        >>> DetectedMarker.from_corners(0, [[[0, 0], [2, 0], [2, 2], [0, 2]]]).corners
        ((0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0))
        """
        points = np.asarray(corners, dtype=float).reshape(-1, 2)
        return cls(int(marker_id), tuple((float(x), float(y)) for x, y in points))

    @property
    def center(self) -> Point:
        if len(self.corners) < N_CORNERS:
            return (0.0, 0.0)
        n = len(self.corners)
        return (
            sum(x for x, _ in self.corners) / n,
            sum(y for _, y in self.corners) / n,
        )

    @property
    def edge_lengths(self) -> Tuple[float, ...]:
        return edge_lengths(self.corners)

    @property
    def perimeter(self) -> float:
        return float(sum(self.edge_lengths))


# -------------------------------------------------------------------------------
# Marker validation
# -------------------------------------------------------------------------------


def max_edge_deviation(lengths: Sequence[float]) -> float:
    """
    The maximum fractional deviation of an edge length from the mean edge length.
    Infinite when the mean is zero (degenerate shape).

    >>> max_edge_deviation([10, 10, 10, 10])
    0.0
    >>> max_edge_deviation([20, 10, 10, 10])
    0.6
    """
    mean = sum(lengths) / len(lengths)
    if mean <= 0:
        return float('inf')
    return max(abs(length - mean) / mean for length in lengths)


def polygon_area(corners: Sequence[Point]) -> float:
    """
    The (unsigned) shoelace area of a polygon.

    >>> polygon_area([(0, 0), (10, 0), (10, 10), (0, 10)])
    100.0
    >>> polygon_area([(0, 0), (10, 0), (20, 0), (10, 0)])  # flat
    0.0
    """
    n = len(corners)
    twice_area = sum(
        corners[i][0] * corners[(i + 1) % n][1] - corners[(i + 1) % n][0] * corners[i][1]
        for i in range(n)
    )
    return abs(twice_area) / 2.0


def is_marker_valid(
    marker: Union[DetectedMarker, Sequence[Point]],
    config: MarkerValidationConfig = DFLT_MARKER_VALIDATION,
) -> bool:
    """
    Tell if a detection looks like a real marker: 4 corners, big enough, and
    roughly square.

    >>> is_marker_valid([(0, 0), (10, 0), (10, 10), (0, 10)])
    True
    >>> is_marker_valid([(0, 0), (5, 0), (5, 5), (0, 5)])  # perimeter 20 < 30
    False
    >>> is_marker_valid([(0, 0), (10, 0), (10, 10)])
    False
    """
    corners = marker.corners if isinstance(marker, DetectedMarker) else marker
    if len(corners) != N_CORNERS:
        return False

    lengths = edge_lengths(corners)
    if sum(lengths) < config.min_perimeter:
        return False

    if polygon_area(corners) <= MIN_MARKER_AREA:
        return False

    return max_edge_deviation(lengths) < config.shape_tolerance


class MarkerValidator:
    """
    Callable marker filter holding its own validation config.

    >>> validator = MarkerValidator()
    >>> validator.min_perimeter = 4
    >>> validator.min_perimeter
    10.0
    """

    def __init__(self, config: MarkerValidationConfig = DFLT_MARKER_VALIDATION):
        self.config = config

    @property
    def min_perimeter(self) -> float:
        return self.config.min_perimeter

    @min_perimeter.setter
    def min_perimeter(self, size: float):
        self.config = self.config.with_min_perimeter(size)

    @property
    def shape_tolerance(self) -> float:
        return self.config.shape_tolerance

    def __call__(self, marker) -> bool:
        return is_marker_valid(marker, self.config)

    def filter(self, markers: Iterable[DetectedMarker]) -> List[DetectedMarker]:
        return [marker for marker in markers if self(marker)]


# -------------------------------------------------------------------------------
# Position normalization
# -------------------------------------------------------------------------------


class NormalizedPosition(NamedTuple):
    """A position in [-1, 1]: x goes left to right, y goes top to bottom."""

    x: float
    y: float
    detected: bool
    center: Optional[Point] = None


NOT_DETECTED = NormalizedPosition(0.0, 0.0, False)


def normalize_position(center: Point, width: int, height: int) -> NormalizedPosition:
    """
    Map a pixel position to [-1, 1] x [-1, 1], relative to the frame dimensions.

    >>> normalize_position((320, 120), 640, 480)
    NormalizedPosition(x=0.0, y=-0.5, detected=True, center=(320, 120))

    A frame with no area has no valid position:

    >>> normalize_position((320, 120), 0, 480).detected
    False
    """
    if width <= 0 or height <= 0:
        return NOT_DETECTED
    cx, cy = center
    return NormalizedPosition(
        x=(2.0 * cx / width) - 1.0,
        y=(2.0 * cy / height) - 1.0,
        detected=True,
        center=center,
    )


def tracked_marker_position(
    markers: Iterable[DetectedMarker],
    width: int,
    height: int,
    *,
    tracked_id: int = TRACKED_MARKER_ID,
) -> NormalizedPosition:
    """
    The normalized position of the first marker with the tracked id, or
    ``NOT_DETECTED`` if there's none.
    """
    for marker in markers:
        if marker.id == tracked_id:
            return normalize_position(marker.center, width, height)
    return NOT_DETECTED


class PositionHold:
    """
    Remembers the last detected position, so that a control signal can be held
    through the frames where the marker is lost.

    >>> hold = PositionHold()
    >>> hold(NOT_DETECTED)
    (0.0, 0.0)
    >>> hold(NormalizedPosition(0.5, -0.25, True))
    (0.5, -0.25)
    >>> hold(NOT_DETECTED)
    (0.5, -0.25)
    """

    def __init__(self, x: float = 0.0, y: float = 0.0):
        self.x, self.y = x, y

    def __call__(self, position: NormalizedPosition) -> Tuple[float, float]:
        if position.detected:
            self.x, self.y = position.x, position.y
        return self.x, self.y


# -------------------------------------------------------------------------------
# Marker commands
# -------------------------------------------------------------------------------


class MarkerCommand(NamedTuple):
    marker_id: int
    command_name: str


def marker_command(marker_id: int, command_map=MARKER_COMMANDS) -> Optional[MarkerCommand]:
    """
    >>> marker_command(4)
    MarkerCommand(marker_id=4, command_name='stop_audio')
    >>> marker_command(42) is None
    True
    """
    command_name = command_map.get(marker_id)
    if command_name is None:
        return None
    return MarkerCommand(marker_id, command_name)


def newly_detected_ids(current_ids: Iterable[int], previous_ids: Iterable[int]) -> List[int]:
    """
    The ids of current_ids that were not in previous_ids, in their current order.

    >>> newly_detected_ids([3, 1, 2], {1})
    [3, 2]
    """
    previous_ids = set(previous_ids)
    return [marker_id for marker_id in current_ids if marker_id not in previous_ids]


class MarkerCommandTracker:
    """
    Edge-triggered command detection: a command fires when its marker appears,
    that is, when it's present in this frame and wasn't in the previous one.

    >>> tracker = MarkerCommandTracker()
    >>> square = ((0, 0), (10, 0), (10, 10), (0, 10))
    >>> tracker([DetectedMarker(2, square)])
    [MarkerCommand(marker_id=2, command_name='increase_pitch')]
    >>> tracker([DetectedMarker(2, square)])
    []
    >>> tracker([])
    []
    >>> tracker([DetectedMarker(2, square)])
    [MarkerCommand(marker_id=2, command_name='increase_pitch')]
    """

    def __init__(self, command_map=MARKER_COMMANDS):
        self.command_map = command_map
        self.previous_ids = frozenset()

    def __call__(self, markers: Iterable[DetectedMarker]) -> List[MarkerCommand]:
        current_ids = [marker.id for marker in markers]
        commands = []
        for marker_id in newly_detected_ids(current_ids, self.previous_ids):
            command = marker_command(marker_id, self.command_map)
            if command is not None:
                commands.append(command)
        self.previous_ids = frozenset(current_ids)
        return commands

    def reset(self):
        self.previous_ids = frozenset()
