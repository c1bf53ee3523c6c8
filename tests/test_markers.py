from __future__ import annotations

import math

import numpy as np

from aruco_theremin.config import MarkerValidationConfig
from aruco_theremin.markers import (
    NOT_DETECTED,
    DetectedMarker,
    MarkerCommand,
    MarkerCommandTracker,
    MarkerValidator,
    NormalizedPosition,
    PositionHold,
    is_marker_valid,
    newly_detected_ids,
    normalize_position,
    polygon_area,
    tracked_marker_position,
)


def _square(x: float = 0.0, y: float = 0.0, side: float = 20.0):
    return ((x, y), (x + side, y), (x + side, y + side), (x, y + side))


def test_center_and_perimeter() -> None:
    marker = DetectedMarker(0, _square(10, 20, side=40))
    assert marker.center == (30.0, 40.0)
    assert marker.perimeter == 160.0
    assert marker.edge_lengths == (40.0, 40.0, 40.0, 40.0)


def test_center_of_incomplete_marker_is_origin() -> None:
    marker = DetectedMarker(0, ((5.0, 5.0), (7.0, 5.0)))
    assert marker.center == (0.0, 0.0)


def test_from_opencv_corners() -> None:
    corners = np.array([[[1, 2], [11, 2], [11, 12], [1, 12]]], dtype=np.float32)
    marker = DetectedMarker.from_corners(np.int32(7), corners)
    assert marker.id == 7
    assert isinstance(marker.id, int)
    assert marker.corners == ((1.0, 2.0), (11.0, 2.0), (11.0, 12.0), (1.0, 12.0))


def test_small_marker_rejected_regardless_of_shape() -> None:
    small_square = _square(side=5)  # perimeter 20
    assert math.isclose(DetectedMarker(0, small_square).perimeter, 20.0)
    assert not is_marker_valid(small_square)


def test_elongated_marker_rejected() -> None:
    # One pair of edges twice as long as the other: 33% away from the mean edge
    rectangle = ((0, 0), (80, 0), (80, 40), (0, 40))
    assert DetectedMarker(0, rectangle).perimeter > 30
    assert not is_marker_valid(rectangle)


def test_one_long_edge_rejected() -> None:
    # A trapezoid whose bottom edge is four times the top edge
    trapezoid = ((0, 0), (40, 0), (25, 20), (15, 20))
    assert not is_marker_valid(trapezoid)


def test_slightly_skewed_marker_accepted() -> None:
    skewed = ((0, 0), (40, 2), (41, 42), (1, 39))
    assert is_marker_valid(skewed)


def test_wrong_corner_count_rejected() -> None:
    assert not is_marker_valid(((0, 0), (40, 0), (40, 40)))
    assert not is_marker_valid(_square(side=40) + ((20, 50),))
    assert not is_marker_valid(())


def test_degenerate_marker_rejected() -> None:
    assert not is_marker_valid(((5, 5), (5, 5), (5, 5), (5, 5)))


def test_flat_marker_rejected() -> None:
    # Equal edges and a big enough perimeter, but no area
    flat = ((0, 0), (10, 0), (20, 0), (10, 0))
    folded = ((0, 0), (10, 0), (0, 0), (10, 0))
    assert DetectedMarker(0, flat).perimeter == 40.0
    assert polygon_area(flat) == polygon_area(folded) == 0.0
    assert not is_marker_valid(flat)
    assert not is_marker_valid(folded)
    assert not MarkerValidator()(DetectedMarker(0, folded))


def test_shape_tolerance_is_configurable() -> None:
    rectangle = ((0, 0), (80, 0), (80, 40), (0, 40))
    assert is_marker_valid(rectangle, MarkerValidationConfig(shape_tolerance=0.5))


def test_validator_min_perimeter_floor() -> None:
    validator = MarkerValidator()
    assert validator.min_perimeter == 30.0
    validator.min_perimeter = 5
    assert validator.min_perimeter == 10.0
    assert validator(_square(side=3))  # perimeter 12
    validator.min_perimeter = 100
    assert not validator(_square(side=20))


def test_validator_filter_keeps_valid_markers() -> None:
    markers = [
        DetectedMarker(0, _square(side=20)),
        DetectedMarker(1, _square(side=2)),
        DetectedMarker(2, ((0, 0), (80, 0), (80, 40), (0, 40))),
        DetectedMarker(3, _square(100, 100, side=50)),
    ]
    assert [m.id for m in MarkerValidator().filter(markers)] == [0, 3]


def test_normalize_position() -> None:
    assert normalize_position((0, 0), 640, 480)[:3] == (-1.0, -1.0, True)
    assert normalize_position((640, 480), 640, 480)[:3] == (1.0, 1.0, True)
    position = normalize_position((160, 360), 640, 480)
    assert (position.x, position.y) == (-0.5, 0.5)
    assert position.center == (160, 360)


def test_normalize_position_zero_frame() -> None:
    assert normalize_position((10, 10), 0, 0) == NOT_DETECTED
    assert normalize_position((10, 10), 640, 0) == NOT_DETECTED
    assert normalize_position((10, 10), -640, 480) == NOT_DETECTED


def test_tracked_marker_position_uses_marker_zero() -> None:
    markers = [DetectedMarker(3, _square(0, 0)), DetectedMarker(0, _square(310, 230))]
    position = tracked_marker_position(markers, 640, 480)
    assert position.detected
    assert (position.x, position.y) == (0.0, 0.0)


def test_tracked_marker_position_not_detected() -> None:
    markers = [DetectedMarker(3, _square(0, 0))]
    assert tracked_marker_position(markers, 640, 480) == NOT_DETECTED
    assert tracked_marker_position([], 640, 480) == NormalizedPosition(0.0, 0.0, False)


def test_tracked_marker_position_other_id() -> None:
    markers = [DetectedMarker(3, _square(310, 230))]
    assert tracked_marker_position(markers, 640, 480, tracked_id=3).detected


def test_position_hold() -> None:
    hold = PositionHold()
    assert hold(NormalizedPosition(0.2, 0.4, True)) == (0.2, 0.4)
    assert hold(NOT_DETECTED) == (0.2, 0.4)
    assert hold(NOT_DETECTED) == (0.2, 0.4)
    assert hold(NormalizedPosition(-0.6, 0.1, True)) == (-0.6, 0.1)


def test_newly_detected_ids() -> None:
    assert newly_detected_ids([1, 2, 3], []) == [1, 2, 3]
    assert newly_detected_ids([1, 2, 3], [2]) == [1, 3]
    assert newly_detected_ids([], [1]) == []


def test_command_tracker_is_edge_triggered() -> None:
    tracker = MarkerCommandTracker()
    reset, stop, unknown = (
        DetectedMarker(1, _square()),
        DetectedMarker(4, _square(50, 50)),
        DetectedMarker(42, _square(100, 100)),
    )

    assert tracker([reset, unknown]) == [MarkerCommand(1, 'reset_pitch')]
    assert tracker([reset, unknown]) == []
    assert tracker([reset, stop]) == [MarkerCommand(4, 'stop_audio')]
    assert tracker.previous_ids == {1, 4}
    assert tracker([]) == []
    assert tracker([stop, reset]) == [
        MarkerCommand(4, 'stop_audio'),
        MarkerCommand(1, 'reset_pitch'),
    ]


def test_command_tracker_reset() -> None:
    tracker = MarkerCommandTracker()
    marker = DetectedMarker(5, _square())
    assert tracker([marker]) == [MarkerCommand(5, 'test_sound')]
    tracker.reset()
    assert tracker([marker]) == [MarkerCommand(5, 'test_sound')]
