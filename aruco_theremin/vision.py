"""Video capture and position sources, on top of OpenCV (and MediaPipe).

A position source turns a frame into an ``Observation``: a normalized position,
plus the markers seen, if the source sees markers.

* ``ArucoMarkerDetector``: the position of ArUco marker 0 (the default source)
* ``MotionPalmDetector``: the center of the most palm-like moving blob
* ``HandLandmarkTracker``: the palm center of a hand found by MediaPipe
"""

import time
from typing import List, NamedTuple, Sequence, Tuple

import cv2
import numpy as np

from aruco_theremin.config import (
    DFLT_CAMERA_INDEX,
    DFLT_MARKER_VALIDATION,
    DFLT_PALM_DETECTION,
    TRACKED_MARKER_ID,
    VIDEO_PATHS,
    MarkerValidationConfig,
    PalmDetectionConfig,
)
from aruco_theremin.markers import (
    NOT_DETECTED,
    DetectedMarker,
    MarkerValidator,
    NormalizedPosition,
    normalize_position,
    tracked_marker_position,
)
from aruco_theremin.palm import best_palm, landmark_palm_center, shape_metrics


class Observation(NamedTuple):
    position: NormalizedPosition
    markers: Tuple[DetectedMarker, ...] = ()


def frame_size(frame) -> Tuple[int, int]:
    """The (width, height) of a frame."""
    height, width = frame.shape[:2]
    return width, height


# -------------------------------------------------------------------------------
# ArUco markers
# -------------------------------------------------------------------------------


class ArucoMarkerDetector:
    """
    Detects ArUco markers, keeps the ones that pass the size and shape checks,
    and tracks the position of one of them.

    Attributes:
        dictionary: The predefined ArUco dictionary.
        validator (MarkerValidator): The size/shape filter.
        tracked_id (int): The id of the marker whose position is tracked.
    """

    def __init__(
        self,
        *,
        dictionary_id=cv2.aruco.DICT_ARUCO_ORIGINAL,
        validation_config: MarkerValidationConfig = DFLT_MARKER_VALIDATION,
        tracked_id: int = TRACKED_MARKER_ID,
    ):
        self.dictionary = cv2.aruco.getPredefinedDictionary(dictionary_id)
        self.parameters = cv2.aruco.DetectorParameters()
        self.refine_parameters = cv2.aruco.RefineParameters(
            minRepDistance=10.0, errorCorrectionRate=3.0, checkAllOrders=True
        )
        self.detector = cv2.aruco.ArucoDetector(
            self.dictionary, self.parameters, self.refine_parameters
        )
        self.validator = MarkerValidator(validation_config)
        self.tracked_id = tracked_id

    def detect_markers(self, frame) -> List[DetectedMarker]:
        corners, ids, _rejected = self.detector.detectMarkers(frame)
        if ids is None:
            return []
        markers = (
            DetectedMarker.from_corners(marker_id, marker_corners)
            for marker_id, marker_corners in zip(ids.flatten(), corners)
        )
        return self.validator.filter(markers)

    def observe(self, frame) -> Observation:
        markers = self.detect_markers(frame)
        width, height = frame_size(frame)
        position = tracked_marker_position(
            markers, width, height, tracked_id=self.tracked_id
        )
        return Observation(position, tuple(markers))

    def draw(self, frame, markers: Sequence[DetectedMarker]):
        """Outline the markers (and their ids) on the frame."""
        if not markers:
            return frame
        corners = [
            np.array(marker.corners, dtype=np.float32).reshape(1, -1, 2)
            for marker in markers
        ]
        ids = np.array([[marker.id] for marker in markers], dtype=np.int32)
        cv2.aruco.drawDetectedMarkers(frame, corners, ids, (0, 255, 0))
        return frame


# -------------------------------------------------------------------------------
# Motion palm detection
# -------------------------------------------------------------------------------


def contour_metrics(contour):
    """The shape metrics of an OpenCV contour."""
    area = cv2.contourArea(contour)
    perimeter = cv2.arcLength(contour, True)
    rect = cv2.boundingRect(contour)
    m = cv2.moments(contour)
    center = (m['m10'] / m['m00'], m['m01'] / m['m00']) if m['m00'] != 0 else None
    return shape_metrics(area, perimeter, rect, center)


class MotionPalmDetector:
    """
    Finds a palm by frame differencing: the moving regions of the frame are
    outlined, and the most palm-like outline wins (see ``aruco_theremin.palm``).
    The first frame only primes the detector.
    """

    def __init__(self, config: PalmDetectionConfig = DFLT_PALM_DETECTION):
        self.config = config
        self.prev_gray = None
        self.kernel = cv2.getStructuringElement(
            cv2.MORPH_ELLIPSE, (config.kernel_size, config.kernel_size)
        )

    def motion_mask(self, gray, prev_gray):
        diff = cv2.absdiff(gray, prev_gray)
        _, binary = cv2.threshold(
            diff, self.config.motion_threshold, 255, cv2.THRESH_BINARY
        )
        return cv2.morphologyEx(
            binary,
            cv2.MORPH_CLOSE,
            self.kernel,
            iterations=self.config.morph_iterations,
        )

    def detect_palm(self, frame):
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        if self.prev_gray is None or self.prev_gray.shape != gray.shape:
            self.prev_gray = gray
            return None

        mask = self.motion_mask(gray, self.prev_gray)
        contours, _ = cv2.findContours(
            mask, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE
        )
        self.prev_gray = gray
        return best_palm((contour_metrics(c) for c in contours), self.config)

    def observe(self, frame) -> Observation:
        palm = self.detect_palm(frame)
        if palm is None:
            return Observation(NOT_DETECTED)
        width, height = frame_size(frame)
        return Observation(normalize_position(palm.center, width, height))


# -------------------------------------------------------------------------------
# Hand landmarks
# -------------------------------------------------------------------------------


class HandLandmarkTracker:
    """
    Tracks the palm center of a hand with MediaPipe's hand landmarker.

    Attributes:
        model_path (str): Path to a ``hand_landmarker.task`` model file.
        num_hands (int): Maximum number of hands to detect (the first one is used).
        detection_con (float): Minimum detection confidence threshold.
        track_con (float): Minimum tracking confidence threshold.
    """

    def __init__(
        self,
        model_path: str,
        *,
        num_hands: int = 1,
        detection_con: float = 0.5,
        track_con: float = 0.5,
    ):
        # Import here, mediapipe is heavy and only needed for this source
        import mediapipe as mp

        self.mp = mp
        self.model_path = model_path
        self.num_hands = num_hands
        self.detection_con = detection_con
        self.track_con = track_con

        self.options = mp.tasks.vision.HandLandmarkerOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=model_path),
            running_mode=mp.tasks.vision.RunningMode.VIDEO,
            num_hands=num_hands,
            min_hand_detection_confidence=detection_con,
            min_tracking_confidence=track_con,
        )
        self.landmarker = mp.tasks.vision.HandLandmarker.create_from_options(
            self.options
        )
        self._last_timestamp_ms = -1

    def _timestamp_ms(self) -> int:
        # VIDEO mode wants strictly increasing timestamps
        timestamp_ms = max(int(time.monotonic() * 1000), self._last_timestamp_ms + 1)
        self._last_timestamp_ms = timestamp_ms
        return timestamp_ms

    def observe(self, frame) -> Observation:
        img_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        image = self.mp.Image(image_format=self.mp.ImageFormat.SRGB, data=img_rgb)
        result = self.landmarker.detect_for_video(image, self._timestamp_ms())
        if not result.hand_landmarks:
            return Observation(NOT_DETECTED)

        cx, cy = landmark_palm_center(result.hand_landmarks[0])
        width, height = frame_size(frame)
        return Observation(normalize_position((cx * width, cy * height), width, height))

    def close(self):
        self.landmarker.close()


# -------------------------------------------------------------------------------
# Video capture
# -------------------------------------------------------------------------------


class CaptureOpenError(Exception):
    """Exception raised when neither a camera nor a video file could be opened."""

    pass


class CameraReadError(Exception):
    """Exception raised when camera read fails."""

    pass


def open_capture(
    camera_index: int = DFLT_CAMERA_INDEX,
    video_paths: Sequence[str] = VIDEO_PATHS,
    *,
    log=print,
) -> Tuple[cv2.VideoCapture, bool]:
    """
    Open the camera, or else the first of the video files that opens.

    Returns:
        (capture, is_camera)

    Raises:
        CaptureOpenError: If nothing could be opened.
    """
    cap = cv2.VideoCapture(camera_index)
    if cap.isOpened():
        log(f"Camera {camera_index} opened")
        return cap, True
    cap.release()

    log("No camera found, trying video files...")
    for video_path in video_paths:
        cap = cv2.VideoCapture(video_path)
        if cap.isOpened():
            log(f"Video loaded: {video_path}")
            return cap, False
        cap.release()

    raise CaptureOpenError(
        f"Could open neither camera {camera_index} nor any of {list(video_paths)}"
    )


def read_frame(cap: cv2.VideoCapture, is_camera: bool = True, *, flip: bool = True):
    """
    Read a frame. Camera frames are flipped horizontally (mirror view) if asked;
    video files start over when they end.

    Raises:
        CameraReadError: If the read operation fails
    """
    success, img = cap.read()
    if not success and not is_camera:
        cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
        success, img = cap.read()
    if not success or img is None:
        raise CameraReadError("Failed to read a frame")

    if is_camera and flip:
        img = cv2.flip(img, 1)
    return img
