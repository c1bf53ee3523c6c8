"""
A theremin played with a fiducial marker.

Hold ArUco marker 0 in front of the camera: its horizontal position sets the volume
and its vertical position sets the pitch, on a two-octave scale from C3 to A4.
Both are quantized into 10 steps, so the instrument is easy to play in tune
despite the jitter of the detections.

The pieces, from the camera to the speakers:

* ``markers``: marker geometry, the size/shape validator that throws away spurious
    detections, the normalization of the tracked marker's center into [-1, 1],
    and the edge-triggered commands fired by markers 0-7.
* ``audio``: the (pure) position to (frequency, amplitude) mapping, the shared
    state written by the video thread and read by the audio thread, the
    continuous-phase sine source, and the sink that plays it.
* ``controller``: ``ThereminController``, which ties mapping, state and sink
    together, and handles muting, pitch transposition and stopping.
* ``vision``: OpenCV (and MediaPipe) position sources and video capture.
* ``palm``: shape scoring for the motion-based palm position source.
* ``script_utils`` and ``main``: the application loop and its CLI.
"""

from aruco_theremin.audio import (
    AudioDeviceError,
    AudioSink,
    PositionToAudio,
    StateLockError,
    ThereminSource,
    ThereminState,
    map_position_to_audio,
)
from aruco_theremin.controller import ThereminController
from aruco_theremin.markers import (
    DetectedMarker,
    MarkerCommandTracker,
    MarkerValidator,
    NormalizedPosition,
    PositionHold,
    is_marker_valid,
    normalize_position,
    tracked_marker_position,
)
