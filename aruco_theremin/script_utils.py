"""Utility functions for running the theremin scripts."""

import time
from functools import partial
from typing import Any, Callable, Dict, Optional, TypeVar, Union

import cv2

from aruco_theremin.audio import AudioDeviceError
from aruco_theremin.config import DFLT_CAMERA_INDEX, MARKER_COMMANDS, VIDEO_PATHS
from aruco_theremin.controller import ThereminController
from aruco_theremin.markers import MarkerCommandTracker, PositionHold
from aruco_theremin.util import (
    format_label_xy,
    print_json_if_possible,
    return_none as do_nothing,
    timestamped_print,
)
from aruco_theremin.vision import (
    ArucoMarkerDetector,
    CameraReadError,
    CaptureOpenError,
    HandLandmarkTracker,
    MotionPalmDetector,
    open_capture,
    read_frame,
)

# -------------------------------------------------------------------------------
# Object resolution
# -------------------------------------------------------------------------------

T = TypeVar('T')


def resolve_object(
    obj: Union[str, T],
    *,
    object_map: Dict[str, T],
    expected_type: type = None,
    error_message: str = None,
) -> T:
    """
    Resolves an object by either returning it directly if it's of the correct type,
    or looking it up in a mapping if it's a string.

    Args:
        obj: The object to resolve. Can be a string (to be looked up in object_map)
             or the object itself (if it's already of type T).
        object_map: A dictionary mapping strings to objects of type T.
        expected_type: (Optional) The expected type of the resolved object.
        error_message: (Optional) A custom error message to use if a ValueError
                       or TypeError is raised.

    Raises:
        TypeError: If obj (or what it resolves to) is not of the expected type.
        ValueError: If obj is a string but is not found in object_map.

    >>> resolve_object('a', object_map={'a': 1})
    1
    >>> resolve_object(2, object_map={'a': 1}, expected_type=int)
    2
    """
    if isinstance(obj, str):
        if obj in object_map:
            resolved_obj = object_map[obj]
        else:
            msg = error_message or f"Unknown object identifier: {obj}"
            raise ValueError(msg)
    elif expected_type is None or isinstance(obj, expected_type):
        resolved_obj = obj
    else:
        msg = error_message or f"Expected type {expected_type}, got {type(obj)}"
        raise TypeError(msg)

    if expected_type and not isinstance(resolved_obj, expected_type):
        msg = (
            error_message
            or f"Resolved object should be of type {expected_type}, got {type(resolved_obj)}"
        )
        raise TypeError(msg)

    return resolved_obj


# Factories of position sources (objects with an ``observe(frame)`` method)
position_sources = {
    "aruco": ArucoMarkerDetector,
    "palm": MotionPalmDetector,
    "hand": HandLandmarkTracker,
}

resolve_position_source = partial(resolve_object, object_map=position_sources)


# -------------------------------------------------------------------------------
# Keyboard handling functions
# -------------------------------------------------------------------------------

ESCAPE_KEY_ASCII = 27
BREAK_KEYS = set([ESCAPE_KEY_ASCII])

KEY_COMMANDS = {
    ord(' '): 'toggle_audio',
    ord('r'): 'reset_pitch',
    ord('+'): 'increase_pitch',
    ord('='): 'increase_pitch',  # '+' without shift
    ord('-'): 'decrease_pitch',
    ord('_'): 'decrease_pitch',
}


class KeyboardBreakSignal(Exception):
    """Exception raised when a break key is pressed."""

    pass


def read_keyboard(wait_time: int = 5) -> int:
    """
    Read keyboard input with the specified wait time (in milliseconds).

    Returns:
        The key code or 0 if no key was pressed
    """
    key_code = cv2.waitKey(wait_time)
    return key_code & 0xFF if key_code >= 0 else 0


def keyboard_feature_vector(key_code: int) -> Dict[str, Any]:
    """
    Convert a key code into a feature vector with keyboard information.

    Raises:
        KeyboardBreakSignal: If a key that signals program termination is pressed

    >>> keyboard_feature_vector(ord(' '))['command']
    'toggle_audio'
    >>> keyboard_feature_vector(0)['command'] is None
    True
    """
    keyboard_fv = {
        'key_code': key_code,
        'key_pressed': key_code > 0,
        'is_escape': key_code == ESCAPE_KEY_ASCII,
        'command': KEY_COMMANDS.get(key_code),
        'timestamp': time.time(),
    }

    if keyboard_fv['key_code'] in BREAK_KEYS:
        raise KeyboardBreakSignal(f"Break key pressed: {key_code}")

    return keyboard_fv


# -------------------------------------------------------------------------------
# Main run function
# -------------------------------------------------------------------------------

DFLT_POSITION_SOURCE = "aruco"


def make_position_source(position_source, *, hand_model_path: Optional[str] = None):
    """Resolve the position source and, if it's a factory, make it."""
    position_source = resolve_position_source(position_source)
    if position_source is HandLandmarkTracker:
        if not hand_model_path:
            raise ValueError("The 'hand' position source needs a hand_model_path")
        return HandLandmarkTracker(hand_model_path)
    if isinstance(position_source, type):
        return position_source()
    return position_source


def close_position_source(source):
    """Release what the position source holds (such as a MediaPipe landmarker)."""
    if hasattr(source, 'close'):
        source.close()


def run_theremin(
    *,
    position_source: Union[str, Any] = DFLT_POSITION_SOURCE,
    camera_index: int = DFLT_CAMERA_INDEX,
    video_paths=VIDEO_PATHS,
    hand_model_path: Optional[str] = None,
    marker_commands: bool = False,
    log_position: Optional[Callable] = None,
    log_audio_features: Optional[Callable] = None,
    log: Callable = timestamped_print,
    window_name: str = 'ArUco Theremin',
    controller_factory: Callable[..., ThereminController] = ThereminController,
):
    """
    Run the marker (or hand) controlled theremin.

    Args:
        position_source: Name of the position source, or an object with an
            ``observe(frame)`` method
        camera_index: The camera to use
        video_paths: Video files to fall back to if the camera can't be opened
        hand_model_path: MediaPipe hand landmarker model (for the 'hand' source)
        marker_commands: Whether markers 0-7 fire commands when they appear
        log_position: Function to log positions (or None to disable)
        log_audio_features: Function to log audio features (or None to disable)
        log: Function to log status messages
        window_name: Title for the display window
    """
    source = make_position_source(position_source, hand_model_path=hand_model_path)
    log_position = log_position or do_nothing
    log_audio_features = log_audio_features or do_nothing

    try:
        controller = controller_factory(log=log)
    except AudioDeviceError as e:
        log(f"Audio output unavailable: {e}")
        close_position_source(source)
        raise
    log("Theremin started, sound on")

    try:
        cap, is_camera = open_capture(camera_index, video_paths, log=log)
    except CaptureOpenError:
        controller.stop()
        close_position_source(source)
        raise

    hold = PositionHold()
    command_tracker = MarkerCommandTracker()
    draw = getattr(source, 'draw', None)

    try:
        while not controller.is_stopped:
            try:
                keyboard_fv = keyboard_feature_vector(read_keyboard())
                if keyboard_fv['command']:
                    controller.apply_command(keyboard_fv['command'])

                img = read_frame(cap, is_camera)
                observation = source.observe(img)
                position = observation.position
                if position.detected:
                    log_position(format_label_xy('Position:', position.x, position.y))

                # Hold the last position through the frames where it's lost
                x, y = hold(position)
                frequency, amplitude = controller.update_from_position(x, y)
                log_audio_features(
                    {
                        'freq': frequency,
                        'volume': amplitude,
                        'enabled': controller.is_enabled(),
                    }
                )

                if marker_commands:
                    for command in command_tracker(observation.markers):
                        log(f"Marker {command.marker_id}: {command.command_name}")
                        controller.apply_command(command.command_name)

                if draw is not None:
                    img = draw(img, observation.markers)
                cv2.imshow(window_name, img)

            except (CameraReadError, KeyboardBreakSignal):
                break
    finally:
        controller.stop()
        cap.release()
        cv2.destroyAllWindows()
        close_position_source(source)
        log("Resources released")


def theremin_cli(
    position_source: str = DFLT_POSITION_SOURCE,
    camera_index: int = DFLT_CAMERA_INDEX,
    hand_model_path: str = None,
    marker_commands: bool = False,
    # Logging options
    log_position: bool = False,
    log_audio_features: bool = False,
    # Display options
    window_name: str = "ArUco Theremin",
    # List available components
    list_position_sources: bool = False,
    list_marker_commands: bool = False,
):
    """
    Run the theremin application with the specified parameters.

    Args:
        position_source: Name of the position source (aruco, palm or hand)
        camera_index: The camera to use
        hand_model_path: MediaPipe hand landmarker model, for the hand source
        marker_commands: Let markers 0-7 fire commands when they appear
        log_position: Whether to log positions
        log_audio_features: Whether to log audio features
        window_name: Title for the display window
        list_position_sources: List available position sources and exit
        list_marker_commands: List the marker commands and exit
    """
    if list_position_sources:
        print("Available position sources:")
        for name in sorted(position_sources):
            print(f"  - {name}")
        return

    if list_marker_commands:
        print("Marker commands:")
        for marker_id, command_name in sorted(MARKER_COMMANDS.items()):
            print(f"  - {marker_id}: {command_name}")
        return

    print("Controls:")
    print("  ESC    - Exit")
    print("  SPACE  - Sound on/off")
    print("  r      - Reset pitch")
    print("  + / -  - Pitch up / down")

    run_theremin(
        position_source=position_source,
        camera_index=camera_index,
        hand_model_path=hand_model_path,
        marker_commands=marker_commands,
        log_position=print if log_position else None,
        log_audio_features=print_json_if_possible if log_audio_features else None,
        window_name=window_name,
    )
