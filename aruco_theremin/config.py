"""Default settings and configuration structures for the theremin.

Everything tunable lives here, as module-level ``DFLT_*`` constants and as
small frozen dataclasses that bundle them, so that the mapper and the validator
can be handed an explicit configuration and stay pure.
"""

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Optional, Tuple

from aruco_theremin.util import clamp

# -------------------------------------------------------------------------------
# Marker validation
# -------------------------------------------------------------------------------

TRACKED_MARKER_ID = 0

DFLT_MIN_PERIMETER = 30.0
MIN_PERIMETER_FLOOR = 10.0
DFLT_SHAPE_TOLERANCE = 0.3  # max fractional deviation of an edge from the mean edge


@dataclass(frozen=True)
class MarkerValidationConfig:
    """Size and shape thresholds used to reject spurious marker detections."""

    min_perimeter: float = DFLT_MIN_PERIMETER
    shape_tolerance: float = DFLT_SHAPE_TOLERANCE

    def with_min_perimeter(self, size: float) -> 'MarkerValidationConfig':
        """
        Return a copy with a new minimum perimeter, never below the floor.

        >>> MarkerValidationConfig().with_min_perimeter(50).min_perimeter
        50.0
        >>> MarkerValidationConfig().with_min_perimeter(3).min_perimeter
        10.0
        """
        return replace(self, min_perimeter=max(float(size), MIN_PERIMETER_FLOOR))


DFLT_MARKER_VALIDATION = MarkerValidationConfig()

# -------------------------------------------------------------------------------
# Position to audio mapping
# -------------------------------------------------------------------------------

DFLT_AMPLITUDE_BINS = (0.10, 0.20, 0.30, 0.40, 0.50, 0.60, 0.70, 0.80, 0.90, 1.00)

DFLT_FREQUENCY_BINS = (
    130.81,  # C3
    146.83,  # D3
    164.81,  # E3
    196.00,  # G3
    220.00,  # A3
    261.63,  # C4
    293.66,  # D4
    329.63,  # E4
    392.00,  # G4
    440.00,  # A4
)

DFLT_AMPLITUDE = 0.5
DFLT_FREQUENCY = 440.0


@dataclass(frozen=True)
class AudioMappingConfig:
    """Step tables mapping a normalized position to amplitude (x) and frequency (y)."""

    amplitude_bins: Tuple[float, ...] = DFLT_AMPLITUDE_BINS
    frequency_bins: Tuple[float, ...] = DFLT_FREQUENCY_BINS
    low: float = -1.0
    high: float = 1.0
    default_amplitude: float = DFLT_AMPLITUDE
    default_frequency: float = DFLT_FREQUENCY

    def __post_init__(self):
        if not self.amplitude_bins or not self.frequency_bins:
            raise ValueError("amplitude_bins and frequency_bins can't be empty")
        if len(self.amplitude_bins) != len(self.frequency_bins):
            raise ValueError(
                "amplitude_bins and frequency_bins must have the same length: "
                f"{len(self.amplitude_bins)} != {len(self.frequency_bins)}"
            )
        if not self.low < self.high:
            raise ValueError(f"low must be smaller than high: {self.low}, {self.high}")


DFLT_AUDIO_MAPPING = AudioMappingConfig()

# -------------------------------------------------------------------------------
# Audio output
# -------------------------------------------------------------------------------

DFLT_SAMPLE_RATE = 44100
DFLT_CHANNELS = 2
DFLT_VOLUME = 0.7
DFLT_MAX_SAMPLE = 0.8
DFLT_LOCK_TIMEOUT = 0.1  # seconds


@dataclass(frozen=True)
class OutputConfig:
    """Audio output settings: stream format, sink volume and the initial sound."""

    sample_rate: int = DFLT_SAMPLE_RATE
    channels: int = DFLT_CHANNELS
    volume: float = DFLT_VOLUME
    max_sample: float = DFLT_MAX_SAMPLE
    initial_amplitude: float = DFLT_AMPLITUDE
    initial_frequency: float = DFLT_FREQUENCY
    blocksize: int = 0  # 0 lets the device choose
    device: Optional[int] = None
    lock_timeout: float = DFLT_LOCK_TIMEOUT


DFLT_OUTPUT = OutputConfig()

# -------------------------------------------------------------------------------
# Pitch transposition (marker and keyboard commands)
# -------------------------------------------------------------------------------


@dataclass(frozen=True)
class PitchConfig:
    default: float = 1.0
    minimum: float = 0.25
    maximum: float = 4.0
    fine_up: float = 1.05
    fine_down: float = 0.95
    coarse_up: float = 1.25
    coarse_down: float = 0.8

    def clamp(self, factor: float) -> float:
        return clamp(factor, self.minimum, self.maximum)


DFLT_PITCH = PitchConfig()

# -------------------------------------------------------------------------------
# Motion palm detection
# -------------------------------------------------------------------------------


@dataclass(frozen=True)
class PalmDetectionConfig:
    motion_threshold: float = 25.0
    kernel_size: int = 15
    morph_iterations: int = 2
    min_contour_area: float = 3000.0
    max_contour_area: float = 100000.0
    min_circularity: float = 0.2
    min_solidity: float = 0.4
    min_aspect_ratio: float = 0.4


DFLT_PALM_DETECTION = PalmDetectionConfig()

# -------------------------------------------------------------------------------
# Marker commands
# -------------------------------------------------------------------------------

MARKER_COMMANDS = MappingProxyType(
    {
        0: 'toggle_audio',
        1: 'reset_pitch',
        2: 'increase_pitch',
        3: 'decrease_pitch',
        4: 'stop_audio',
        5: 'test_sound',
        6: 'pitch_up_coarse',
        7: 'pitch_down_coarse',
    }
)

# -------------------------------------------------------------------------------
# Video capture
# -------------------------------------------------------------------------------

DFLT_CAMERA_INDEX = 0

# Tried in order when no camera can be opened
VIDEO_PATHS = (
    'hand_video.mp4',
    'videos/hand_video.mp4',
    'test_video.mp4',
    'video.mp4',
    'assets/video.mp4',
)
